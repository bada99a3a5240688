"""
Workflow Application DTOs
=========================

Pydantic models for the orchestrator wire format (camelCase JSON) and for
responses handed to the controller layer.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from repairdesk.workflow.domain import (
    InstanceStatus, OrchestratorEvent, StepReadyAck, WorkflowConfiguration,
    WorkflowInstance, WorkflowStatusView
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ========== Orchestrator Messages ==========

class WorkflowConfigurationMessage(_WireModel):
    """Configuration returned by the selection endpoint."""
    id: str
    workflow_definition_id: str = Field(..., alias="workflowDefinitionId")
    name: Optional[str] = None

    def to_domain(self) -> WorkflowConfiguration:
        return WorkflowConfiguration(
            id=self.id,
            workflow_definition_id=self.workflow_definition_id,
            name=self.name,
        )


class WorkflowInstanceMessage(_WireModel):
    """Instance as returned by start and get endpoints."""
    id: str
    case_id: str = Field(..., alias="caseId")
    status: InstanceStatus = InstanceStatus.RUNNING
    current_step_id: Optional[str] = Field(None, alias="currentStepId")
    workflow_definition_id: Optional[str] = Field(None, alias="workflowDefinitionId")
    context: Dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> WorkflowInstance:
        return WorkflowInstance(
            id=self.id,
            case_id=self.case_id,
            status=self.status,
            current_step_id=self.current_step_id,
            workflow_definition_id=self.workflow_definition_id,
            context=dict(self.context),
        )


class OrchestratorEventMessage(_WireModel):
    """Event pushed by the orchestrator to the case service."""
    type: str = Field(..., min_length=1)
    instance_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("instanceId", "workflowInstanceId", "instance_id"),
    )
    step_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("stepId", "step_id")
    )
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_domain(self) -> OrchestratorEvent:
        instance_id = (
            self.instance_id
            or self.payload.get("instanceId")
            or self.payload.get("workflowInstanceId")
        )
        return OrchestratorEvent(
            type=self.type,
            instance_id=instance_id,
            step_id=self.step_id or self.payload.get("stepId"),
            payload=dict(self.payload),
            timestamp=self.timestamp,
        )


# ========== Response DTOs ==========

class StepReadyAckResponse(BaseModel):
    case_id: str
    step_id: str
    mapped_status: Optional[str] = None
    actions: List[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, ack: StepReadyAck) -> "StepReadyAckResponse":
        return cls(
            case_id=ack.case_id,
            step_id=ack.step_id,
            mapped_status=ack.new_status.value if ack.new_status else None,
            actions=list(ack.actions),
        )


class WorkflowStatusResponse(BaseModel):
    """Workflow status of a case."""
    case_id: str
    instance_id: str
    status: str
    current_step_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, view: WorkflowStatusView) -> "WorkflowStatusResponse":
        return cls(
            case_id=view.case_id,
            instance_id=view.instance.id,
            status=view.status.value,
            current_step_id=view.current_step_id,
            context=dict(view.instance.context),
        )
