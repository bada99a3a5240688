"""
Workflow Domain Entities
========================

Case-side view of the external workflow orchestrator.

The orchestrator owns workflow definitions and instances; this module only
models what the case service needs to drive and mirror them: the fixed
step table, the instance snapshot and the request/response shapes of the
integration operations.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from repairdesk.config import CaseStatus, Priority


class WorkflowStep(str, Enum):
    """Step identifiers of the standard repair workflow."""
    REGISTRATION = "registration"
    DEVICE_INSPECTION = "device_inspection"
    QUOTATION_APPROVAL = "quotation_approval"
    REPAIR_EXECUTION = "repair_execution"
    QUALITY_CHECK = "quality_check"
    DELIVERY = "delivery"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, step_id: Optional[str]) -> Optional["WorkflowStep"]:
        """The step for an identifier, or None for steps outside the table."""
        try:
            return cls(step_id)
        except ValueError:
            return None


# Every step maps to a case status or explicitly to None (no status change)
STEP_STATUS: Dict[WorkflowStep, Optional[CaseStatus]] = {
    WorkflowStep.REGISTRATION: CaseStatus.OPEN,
    WorkflowStep.DEVICE_INSPECTION: CaseStatus.IN_PROGRESS,
    WorkflowStep.QUOTATION_APPROVAL: CaseStatus.WAITING_APPROVAL,
    WorkflowStep.REPAIR_EXECUTION: CaseStatus.IN_PROGRESS,
    WorkflowStep.QUALITY_CHECK: CaseStatus.IN_PROGRESS,
    WorkflowStep.DELIVERY: CaseStatus.IN_PROGRESS,
    WorkflowStep.COMPLETED: CaseStatus.COMPLETED,
}

_unmapped = set(WorkflowStep) - set(STEP_STATUS)
if _unmapped:
    raise RuntimeError(f"Workflow steps without a status mapping: {sorted(_unmapped)}")


def status_for_step(step_id: Optional[str]) -> Optional[CaseStatus]:
    """Case status a step moves the case to; None for unknown or unmapped steps."""
    step = WorkflowStep.parse(step_id)
    return STEP_STATUS[step] if step is not None else None


class InstanceStatus(str, Enum):
    """Orchestrator-side status of a workflow instance."""
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


class OrchestratorEventType(str, Enum):
    """Events pushed by the orchestrator."""
    WORKFLOW_STARTED = "workflow_started"
    STEP_READY = "step_ready"
    STEP_ACTIVATED = "step_activated"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_TIMEOUT = "step_timeout"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_FAILED = "workflow_failed"
    WORKFLOW_ESCALATED = "workflow_escalated"
    ASSIGNMENT_REQUIRED = "assignment_required"
    APPROVAL_REQUIRED = "approval_required"


@dataclass(frozen=True)
class WorkflowConfiguration:
    """A workflow definition the orchestrator selected for some criteria."""
    id: str
    workflow_definition_id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class WorkflowInstance:
    """Snapshot of an orchestrator workflow run for one case."""
    id: str
    case_id: str
    status: InstanceStatus = InstanceStatus.RUNNING
    current_step_id: Optional[str] = None
    workflow_definition_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConfigurationCriteria:
    """What the orchestrator selects a workflow configuration by."""
    device_type: str
    service_type: str
    customer_tier: str
    priority: Priority = Priority.MEDIUM
    additional_context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowStartRequest:
    """Caller input for starting the workflow of a case."""
    device_type: Optional[str] = None
    service_type: Optional[str] = None
    customer_tier: Optional[str] = None
    priority: Optional[Priority] = None
    variables: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepResult:
    """Outcome of a workflow step reported back to the orchestrator."""
    status: str = "completed"
    output: Dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None


@dataclass(frozen=True)
class StepCompletionRequest:
    case_id: str
    step_id: str
    result: StepResult
    completed_by: str = "system"


@dataclass(frozen=True)
class CaseCompletionRequest:
    resolution: Optional[str] = None
    notes: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OrchestratorEvent:
    """An event pushed by the orchestrator, as received."""
    type: str
    instance_id: Optional[str]
    step_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class StepReadyAck:
    """Acknowledgement of a step-ready push."""
    case_id: str
    step_id: str
    step: Optional[WorkflowStep]
    new_status: Optional[CaseStatus]
    actions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class WorkflowStatusView:
    case_id: str
    instance: WorkflowInstance

    @property
    def status(self) -> InstanceStatus:
        return self.instance.status

    @property
    def current_step_id(self) -> Optional[str]:
        return self.instance.current_step_id
