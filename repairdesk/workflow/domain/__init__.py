"""
Workflow Domain Layer
=====================

Contains:
- WorkflowStep table with its exhaustive step -> case status mapping
- WorkflowInstance / WorkflowConfiguration snapshots
- Request and acknowledgement values of the integration operations
"""

from repairdesk.workflow.domain.entities import (
    WorkflowStep,
    STEP_STATUS,
    status_for_step,
    InstanceStatus,
    OrchestratorEventType,
    WorkflowConfiguration,
    WorkflowInstance,
    ConfigurationCriteria,
    WorkflowStartRequest,
    StepResult,
    StepCompletionRequest,
    CaseCompletionRequest,
    OrchestratorEvent,
    StepReadyAck,
    WorkflowStatusView,
)

__all__ = [
    "WorkflowStep",
    "STEP_STATUS",
    "status_for_step",
    "InstanceStatus",
    "OrchestratorEventType",
    "WorkflowConfiguration",
    "WorkflowInstance",
    "ConfigurationCriteria",
    "WorkflowStartRequest",
    "StepResult",
    "StepCompletionRequest",
    "CaseCompletionRequest",
    "OrchestratorEvent",
    "StepReadyAck",
    "WorkflowStatusView",
]
