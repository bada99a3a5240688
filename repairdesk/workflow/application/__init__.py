"""
Workflow Application Layer
==========================

Contains:
- Services: WorkflowIntegrationService (case -> orchestrator) and
  WorkflowEventHandler (orchestrator -> case)
- DTOs: orchestrator wire messages and controller responses
- Interfaces: IOrchestratorClient
"""

from repairdesk.workflow.application.dto import (
    WorkflowConfigurationMessage,
    WorkflowInstanceMessage,
    OrchestratorEventMessage,
    StepReadyAckResponse,
    WorkflowStatusResponse,
)
from repairdesk.workflow.application.services import (
    IOrchestratorClient,
    WorkflowIntegrationService,
    WorkflowEventHandler,
    criteria_for_case,
)

__all__ = [
    # DTOs
    "WorkflowConfigurationMessage",
    "WorkflowInstanceMessage",
    "OrchestratorEventMessage",
    "StepReadyAckResponse",
    "WorkflowStatusResponse",
    # Services
    "WorkflowIntegrationService",
    "WorkflowEventHandler",
    "criteria_for_case",
    # Interfaces
    "IOrchestratorClient",
]
