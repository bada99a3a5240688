"""
Case Domain Layer
=================

Domain layer for the repair case aggregate.

Contains:
- Entities: Case (aggregate root), EscalationRecord, TimelineEntry
- Timeline payloads: typed event payloads plus OpaquePayload for unknown kinds

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from repairdesk.cases.domain.entities import (
    Case,
    EscalationRecord,
    TimelineEntry,
    TimelinePayload,
    StepReadyPayload,
    StepCompletedPayload,
    StepFailedPayload,
    EscalationPayload,
    WorkflowCompletedPayload,
    TechnicianAssignedPayload,
    WorkflowStartedPayload,
    StatusChangedPayload,
    ApprovalRequestedPayload,
    OpaquePayload,
    current_escalation_level,
    hours_between,
    payload_to_dict,
    payload_from_dict,
)

__all__ = [
    # Entities
    "Case",
    "EscalationRecord",
    "TimelineEntry",
    # Payloads
    "TimelinePayload",
    "StepReadyPayload",
    "StepCompletedPayload",
    "StepFailedPayload",
    "EscalationPayload",
    "WorkflowCompletedPayload",
    "TechnicianAssignedPayload",
    "WorkflowStartedPayload",
    "StatusChangedPayload",
    "ApprovalRequestedPayload",
    "OpaquePayload",
    # Helpers
    "current_escalation_level",
    "hours_between",
    "payload_to_dict",
    "payload_from_dict",
]
