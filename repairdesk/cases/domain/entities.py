"""
Case Domain Entities
====================

Pure Python domain entities for repair cases.

The Case is the aggregate root: escalation records, timeline entries and
the workflow reference are owned by it. Entities contain business rules
and are free of infrastructure concerns.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from repairdesk.config import (
    CaseStatus, Priority, EscalationType, SLAState, WorkflowState,
    TERMINAL_STATUSES, DEFAULT_CUSTOMER_TIER, DEFAULT_SERVICE_TYPE
)
from repairdesk.core import DomainException


def hours_between(start: datetime, end: datetime) -> float:
    """Hours from start to end (negative if end precedes start)."""
    return (end - start).total_seconds() / 3600


@dataclass
class Case:
    """
    Repair case tracked from creation to completion or cancellation.

    Invariants:
    - completed_at is set iff status is completed or cancelled
    - escalation_level never decreases
    """

    id: str
    priority: Priority
    status: CaseStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    # Classification used for SLA and workflow selection
    customer_tier: str = DEFAULT_CUSTOMER_TIER
    service_type: str = DEFAULT_SERVICE_TYPE
    device_type: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    estimated_value: Optional[float] = None
    resolution: Optional[str] = None

    # Lifecycle timestamps
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    sla_due_at: Optional[datetime] = None

    # SLA tracking
    escalation_level: int = 0
    last_sla_check: Optional[datetime] = None
    sla_status: Optional[SLAState] = None

    # References
    assigned_technician_id: Optional[str] = None
    workflow_instance_id: Optional[str] = None
    workflow_configuration_id: Optional[str] = None
    workflow_status: WorkflowState = WorkflowState.NONE
    current_step_id: Optional[str] = None

    def __post_init__(self):
        """Validate case on initialization."""
        if self.updated_at is None:
            self.updated_at = self.created_at

        if self.escalation_level < 0:
            raise ValueError("escalation_level cannot be negative")

        if self.is_terminal and self.completed_at is None:
            raise ValueError(f"{self.status.value} case must carry completed_at")

        if not self.is_terminal and self.completed_at is not None:
            raise ValueError(f"{self.status.value} case cannot carry completed_at")

        if self.assigned_at and self.assigned_at < self.created_at:
            raise ValueError("assigned_at cannot be before created_at")

    @property
    def is_terminal(self) -> bool:
        """Check if the case reached completed or cancelled."""
        return self.status in TERMINAL_STATUSES

    @property
    def has_responded(self) -> bool:
        """A case counts as responded once it left the open status."""
        return self.status != CaseStatus.OPEN

    def hours_elapsed(self, now: datetime) -> float:
        """Hours since the case was created."""
        return hours_between(self.created_at, now)

    def transition_to(self, status: CaseStatus, at: Optional[datetime] = None) -> bool:
        """
        Move the case to a new status.

        Returns:
            False if the case already had that status

        Raises:
            DomainException: if the case is already closed
        """
        if status == self.status:
            return False
        if self.is_terminal:
            raise DomainException(
                f"Case {self.id} is {self.status.value} and cannot move to {status.value}",
                {"case_id": self.id, "status": self.status.value, "requested": status.value}
            )

        at = at or datetime.now(timezone.utc)
        self.status = status
        self.updated_at = at
        if status in TERMINAL_STATUSES:
            self.completed_at = at
        return True

    def assign_technician(self, technician_id: str, at: Optional[datetime] = None) -> None:
        """Record a technician assignment; an open case becomes assigned."""
        at = at or datetime.now(timezone.utc)
        self.assigned_technician_id = technician_id
        self.assigned_at = at
        self.updated_at = at
        if self.status == CaseStatus.OPEN:
            self.status = CaseStatus.ASSIGNED

    def raise_escalation_level(self, level: int) -> None:
        """Raise the escalation level; lowering it is a domain error."""
        if level < self.escalation_level:
            raise DomainException(
                f"Escalation level of case {self.id} cannot drop from "
                f"{self.escalation_level} to {level}",
                {"case_id": self.id, "current": self.escalation_level, "requested": level}
            )
        self.escalation_level = level

    def attach_workflow(self, instance_id: str, configuration_id: Optional[str] = None) -> None:
        """Link a newly started workflow instance."""
        if self.workflow_status == WorkflowState.RUNNING:
            raise DomainException(
                f"Case {self.id} already has running workflow {self.workflow_instance_id}",
                {"case_id": self.id, "workflow_instance_id": self.workflow_instance_id}
            )
        self.workflow_instance_id = instance_id
        self.workflow_configuration_id = configuration_id
        self.workflow_status = WorkflowState.RUNNING
        self.current_step_id = None

    def finish_workflow(self, state: WorkflowState) -> None:
        """Move a running workflow to completed or failed."""
        if state not in (WorkflowState.COMPLETED, WorkflowState.FAILED):
            raise DomainException(f"{state.value} is not a final workflow state")
        if self.workflow_status == state:
            return
        if self.workflow_status != WorkflowState.RUNNING:
            raise DomainException(
                f"Workflow of case {self.id} is {self.workflow_status.value}, "
                f"cannot become {state.value}",
                {"case_id": self.id, "workflow_status": self.workflow_status.value}
            )
        self.workflow_status = state


@dataclass(frozen=True)
class EscalationRecord:
    """Append-only audit entry for one escalation of a case."""
    case_id: str
    level: int
    kind: EscalationType
    created_at: datetime
    sla_status: Optional[SLAState] = None
    id: Optional[str] = None


def current_escalation_level(records: List[EscalationRecord]) -> int:
    """Highest level across a case's escalation records, 0 when none."""
    return max((r.level for r in records), default=0)


# ========== Timeline payloads ==========

@dataclass(frozen=True)
class StepReadyPayload:
    kind = "step_ready"
    step_id: str
    instance_id: str
    mapped_status: Optional[str] = None


@dataclass(frozen=True)
class StepCompletedPayload:
    kind = "step_completed"
    step_id: str
    status: str
    completed_by: str
    output: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepFailedPayload:
    kind = "step_failed"
    step_id: Optional[str]
    reason: str


@dataclass(frozen=True)
class EscalationPayload:
    kind = "escalation"
    level: int
    escalation_type: str
    hours_overdue: float
    workflow_instance_id: Optional[str] = None


@dataclass(frozen=True)
class WorkflowCompletedPayload:
    kind = "workflow_completed"
    workflow_instance_id: Optional[str]
    completed_by: str


@dataclass(frozen=True)
class TechnicianAssignedPayload:
    kind = "technician_assigned"
    technician_id: str
    score: Optional[float] = None


@dataclass(frozen=True)
class WorkflowStartedPayload:
    kind = "workflow_started"
    workflow_instance_id: str
    configuration_id: Optional[str] = None


@dataclass(frozen=True)
class StatusChangedPayload:
    kind = "status_changed"
    old_status: str
    new_status: str


@dataclass(frozen=True)
class ApprovalRequestedPayload:
    kind = "approval_requested"
    step_id: Optional[str]
    approver_role: str


@dataclass(frozen=True)
class OpaquePayload:
    """Payload of an event type this version does not know about."""
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)


TimelinePayload = Union[
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
]

_KNOWN_PAYLOADS = {
    cls.kind: cls
    for cls in (
        StepReadyPayload,
        StepCompletedPayload,
        StepFailedPayload,
        EscalationPayload,
        WorkflowCompletedPayload,
        TechnicianAssignedPayload,
        WorkflowStartedPayload,
        StatusChangedPayload,
        ApprovalRequestedPayload,
    )
}


def payload_to_dict(payload: TimelinePayload) -> Dict[str, Any]:
    """Serialize a payload with its kind discriminator."""
    if isinstance(payload, OpaquePayload):
        return {"kind": payload.kind, **payload.data}
    return {"kind": payload.kind, **asdict(payload)}


def payload_from_dict(data: Dict[str, Any]) -> TimelinePayload:
    """
    Rebuild a payload from its serialized form.

    Unknown kinds, and known kinds with fields this version does not
    understand, come back as OpaquePayload so nothing is lost.
    """
    body = dict(data)
    kind = body.pop("kind", "unknown")
    cls = _KNOWN_PAYLOADS.get(kind)
    if cls is not None:
        names = {f.name for f in fields(cls)}
        if set(body) <= names:
            try:
                return cls(**body)
            except TypeError:
                pass
    return OpaquePayload(kind=kind, data=body)


@dataclass(frozen=True)
class TimelineEntry:
    """One event in a case's history."""
    case_id: str
    event_type: str
    description: str
    payload: TimelinePayload
    created_by: str = "system"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[str] = None
