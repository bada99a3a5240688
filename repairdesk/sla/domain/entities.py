"""
SLA Domain Entities
===================

Results produced by the SLA evaluator, the escalation tracker and the sweep.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from repairdesk.config import CaseStatus, EscalationType, Priority, SLAState, SLAType


@dataclass(frozen=True)
class SubCheckResult:
    """
    Outcome of one SLA clock (response or resolution).

    actual_hours is None while the clock is still running.
    """
    sla_type: SLAType
    target_hours: float
    elapsed_hours: float
    breached: bool
    actual_hours: Optional[float] = None

    @property
    def measured_hours(self) -> float:
        """Actual hours when known, otherwise the running elapsed hours."""
        return self.actual_hours if self.actual_hours is not None else self.elapsed_hours

    @property
    def ratio(self) -> float:
        """Measured hours as a fraction of the target (0 when no target)."""
        if self.target_hours <= 0:
            return 0.0
        return self.measured_hours / self.target_hours

    @property
    def breach_hours(self) -> float:
        """Hours past the target, 0 when not breached."""
        if not self.breached:
            return 0.0
        return max(0.0, self.measured_hours - self.target_hours)


@dataclass(frozen=True)
class ComplianceResult:
    """SLA compliance of a case at a point in time."""
    case_id: str
    status: SLAState
    response: SubCheckResult
    resolution: SubCheckResult
    hours_elapsed: float
    evaluated_at: datetime
    penalty_amount: float = 0.0
    breach_reason: Optional[str] = None
    sla_configuration_id: Optional[str] = None

    @property
    def is_breached(self) -> bool:
        return self.status == SLAState.BREACHED


@dataclass(frozen=True)
class EscalationDecision:
    """Tracker verdict for one case."""
    should_escalate: bool
    current_level: int
    next_check_at: datetime
    level: Optional[int] = None
    kind: Optional[EscalationType] = None
    notify_roles: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class EscalationContext:
    """Everything the workflow and notification side need about an escalation."""
    case_id: str
    status: CaseStatus
    priority: Priority
    kind: EscalationType
    level: int
    hours_overdue: float
    assigned_technician_id: Optional[str] = None
    workflow_instance_id: Optional[str] = None
    notify_roles: List[str] = field(default_factory=list)


@dataclass
class MonitoringResult:
    """Per-case outcome of an SLA sweep."""
    case_id: str
    sla_status: SLAState
    escalation_level: int
    next_check_at: datetime
    escalation_required: bool = False
    actions: List[str] = field(default_factory=list)
    penalty_amount: float = 0.0
