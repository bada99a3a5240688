"""
Assignment Domain Entities
==========================

Technicians, assignment criteria and the results of scoring and
rebalancing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, Optional

from repairdesk.config import Priority


@dataclass
class Technician:
    """
    A technician as seen by assignment.

    current_workload is the number of the technician's cases in any
    non-terminal status at the time the technician was loaded.
    """
    id: str
    name: str
    email: Optional[str] = None
    is_active: bool = True
    skills: FrozenSet[str] = field(default_factory=frozenset)
    current_workload: int = 0
    location: Optional[str] = None

    def __post_init__(self):
        self.skills = frozenset(self.skills)
        if self.current_workload < 0:
            raise ValueError("current_workload cannot be negative")

    def has_skill(self, tag: str) -> bool:
        return tag in self.skills


@dataclass(frozen=True)
class AssignmentCriteria:
    """What a case needs from its technician."""
    device_type: Optional[str] = None
    category: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    location: Optional[str] = None

    @property
    def requested_skills(self) -> List[str]:
        return [tag for tag in (self.device_type, self.category) if tag]


@dataclass(frozen=True)
class TechnicianScore:
    """Weighted fitness of one technician for one set of criteria."""
    technician: Technician
    score: float
    skill_match: float
    workload_score: float
    availability_score: float
    location_score: float


@dataclass(frozen=True)
class ReassignmentCandidate:
    """A case of an overloaded technician that could be moved."""
    case_id: str
    priority: Priority
    created_at: datetime


@dataclass(frozen=True)
class ReassignmentSuggestion:
    """Proposal to move a case to a less loaded technician."""
    case_id: str
    current_technician_id: str
    suggested_technician_id: str
    reason: str


@dataclass(frozen=True)
class TechnicianPerformance:
    """Completion statistics of a technician over a period."""
    technician_id: str
    period_days: int
    completed_cases: int = 0
    average_resolution_hours: float = 0.0
    on_time_completion_rate: float = 0.0
