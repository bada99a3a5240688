"""
Assignment Domain Services
==========================

TechnicianScorer ranks technicians by a weighted fitness score and plans
workload rebalancing. It works on a point-in-time snapshot and holds no
mutable state.

Weights:
- Skill match       40%
- Workload balance  30%
- Availability      20%
- Location          10%
"""

from typing import Dict, Iterable, List, Optional

from repairdesk.assignment.domain.entities import (
    AssignmentCriteria, ReassignmentCandidate, ReassignmentSuggestion,
    Technician, TechnicianScore
)
from repairdesk.config import PRIORITY_ORDER

SKILL_WEIGHT = 0.4
WORKLOAD_WEIGHT = 0.3
AVAILABILITY_WEIGHT = 0.2
LOCATION_WEIGHT = 0.1

NEUTRAL_SKILL_SCORE = 50.0
AVAILABLE_SCORE = 100.0
LOCATION_MATCH_SCORE = 100.0
LOCATION_MISMATCH_SCORE = 30.0
LOCATION_UNKNOWN_SCORE = 50.0


class TechnicianScorer:
    """Scores, filters and ranks technicians against assignment criteria."""

    def __init__(self, max_cases_per_technician: int):
        if max_cases_per_technician < 1:
            raise ValueError("max_cases_per_technician must be at least 1")
        self.max_cases = max_cases_per_technician

    def is_eligible(self, technician: Technician, criteria: Optional[AssignmentCriteria] = None) -> bool:
        """Active, under the cap and, when skills are requested, holding one of them."""
        if not technician.is_active or technician.current_workload >= self.max_cases:
            return False
        if criteria is not None and criteria.requested_skills:
            return any(technician.has_skill(tag) for tag in criteria.requested_skills)
        return True

    def score(self, technician: Technician, criteria: Optional[AssignmentCriteria] = None) -> TechnicianScore:
        """Weighted score in [0, 100]."""
        skill = self.skill_match(technician, criteria)
        workload = max(0.0, (self.max_cases - technician.current_workload) / self.max_cases * 100)
        availability = AVAILABLE_SCORE
        location = self.location_score(technician, criteria)

        total = (
            skill * SKILL_WEIGHT
            + workload * WORKLOAD_WEIGHT
            + availability * AVAILABILITY_WEIGHT
            + location * LOCATION_WEIGHT
        )
        return TechnicianScore(
            technician=technician,
            score=min(100.0, max(0.0, total)),
            skill_match=skill,
            workload_score=workload,
            availability_score=availability,
            location_score=location,
        )

    @staticmethod
    def skill_match(technician: Technician, criteria: Optional[AssignmentCriteria]) -> float:
        requested = criteria.requested_skills if criteria else []
        if not requested:
            return NEUTRAL_SKILL_SCORE
        matched = sum(1 for tag in requested if technician.has_skill(tag))
        return matched / len(requested) * 100

    @staticmethod
    def location_score(technician: Technician, criteria: Optional[AssignmentCriteria]) -> float:
        wanted = criteria.location if criteria else None
        if not wanted or not technician.location:
            return LOCATION_UNKNOWN_SCORE
        if technician.location == wanted:
            return LOCATION_MATCH_SCORE
        return LOCATION_MISMATCH_SCORE

    def rank(
        self,
        technicians: Iterable[Technician],
        criteria: Optional[AssignmentCriteria] = None
    ) -> List[TechnicianScore]:
        """
        Eligible technicians, best first.

        Ties are broken by lower workload, then by technician id.
        """
        scored = [self.score(t, criteria) for t in technicians if self.is_eligible(t, criteria)]
        scored.sort(key=lambda s: (-s.score, s.technician.current_workload, s.technician.id))
        return scored

    def select(
        self,
        technicians: Iterable[Technician],
        criteria: Optional[AssignmentCriteria] = None
    ) -> Optional[TechnicianScore]:
        ranked = self.rank(technicians, criteria)
        return ranked[0] if ranked else None

    @staticmethod
    def order_for_reassignment(candidates: Iterable[ReassignmentCandidate]) -> List[ReassignmentCandidate]:
        """Lowest priority first, then most recent first."""
        by_recency = sorted(candidates, key=lambda c: c.created_at, reverse=True)
        return sorted(by_recency, key=lambda c: PRIORITY_ORDER.index(c.priority))

    def plan_reassignments(
        self,
        technicians: List[Technician],
        cases_by_technician: Dict[str, List[ReassignmentCandidate]],
        batch_size: int
    ) -> List[ReassignmentSuggestion]:
        """
        Propose moving cases away from technicians above the cap.

        Workloads are projected as suggestions are made, so one receiving
        technician is never pushed to the cap by several proposals.
        """
        active = [t for t in technicians if t.is_active]
        projected = {t.id: t.current_workload for t in active}
        names = {t.id: t.name for t in active}

        overloaded = sorted(
            (t for t in active if t.current_workload > self.max_cases),
            key=lambda t: (-t.current_workload, t.id)
        )

        suggestions = []
        for source in overloaded:
            candidates = self.order_for_reassignment(cases_by_technician.get(source.id, []))
            for candidate in candidates[:batch_size]:
                receivers = [
                    tid for tid, load in projected.items()
                    if tid != source.id and load < self.max_cases
                ]
                if not receivers:
                    break
                target = min(receivers, key=lambda tid: (projected[tid], tid))

                suggestions.append(ReassignmentSuggestion(
                    case_id=candidate.case_id,
                    current_technician_id=source.id,
                    suggested_technician_id=target,
                    reason=(
                        f"Workload balancing: {names[source.id]} ({projected[source.id]} cases) "
                        f"-> {names[target]} ({projected[target]} cases)"
                    ),
                ))
                projected[source.id] -= 1
                projected[target] += 1

        return suggestions
