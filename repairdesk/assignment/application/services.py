"""
Assignment Application Services
===============================

Application services for technician assignment and workload rebalancing.

Orchestrates business logic between the scorer and the technician store.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from repairdesk.assignment.domain import (
    AssignmentCriteria, ReassignmentCandidate, ReassignmentSuggestion,
    Technician, TechnicianPerformance, TechnicianScore, TechnicianScorer
)
from repairdesk.cases.application import CaseService
from repairdesk.cases.domain import TechnicianAssignedPayload
from repairdesk.config import Settings
from repairdesk.core import DomainException
from repairdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Repository Interfaces ==========

class ITechnicianRepository(ABC):
    """Interface for technician data access."""

    @abstractmethod
    async def get_by_id(self, technician_id: str) -> Optional[Technician]:
        """Get technician with current workload."""

    @abstractmethod
    async def list_active(self) -> List[Technician]:
        """All active technicians with current workloads."""

    @abstractmethod
    async def get_workload(self, technician_id: str) -> int:
        """Number of the technician's cases in a non-terminal status."""

    @abstractmethod
    async def assign_case(
        self,
        case_id: str,
        technician_id: str,
        max_workload: int,
        assigned_at: datetime
    ) -> bool:
        """
        Assign the case only if the technician is still under max_workload.

        Returns False when the workload check fails at write time.
        """

    @abstractmethod
    async def list_reassignable_cases(self, technician_id: str) -> List[ReassignmentCandidate]:
        """Cases in assigned, waiting_parts or waiting_customer status."""

    @abstractmethod
    async def close_active_assignments(self, case_id: str, closed_at: datetime) -> int:
        """Close open assignment records of a case. Returns number closed."""

    @abstractmethod
    async def get_performance(self, technician_id: str, since: datetime) -> TechnicianPerformance:
        """Completion statistics for cases created since the given time."""


# ========== Application Services ==========

class TechnicianAssignmentService:
    """
    Service for technician assignment.

    Ranking happens on a snapshot; the write goes through the store's
    conditional assign so two callers cannot push a technician past the cap.
    """

    def __init__(
        self,
        settings: Settings,
        technician_repository: ITechnicianRepository,
        case_service: CaseService,
        scorer: Optional[TechnicianScorer] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._max_cases = settings.max_cases_per_technician
        self._batch_size = settings.reassignment_batch_size
        self._technician_repo = technician_repository
        self._case_service = case_service
        self._scorer = scorer or TechnicianScorer(self._max_cases)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def auto_assign(
        self,
        case_id: str,
        criteria: Optional[AssignmentCriteria] = None
    ) -> Optional[Technician]:
        """
        Assign the best eligible technician to a case.

        Returns:
            The assigned technician, or None when nobody is eligible

        Raises:
            ResourceNotFoundException: if the case does not exist
            DomainException: if the case is already closed
        """
        case = await self._case_service.get_case(case_id)
        if case.is_terminal:
            raise DomainException(
                f"Cannot assign a technician to {case.status.value} case {case_id}",
                {"case_id": case_id}
            )

        ranked = self._scorer.rank(await self._technician_repo.list_active(), criteria)
        if not ranked:
            logger.info("No eligible technician", extra={"case_id": case_id})
            return None

        for candidate in ranked:
            technician = candidate.technician
            assigned = await self._technician_repo.assign_case(
                case_id, technician.id, self._max_cases, self._clock()
            )
            if not assigned:
                logger.info(
                    "Technician reached capacity before assignment, trying next",
                    extra={"case_id": case_id, "technician_id": technician.id}
                )
                continue

            logger.info(
                "Technician auto-assigned",
                extra={
                    "case_id": case_id,
                    "technician_id": technician.id,
                    "score": round(candidate.score, 2),
                }
            )
            await self._case_service.add_timeline_entry(
                case_id,
                "technician_assigned",
                f"Technician {technician.name} assigned automatically",
                TechnicianAssignedPayload(technician_id=technician.id, score=candidate.score),
            )
            return technician

        return None

    async def get_available_technicians(
        self,
        criteria: Optional[AssignmentCriteria] = None
    ) -> List[TechnicianScore]:
        """Eligible technicians ranked best first."""
        return self._scorer.rank(await self._technician_repo.list_active(), criteria)

    async def get_technician_workload(self, technician_id: str) -> int:
        return await self._technician_repo.get_workload(technician_id)

    async def can_assign_more_cases(self, technician_id: str) -> bool:
        return await self._technician_repo.get_workload(technician_id) < self._max_cases

    async def suggest_reassignments(self) -> List[ReassignmentSuggestion]:
        """Proposals moving cases off technicians above the cap."""
        technicians = await self._technician_repo.list_active()
        overloaded = [t for t in technicians if t.current_workload > self._max_cases]
        if not overloaded:
            return []

        cases_by_technician = {
            t.id: await self._technician_repo.list_reassignable_cases(t.id)
            for t in overloaded
        }
        suggestions = self._scorer.plan_reassignments(
            technicians, cases_by_technician, self._batch_size
        )

        logger.info(
            "Reassignments suggested",
            extra={"overloaded": len(overloaded), "suggestions": len(suggestions)}
        )
        return suggestions

    async def close_case_assignments(self, case_id: str) -> int:
        """Close the open assignment records of a finished case."""
        return await self._technician_repo.close_active_assignments(case_id, self._clock())

    async def get_technician_performance(
        self,
        technician_id: str,
        days: int = 30
    ) -> TechnicianPerformance:
        since = self._clock() - timedelta(days=days)
        performance = await self._technician_repo.get_performance(technician_id, since)
        return replace(performance, period_days=days)
