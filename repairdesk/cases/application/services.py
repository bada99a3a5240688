"""
Case Application Services
=========================

Repository interfaces for the case aggregate and a thin service used by the
other bounded contexts to load cases and record their history.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import AsyncContextManager, Callable, List, Optional

from repairdesk.cases.domain import (
    Case, EscalationRecord, StatusChangedPayload, TimelineEntry, TimelinePayload
)
from repairdesk.config import CaseStatus, SLAState
from repairdesk.core import ResourceNotFoundException


# ========== Repository Interfaces ==========

class ICaseRepository(ABC):
    """Interface for case data access."""

    @abstractmethod
    async def get_by_id(self, case_id: str) -> Optional[Case]:
        """Get case by ID."""

    @abstractmethod
    async def get_by_workflow_instance(self, instance_id: str) -> Optional[Case]:
        """Get the case linked to a workflow instance."""

    @abstractmethod
    async def save(self, case: Case) -> Case:
        """Insert or update a case."""

    @abstractmethod
    async def list_due_for_sla_check(self, checked_before: datetime) -> List[Case]:
        """
        Non-terminal cases whose last SLA check is null or older than
        checked_before, priority descending then oldest first.
        """

    @abstractmethod
    async def claim_sla_check(
        self,
        case_id: str,
        expected_last_check: Optional[datetime],
        checked_at: datetime
    ) -> bool:
        """
        Set last_sla_check to checked_at only if it still equals
        expected_last_check. Returns False when another run got there first.
        """

    @abstractmethod
    async def record_sla_result(
        self,
        case_id: str,
        sla_status: SLAState,
        escalation_level: int
    ) -> None:
        """Persist compliance status and escalation level (never lowered)."""

    @abstractmethod
    async def list_pending_documents(self, case_id: str) -> List[str]:
        """Document types still in draft or pending approval."""

    @abstractmethod
    async def release_inventory_reservations(self, case_id: str, released_at: datetime) -> int:
        """Release reserved parts of a case. Returns number released."""

    @abstractmethod
    def savepoint(self) -> AsyncContextManager[None]:
        """
        Scope whose writes are undone together if it raises.

        Nested inside the surrounding unit of work; the SLA sweep opens one
        per case.
        """


class IEscalationRepository(ABC):
    """Interface for the append-only escalation audit trail."""

    @abstractmethod
    async def append(self, record: EscalationRecord) -> EscalationRecord:
        """Append an escalation record."""

    @abstractmethod
    async def list_for_case(self, case_id: str) -> List[EscalationRecord]:
        """All escalation records of a case, oldest first."""


class ITimelineRepository(ABC):
    """Interface for case timeline storage."""

    @abstractmethod
    async def append(self, entry: TimelineEntry) -> TimelineEntry:
        """Append a timeline entry."""

    @abstractmethod
    async def list_for_case(self, case_id: str) -> List[TimelineEntry]:
        """Timeline of a case, oldest first."""


# ========== Application Services ==========

class CaseService:
    """Loads cases and appends to their timeline on behalf of other modules."""

    def __init__(
        self,
        case_repository: ICaseRepository,
        timeline_repository: ITimelineRepository,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._case_repo = case_repository
        self._timeline_repo = timeline_repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_case(self, case_id: str) -> Case:
        """
        Get a case or fail.

        Raises:
            ResourceNotFoundException: if the case does not exist
        """
        case = await self._case_repo.get_by_id(case_id)
        if case is None:
            raise ResourceNotFoundException("Case", case_id)
        return case

    async def find_by_workflow_instance(self, instance_id: str) -> Optional[Case]:
        return await self._case_repo.get_by_workflow_instance(instance_id)

    async def save(self, case: Case) -> Case:
        return await self._case_repo.save(case)

    async def add_timeline_entry(
        self,
        case_id: str,
        event_type: str,
        description: str,
        payload: TimelinePayload,
        created_by: str = "system"
    ) -> TimelineEntry:
        entry = TimelineEntry(
            case_id=case_id,
            event_type=event_type,
            description=description,
            payload=payload,
            created_by=created_by,
            created_at=self._clock(),
        )
        return await self._timeline_repo.append(entry)

    async def get_timeline(self, case_id: str) -> List[TimelineEntry]:
        return await self._timeline_repo.list_for_case(case_id)

    async def change_status(
        self,
        case_id: str,
        status: CaseStatus,
        changed_by: str = "system"
    ) -> Case:
        """
        Move a case to a new status and record it on the timeline.

        Raises:
            ResourceNotFoundException: if the case does not exist
            DomainException: if the case is already closed
        """
        case = await self.get_case(case_id)
        old_status = case.status
        if not case.transition_to(status, self._clock()):
            return case

        case = await self._case_repo.save(case)
        await self.add_timeline_entry(
            case_id,
            "status_changed",
            f"Status changed from {old_status.value} to {status.value}",
            StatusChangedPayload(old_status=old_status.value, new_status=status.value),
            created_by=changed_by,
        )
        return case

    async def list_pending_documents(self, case_id: str) -> List[str]:
        return await self._case_repo.list_pending_documents(case_id)

    async def release_inventory_reservations(self, case_id: str) -> int:
        return await self._case_repo.release_inventory_reservations(case_id, self._clock())

    def savepoint(self) -> AsyncContextManager[None]:
        return self._case_repo.savepoint()
