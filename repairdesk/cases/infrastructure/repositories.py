"""
Case Infrastructure Repositories
================================

Concrete implementations of the case repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional
from uuid import uuid4

from sqlalchemy import case as sql_case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from repairdesk.cases.application import (
    ICaseRepository, IEscalationRepository, ITimelineRepository
)
from repairdesk.cases.domain import (
    Case, EscalationRecord, TimelineEntry, payload_from_dict, payload_to_dict
)
from repairdesk.cases.infrastructure.models import (
    RepairCaseModel, CaseEscalationModel, CaseTimelineModel,
    CaseDocumentModel, InventoryReservationModel
)
from repairdesk.config import (
    ACTIVE_STATUSES, PRIORITY_ORDER, CaseStatus, EscalationType, Priority,
    SLAState, WorkflowState
)
from repairdesk.core import RepositoryException

PENDING_DOCUMENT_STATUSES = ("draft", "pending_approval")

_PRIORITY_RANK = sql_case(
    {p.value: rank for rank, p in enumerate(PRIORITY_ORDER)},
    value=RepairCaseModel.priority,
    else_=-1,
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_case(model: RepairCaseModel) -> Case:
    return Case(
        id=model.id,
        priority=Priority(model.priority),
        status=CaseStatus(model.status),
        created_at=_utc(model.created_at),
        updated_at=_utc(model.updated_at),
        customer_tier=model.customer_tier,
        service_type=model.service_type,
        device_type=model.device_type,
        category=model.category,
        location=model.location,
        estimated_value=model.estimated_value,
        resolution=model.resolution,
        assigned_at=_utc(model.assigned_at),
        completed_at=_utc(model.completed_at),
        sla_due_at=_utc(model.sla_due_at),
        escalation_level=model.escalation_level,
        last_sla_check=_utc(model.last_sla_check),
        sla_status=SLAState(model.sla_status) if model.sla_status else None,
        assigned_technician_id=model.assigned_technician_id,
        workflow_instance_id=model.workflow_instance_id,
        workflow_configuration_id=model.workflow_configuration_id,
        workflow_status=WorkflowState(model.workflow_status),
        current_step_id=model.current_step_id,
    )


class SQLAlchemyCaseRepository(ICaseRepository):
    """
    SQLAlchemy implementation of case repository.

    Handles persistence of Case entities using async SQLAlchemy.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, case_id: str) -> Optional[Case]:
        """Get case by ID."""
        model = await self._session.get(RepairCaseModel, case_id, populate_existing=True)
        return _to_case(model) if model else None

    async def get_by_workflow_instance(self, instance_id: str) -> Optional[Case]:
        """Get the case linked to a workflow instance."""
        stmt = (
            select(RepairCaseModel)
            .where(RepairCaseModel.workflow_instance_id == instance_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalars().first()
        return _to_case(model) if model else None

    async def save(self, case: Case) -> Case:
        """Insert or update a case."""
        try:
            model = await self._session.get(RepairCaseModel, case.id, populate_existing=True)
            if model is None:
                model = RepairCaseModel(id=case.id, escalation_level=0)
                model.last_sla_check = case.last_sla_check
                model.sla_status = case.sla_status.value if case.sla_status else None
                self._session.add(model)

            # last_sla_check and sla_status of stored cases change only through
            # claim_sla_check and record_sla_result
            model.priority = case.priority.value
            model.status = case.status.value
            model.customer_tier = case.customer_tier
            model.service_type = case.service_type
            model.device_type = case.device_type
            model.category = case.category
            model.location = case.location
            model.estimated_value = case.estimated_value
            model.resolution = case.resolution
            model.created_at = case.created_at
            model.updated_at = case.updated_at
            model.assigned_at = case.assigned_at
            model.completed_at = case.completed_at
            model.sla_due_at = case.sla_due_at
            model.escalation_level = max(model.escalation_level, case.escalation_level)
            model.assigned_technician_id = case.assigned_technician_id
            model.workflow_instance_id = case.workflow_instance_id
            model.workflow_configuration_id = case.workflow_configuration_id
            model.workflow_status = case.workflow_status.value
            model.current_step_id = case.current_step_id

            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to save case {case.id}: {e}") from e

        return case

    async def list_due_for_sla_check(self, checked_before: datetime) -> List[Case]:
        """Active cases not checked since checked_before, most urgent and oldest first."""
        stmt = (
            select(RepairCaseModel)
            .where(RepairCaseModel.status.in_([s.value for s in ACTIVE_STATUSES]))
            .where(or_(
                RepairCaseModel.last_sla_check.is_(None),
                RepairCaseModel.last_sla_check < checked_before,
            ))
            .order_by(_PRIORITY_RANK.desc(), RepairCaseModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return [_to_case(m) for m in result.scalars().all()]

    async def claim_sla_check(
        self,
        case_id: str,
        expected_last_check: Optional[datetime],
        checked_at: datetime
    ) -> bool:
        """Optimistic update on last_sla_check."""
        if expected_last_check is None:
            guard = RepairCaseModel.last_sla_check.is_(None)
        else:
            guard = RepairCaseModel.last_sla_check == expected_last_check

        stmt = (
            update(RepairCaseModel)
            .where(RepairCaseModel.id == case_id, guard)
            .values(last_sla_check=checked_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def record_sla_result(
        self,
        case_id: str,
        sla_status: SLAState,
        escalation_level: int
    ) -> None:
        """Persist compliance status; escalation level only moves up."""
        level = sql_case(
            (RepairCaseModel.escalation_level < escalation_level, escalation_level),
            else_=RepairCaseModel.escalation_level,
        )
        stmt = (
            update(RepairCaseModel)
            .where(RepairCaseModel.id == case_id)
            .values(sla_status=sla_status.value, escalation_level=level)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def list_pending_documents(self, case_id: str) -> List[str]:
        stmt = select(CaseDocumentModel.document_type).where(
            CaseDocumentModel.case_id == case_id,
            CaseDocumentModel.status.in_(PENDING_DOCUMENT_STATUSES),
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def release_inventory_reservations(self, case_id: str, released_at: datetime) -> int:
        stmt = (
            update(InventoryReservationModel)
            .where(
                InventoryReservationModel.case_id == case_id,
                InventoryReservationModel.status == "reserved",
            )
            .values(status="released", released_at=released_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """SAVEPOINT on the shared session; rolled back if the block raises."""
        async with self._session.begin_nested():
            yield


class SQLAlchemyEscalationRepository(IEscalationRepository):
    """Append-only escalation audit trail."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, record: EscalationRecord) -> EscalationRecord:
        """Append an escalation record."""
        model = CaseEscalationModel(
            id=record.id or str(uuid4()),
            case_id=record.case_id,
            level=record.level,
            escalation_type=record.kind.value,
            sla_status=record.sla_status.value if record.sla_status else None,
            created_at=record.created_at,
        )
        self._session.add(model)
        await self._session.flush()

        return EscalationRecord(
            case_id=record.case_id,
            level=record.level,
            kind=record.kind,
            created_at=record.created_at,
            sla_status=record.sla_status,
            id=model.id,
        )

    async def list_for_case(self, case_id: str) -> List[EscalationRecord]:
        stmt = (
            select(CaseEscalationModel)
            .where(CaseEscalationModel.case_id == case_id)
            .order_by(CaseEscalationModel.created_at.asc(), CaseEscalationModel.level.asc())
        )
        result = await self._session.execute(stmt)
        return [
            EscalationRecord(
                case_id=m.case_id,
                level=m.level,
                kind=EscalationType(m.escalation_type),
                created_at=_utc(m.created_at),
                sla_status=SLAState(m.sla_status) if m.sla_status else None,
                id=m.id,
            )
            for m in result.scalars().all()
        ]


class SQLAlchemyTimelineRepository(ITimelineRepository):
    """Case timeline with typed payloads stored as JSON."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, entry: TimelineEntry) -> TimelineEntry:
        model = CaseTimelineModel(
            id=entry.id or str(uuid4()),
            case_id=entry.case_id,
            event_type=entry.event_type,
            description=entry.description,
            payload=payload_to_dict(entry.payload),
            created_by=entry.created_by,
            created_at=entry.created_at,
        )
        self._session.add(model)
        await self._session.flush()

        return TimelineEntry(
            case_id=entry.case_id,
            event_type=entry.event_type,
            description=entry.description,
            payload=entry.payload,
            created_by=entry.created_by,
            created_at=entry.created_at,
            id=model.id,
        )

    async def list_for_case(self, case_id: str) -> List[TimelineEntry]:
        stmt = (
            select(CaseTimelineModel)
            .where(CaseTimelineModel.case_id == case_id)
            .order_by(CaseTimelineModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [
            TimelineEntry(
                case_id=m.case_id,
                event_type=m.event_type,
                description=m.description,
                payload=payload_from_dict(m.payload or {}),
                created_by=m.created_by,
                created_at=_utc(m.created_at),
                id=m.id,
            )
            for m in result.scalars().all()
        ]
