"""
Assignment Infrastructure Repositories
======================================

SQLAlchemy implementation of the technician repository.

Workload is always counted from repair_cases so it cannot drift from the
cases themselves.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import case as sql_case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from repairdesk.assignment.application import ITechnicianRepository
from repairdesk.assignment.domain import (
    ReassignmentCandidate, Technician, TechnicianPerformance
)
from repairdesk.assignment.infrastructure.models import (
    TechnicianAssignmentModel, TechnicianModel
)
from repairdesk.cases.infrastructure.models import RepairCaseModel
from repairdesk.config import (
    ACTIVE_STATUSES, REASSIGNABLE_STATUSES, CaseStatus, Priority
)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _workload_of(technician_id_column):
    """Correlated count of active cases for a technician id column."""
    cases = aliased(RepairCaseModel)
    return (
        select(func.count(cases.id))
        .where(cases.assigned_technician_id == technician_id_column, cases.status.in_(_ACTIVE))
        .scalar_subquery()
    )


def _to_technician(model: TechnicianModel, workload: int) -> Technician:
    return Technician(
        id=model.id,
        name=model.name,
        email=model.email,
        is_active=model.is_active,
        skills=frozenset(model.skills or []),
        current_workload=int(workload or 0),
        location=model.location,
    )


class SQLAlchemyTechnicianRepository(ITechnicianRepository):
    """
    SQLAlchemy implementation of technician repository.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, technician_id: str) -> Optional[Technician]:
        stmt = (
            select(TechnicianModel, _workload_of(TechnicianModel.id).label("workload"))
            .where(TechnicianModel.id == technician_id)
        )
        row = (await self._session.execute(stmt)).first()
        return _to_technician(row[0], row[1]) if row else None

    async def list_active(self) -> List[Technician]:
        stmt = (
            select(TechnicianModel, _workload_of(TechnicianModel.id).label("workload"))
            .where(TechnicianModel.is_active.is_(True))
            .order_by(TechnicianModel.id)
        )
        result = await self._session.execute(stmt)
        return [_to_technician(model, workload) for model, workload in result.all()]

    async def get_workload(self, technician_id: str) -> int:
        stmt = select(func.count(RepairCaseModel.id)).where(
            RepairCaseModel.assigned_technician_id == technician_id,
            RepairCaseModel.status.in_(_ACTIVE),
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def assign_case(
        self,
        case_id: str,
        technician_id: str,
        max_workload: int,
        assigned_at: datetime
    ) -> bool:
        """Conditional update: the workload check and the write are one statement."""
        stmt = (
            update(RepairCaseModel)
            .where(
                RepairCaseModel.id == case_id,
                _workload_of(technician_id) < max_workload,
            )
            .values(
                assigned_technician_id=technician_id,
                assigned_at=assigned_at,
                updated_at=assigned_at,
                status=sql_case(
                    (RepairCaseModel.status == CaseStatus.OPEN.value, CaseStatus.ASSIGNED.value),
                    else_=RepairCaseModel.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            return False

        await self._session.execute(
            update(TechnicianAssignmentModel)
            .where(
                TechnicianAssignmentModel.case_id == case_id,
                TechnicianAssignmentModel.status == "active",
            )
            .values(status="transferred", closed_at=assigned_at)
            .execution_options(synchronize_session=False)
        )
        self._session.add(TechnicianAssignmentModel(
            case_id=case_id,
            technician_id=technician_id,
            status="active",
            assigned_at=assigned_at,
        ))
        await self._session.flush()
        return True

    async def list_reassignable_cases(self, technician_id: str) -> List[ReassignmentCandidate]:
        stmt = select(
            RepairCaseModel.id, RepairCaseModel.priority, RepairCaseModel.created_at
        ).where(
            RepairCaseModel.assigned_technician_id == technician_id,
            RepairCaseModel.status.in_([s.value for s in REASSIGNABLE_STATUSES]),
        )
        result = await self._session.execute(stmt)
        return [
            ReassignmentCandidate(case_id=cid, priority=Priority(priority), created_at=_utc(created_at))
            for cid, priority, created_at in result.all()
        ]

    async def close_active_assignments(self, case_id: str, closed_at: datetime) -> int:
        stmt = (
            update(TechnicianAssignmentModel)
            .where(
                TechnicianAssignmentModel.case_id == case_id,
                TechnicianAssignmentModel.status == "active",
            )
            .values(status="closed", closed_at=closed_at)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def get_performance(self, technician_id: str, since: datetime) -> TechnicianPerformance:
        stmt = select(
            RepairCaseModel.created_at, RepairCaseModel.completed_at, RepairCaseModel.sla_due_at
        ).where(
            RepairCaseModel.assigned_technician_id == technician_id,
            RepairCaseModel.created_at >= since,
            RepairCaseModel.status == CaseStatus.COMPLETED.value,
        )
        rows = (await self._session.execute(stmt)).all()
        if not rows:
            return TechnicianPerformance(technician_id=technician_id, period_days=0)

        hours = [
            (_utc(completed) - _utc(created)).total_seconds() / 3600
            for created, completed, _ in rows if completed
        ]
        on_time = [
            1.0 if _utc(completed) <= _utc(due) else 0.0
            for _, completed, due in rows if completed and due
        ]
        return TechnicianPerformance(
            technician_id=technician_id,
            period_days=0,
            completed_cases=len(rows),
            average_resolution_hours=sum(hours) / len(hours) if hours else 0.0,
            on_time_completion_rate=sum(on_time) / len(on_time) if on_time else 0.0,
        )
