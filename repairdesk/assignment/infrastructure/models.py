"""
Assignment Infrastructure Models
================================

SQLAlchemy ORM models for technicians and their case assignments.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from repairdesk.infrastructure.database import Base


class TechnicianModel(Base):
    """
    Database model for Technician entity.

    Maps to the 'technicians' table. Workload is not stored; it is counted
    from repair_cases.
    """
    __tablename__ = "technicians"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class TechnicianAssignmentModel(Base):
    """
    Maps to the 'technician_assignments' table.

    status is active, transferred (replaced by a later assignment) or
    closed (case completed).
    """
    __tablename__ = "technician_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    case_id: Mapped[str] = mapped_column(ForeignKey("repair_cases.id"), nullable=False, index=True)
    technician_id: Mapped[str] = mapped_column(ForeignKey("technicians.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
