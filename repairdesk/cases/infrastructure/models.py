"""
Case Infrastructure Models
==========================

SQLAlchemy ORM models for the repair case module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from repairdesk.infrastructure.database import Base
from repairdesk.config import (
    CaseStatus, Priority, WorkflowState, DEFAULT_CUSTOMER_TIER, DEFAULT_SERVICE_TYPE
)


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RepairCaseModel(Base):
    """
    Database model for Case entity.

    Maps to the 'repair_cases' table.
    """
    __tablename__ = "repair_cases"

    # Primary key
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Classification
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM.value)
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True, default=CaseStatus.OPEN.value)
    customer_tier: Mapped[str] = mapped_column(String(50), nullable=False, default=DEFAULT_CUSTOMER_TIER)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False, default=DEFAULT_SERVICE_TYPE)
    device_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    estimated_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # SLA tracking
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_sla_check: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    sla_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # References
    assigned_technician_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    workflow_instance_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    workflow_configuration_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    workflow_status: Mapped[str] = mapped_column(String(20), nullable=False, default=WorkflowState.NONE.value)
    current_step_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class CaseEscalationModel(Base):
    """Maps to the 'case_escalations' table (append-only)."""
    __tablename__ = "case_escalations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    case_id: Mapped[str] = mapped_column(ForeignKey("repair_cases.id"), nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    sla_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class CaseTimelineModel(Base):
    """Maps to the 'case_timeline' table."""
    __tablename__ = "case_timeline"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    case_id: Mapped[str] = mapped_column(ForeignKey("repair_cases.id"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class CaseDocumentModel(Base):
    """
    Maps to the 'case_documents' table.

    Only the approval status matters here: draft and pending_approval
    documents block case completion.
    """
    __tablename__ = "case_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    case_id: Mapped[str] = mapped_column(ForeignKey("repair_cases.id"), nullable=False, index=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class InventoryReservationModel(Base):
    """Maps to the 'inventory_reservations' table."""
    __tablename__ = "inventory_reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    case_id: Mapped[str] = mapped_column(ForeignKey("repair_cases.id"), nullable=False, index=True)
    part_number: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="reserved")
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
