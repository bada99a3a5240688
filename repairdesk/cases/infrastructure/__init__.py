"""
Case Infrastructure Layer
=========================

Infrastructure implementations for the case module:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
"""

from repairdesk.cases.infrastructure.models import (
    RepairCaseModel,
    CaseEscalationModel,
    CaseTimelineModel,
    CaseDocumentModel,
    InventoryReservationModel,
)
from repairdesk.cases.infrastructure.repositories import (
    SQLAlchemyCaseRepository,
    SQLAlchemyEscalationRepository,
    SQLAlchemyTimelineRepository,
)

__all__ = [
    "RepairCaseModel",
    "CaseEscalationModel",
    "CaseTimelineModel",
    "CaseDocumentModel",
    "InventoryReservationModel",
    "SQLAlchemyCaseRepository",
    "SQLAlchemyEscalationRepository",
    "SQLAlchemyTimelineRepository",
]
