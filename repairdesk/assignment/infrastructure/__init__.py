"""
Assignment Infrastructure Layer
===============================

- Models: technicians, technician_assignments
- Repositories: SQLAlchemy technician repository
"""

from repairdesk.assignment.infrastructure.models import (
    TechnicianModel,
    TechnicianAssignmentModel,
)
from repairdesk.assignment.infrastructure.repositories import SQLAlchemyTechnicianRepository

__all__ = [
    "TechnicianModel",
    "TechnicianAssignmentModel",
    "SQLAlchemyTechnicianRepository",
]
