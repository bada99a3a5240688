"""
Assignment Application Layer
============================

Technician assignment service and the technician repository interface.
"""

from repairdesk.assignment.application.services import (
    ITechnicianRepository,
    TechnicianAssignmentService,
)

__all__ = [
    "ITechnicianRepository",
    "TechnicianAssignmentService",
]
