"""
Assignment Domain Layer
=======================

Domain layer for technician assignment.

Contains:
- Entities: Technician, AssignmentCriteria, TechnicianScore, ReassignmentSuggestion
- Domain Services: TechnicianScorer

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from repairdesk.assignment.domain.entities import (
    Technician,
    AssignmentCriteria,
    TechnicianScore,
    ReassignmentCandidate,
    ReassignmentSuggestion,
    TechnicianPerformance,
)
from repairdesk.assignment.domain.value_objects import TechnicianScorer

__all__ = [
    # Entities
    "Technician",
    "AssignmentCriteria",
    "TechnicianScore",
    "ReassignmentCandidate",
    "ReassignmentSuggestion",
    "TechnicianPerformance",
    # Domain Services
    "TechnicianScorer",
]
