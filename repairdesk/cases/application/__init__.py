"""
Case Application Layer
======================

Repository interfaces for the case aggregate and the CaseService used by
the SLA, assignment and workflow modules.
"""

from repairdesk.cases.application.services import (
    CaseService,
    ICaseRepository,
    IEscalationRepository,
    ITimelineRepository,
)

__all__ = [
    "CaseService",
    "ICaseRepository",
    "IEscalationRepository",
    "ITimelineRepository",
]
