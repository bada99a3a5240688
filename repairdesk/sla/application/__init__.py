"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: escalation and the periodic SLA sweep
- DTOs: Data transfer objects for the controller layer

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from repairdesk.sla.application.dto import (
    SubCheckResponse,
    ComplianceResponse,
    MonitoringResultResponse,
    SweepResponse,
)
from repairdesk.sla.application.services import (
    EscalationService,
    SLAMonitoringService,
    ISLAConfigurationProvider,
    IEscalationHandler,
)

__all__ = [
    # DTOs
    "SubCheckResponse",
    "ComplianceResponse",
    "MonitoringResultResponse",
    "SweepResponse",
    # Services
    "EscalationService",
    "SLAMonitoringService",
    # Interfaces
    "ISLAConfigurationProvider",
    "IEscalationHandler",
]
