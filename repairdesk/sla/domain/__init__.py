"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: ComplianceResult, EscalationDecision, EscalationContext, MonitoringResult
- Value Objects: SLACatalog, SLAConfiguration, EscalationRule, PenaltyRule
- Domain Services: SLAEvaluator, EscalationTracker

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from repairdesk.sla.domain.entities import (
    SubCheckResult,
    ComplianceResult,
    EscalationDecision,
    EscalationContext,
    MonitoringResult,
)
from repairdesk.sla.domain.value_objects import (
    SLACatalog,
    SLAConfiguration,
    EscalationRule,
    PenaltyRule,
    SLAEvaluator,
    EscalationTracker,
)

__all__ = [
    # Entities
    "SubCheckResult",
    "ComplianceResult",
    "EscalationDecision",
    "EscalationContext",
    "MonitoringResult",
    # Value Objects & Services
    "SLACatalog",
    "SLAConfiguration",
    "EscalationRule",
    "PenaltyRule",
    "SLAEvaluator",
    "EscalationTracker",
]
