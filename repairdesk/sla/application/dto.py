"""
SLA Application DTOs
=====================

Data Transfer Objects handed to the controller layer.

These Pydantic models handle serialization of compliance and sweep results.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from repairdesk.sla.domain import ComplianceResult, MonitoringResult, SubCheckResult


# ========== Type Aliases for Literals ==========
SLATypeStr = Literal["response", "resolution"]
SLAStateStr = Literal["met", "at_risk", "breached"]


# ========== Response DTOs ==========

class SubCheckResponse(BaseModel):
    """One SLA clock."""
    sla_type: SLATypeStr
    target_hours: float = Field(..., description="Target in hours (0 when no SLA applies)")
    actual_hours: Optional[float] = Field(None, description="Actual hours once the clock stopped")
    breached: bool

    @classmethod
    def from_domain(cls, check: SubCheckResult) -> "SubCheckResponse":
        return cls(
            sla_type=check.sla_type.value,
            target_hours=check.target_hours,
            actual_hours=check.actual_hours,
            breached=check.breached,
        )


class ComplianceResponse(BaseModel):
    """Response model for the SLA compliance of a case."""
    case_id: str
    status: SLAStateStr
    response: SubCheckResponse
    resolution: SubCheckResponse
    hours_elapsed: float
    penalty_amount: float = 0.0
    breach_reason: Optional[str] = None
    sla_configuration_id: Optional[str] = None
    evaluated_at: datetime

    @classmethod
    def from_domain(cls, result: ComplianceResult) -> "ComplianceResponse":
        return cls(
            case_id=result.case_id,
            status=result.status.value,
            response=SubCheckResponse.from_domain(result.response),
            resolution=SubCheckResponse.from_domain(result.resolution),
            hours_elapsed=result.hours_elapsed,
            penalty_amount=result.penalty_amount,
            breach_reason=result.breach_reason,
            sla_configuration_id=result.sla_configuration_id,
            evaluated_at=result.evaluated_at,
        )


class MonitoringResultResponse(BaseModel):
    """Per-case outcome of a sweep."""
    case_id: str
    sla_status: SLAStateStr
    escalation_required: bool
    escalation_level: int
    next_check_at: datetime
    actions: List[str] = Field(default_factory=list)


class SweepResponse(BaseModel):
    """Response model for a sweep run."""
    checked: int
    escalated: int
    breached: int
    results: List[MonitoringResultResponse] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: List[MonitoringResult]) -> "SweepResponse":
        return cls(
            checked=len(results),
            escalated=sum(1 for r in results if r.escalation_required),
            breached=sum(1 for r in results if r.sla_status.value == "breached"),
            results=[
                MonitoringResultResponse(
                    case_id=r.case_id,
                    sla_status=r.sla_status.value,
                    escalation_required=r.escalation_required,
                    escalation_level=r.escalation_level,
                    next_check_at=r.next_check_at,
                    actions=list(r.actions),
                )
                for r in results
            ],
        )
