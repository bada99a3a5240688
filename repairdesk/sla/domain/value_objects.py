"""
SLA Value Objects
==================

Immutable value objects and pure domain services for the SLA module.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from repairdesk.cases.domain import Case, EscalationRecord, current_escalation_level, hours_between
from repairdesk.config import CaseStatus, EscalationType, SLAState, SLAType
from repairdesk.sla.domain.entities import ComplianceResult, EscalationDecision, SubCheckResult


class EscalationRule(BaseModel):
    """One rung of the escalation ladder."""
    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1, description="Escalation level (1-based)")
    trigger_after_hours: float = Field(ge=0, description="Hours since creation before firing")
    escalation_type: EscalationType = Field(default=EscalationType.WARNING)
    notify_roles: List[str] = Field(default_factory=list, description="Roles to notify")


class PenaltyRule(BaseModel):
    """Penalty charged when an SLA clock is breached."""
    model_config = ConfigDict(frozen=True)

    breach_type: SLAType
    penalty_percentage: float = Field(ge=0, le=100)
    max_penalty_amount: Optional[float] = Field(default=None, ge=0)
    grace_period_hours: Optional[float] = Field(default=None, ge=0)


class SLAConfiguration(BaseModel):
    """
    SLA Configuration loaded from YAML.

    Selected per case by linked workflow configuration, then by
    (customer tier, service type).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    customer_tier: str = "standard"
    service_type: str = "repair"
    workflow_configuration_ids: List[str] = Field(default_factory=list)
    response_time_hours: float = Field(ge=0)
    resolution_time_hours: float = Field(ge=0)
    escalation_rules: List[EscalationRule] = Field(default_factory=list)
    penalty_rules: List[PenaltyRule] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("escalation_rules")
    @classmethod
    def validate_escalation_rules(cls, v: List[EscalationRule]) -> List[EscalationRule]:
        """Escalation levels must be strictly increasing."""
        levels = [rule.level for rule in v]
        for previous, current in zip(levels, levels[1:]):
            if current <= previous:
                raise ValueError(
                    f"escalation levels must be strictly increasing, got {levels}"
                )
        return v


class SLACatalog(BaseModel):
    """All SLA configurations plus the tier/service-type fallback."""
    model_config = ConfigDict(frozen=True)

    default_customer_tier: str = "standard"
    default_service_type: str = "repair"
    sla_configurations: List[SLAConfiguration] = Field(default_factory=list)

    @field_validator("sla_configurations")
    @classmethod
    def validate_unique_ids(cls, v: List[SLAConfiguration]) -> List[SLAConfiguration]:
        ids = [c.id for c in v]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate SLA configuration ids: {duplicates}")
        return v

    def for_workflow_configuration(self, workflow_configuration_id: str) -> Optional[SLAConfiguration]:
        for config in self.sla_configurations:
            if config.is_active and workflow_configuration_id in config.workflow_configuration_ids:
                return config
        return None

    def for_tier(self, customer_tier: str, service_type: str) -> Optional[SLAConfiguration]:
        for config in self.sla_configurations:
            if (
                config.is_active
                and config.customer_tier == customer_tier
                and config.service_type == service_type
            ):
                return config
        return None

    def resolve(self, case: Case) -> Optional[SLAConfiguration]:
        """Linked workflow configuration first, then tier/service type, then the default."""
        if case.workflow_configuration_id:
            config = self.for_workflow_configuration(case.workflow_configuration_id)
            if config is not None:
                return config

        return (
            self.for_tier(case.customer_tier, case.service_type)
            or self.for_tier(self.default_customer_tier, self.default_service_type)
        )


class SLAEvaluator:
    """
    Computes response and resolution compliance for a case.

    Stateless apart from its thresholds; evaluate() is a pure function of
    its inputs.
    """

    RESPONSE_BREACH_REASON = "Response time exceeded"
    RESOLUTION_BREACH_REASON = "Resolution time exceeded"

    def __init__(
        self,
        at_risk_ratio: float = 0.8,
        penalty_calculation_enabled: bool = False,
        default_case_value: float = 1000.0
    ):
        self.at_risk_ratio = at_risk_ratio
        self.penalty_calculation_enabled = penalty_calculation_enabled
        self.default_case_value = default_case_value

    def evaluate(
        self,
        case: Case,
        sla_config: Optional[SLAConfiguration],
        now: datetime
    ) -> ComplianceResult:
        """
        Evaluate a case against its SLA configuration.

        Args:
            case: Case snapshot
            sla_config: Resolved configuration, None when nothing matched
            now: Evaluation time

        Returns:
            ComplianceResult; vacuously met with zero targets when
            sla_config is None
        """
        hours_elapsed = case.hours_elapsed(now)

        if sla_config is None:
            return ComplianceResult(
                case_id=case.id,
                status=SLAState.MET,
                response=SubCheckResult(SLAType.RESPONSE, 0.0, hours_elapsed, False),
                resolution=SubCheckResult(SLAType.RESOLUTION, 0.0, hours_elapsed, False),
                hours_elapsed=hours_elapsed,
                evaluated_at=now,
            )

        response = self.check_response(case, sla_config.response_time_hours, hours_elapsed)
        resolution = self.check_resolution(case, sla_config.resolution_time_hours, hours_elapsed)

        breach_reason = None
        if response.breached or resolution.breached:
            status = SLAState.BREACHED
            breach_reason = (
                self.RESPONSE_BREACH_REASON if response.breached
                else self.RESOLUTION_BREACH_REASON
            )
        elif max(response.ratio, resolution.ratio) > self.at_risk_ratio:
            status = SLAState.AT_RISK
        else:
            status = SLAState.MET

        penalty = 0.0
        if self.penalty_calculation_enabled:
            penalty = self.calculate_penalty(case, sla_config, response, resolution)

        return ComplianceResult(
            case_id=case.id,
            status=status,
            response=response,
            resolution=resolution,
            hours_elapsed=hours_elapsed,
            evaluated_at=now,
            penalty_amount=penalty,
            breach_reason=breach_reason,
            sla_configuration_id=sla_config.id,
        )

    @staticmethod
    def check_response(case: Case, target_hours: float, hours_elapsed: float) -> SubCheckResult:
        """A case has responded once it left the open status."""
        if case.has_responded:
            responded_at = case.assigned_at or case.updated_at
            actual = hours_between(case.created_at, responded_at)
            return SubCheckResult(
                SLAType.RESPONSE, target_hours, hours_elapsed,
                breached=actual > target_hours, actual_hours=actual
            )
        return SubCheckResult(
            SLAType.RESPONSE, target_hours, hours_elapsed,
            breached=hours_elapsed > target_hours
        )

    @staticmethod
    def check_resolution(case: Case, target_hours: float, hours_elapsed: float) -> SubCheckResult:
        if case.status == CaseStatus.COMPLETED:
            actual = (
                hours_between(case.created_at, case.completed_at)
                if case.completed_at else hours_elapsed
            )
            return SubCheckResult(
                SLAType.RESOLUTION, target_hours, hours_elapsed,
                breached=actual > target_hours, actual_hours=actual
            )
        return SubCheckResult(
            SLAType.RESOLUTION, target_hours, hours_elapsed,
            breached=hours_elapsed > target_hours
        )

    def calculate_penalty(
        self,
        case: Case,
        sla_config: SLAConfiguration,
        response: SubCheckResult,
        resolution: SubCheckResult
    ) -> float:
        """Sum of applicable penalty rules, each capped by its own maximum."""
        case_value = case.estimated_value if case.estimated_value is not None else self.default_case_value
        checks = {SLAType.RESPONSE: response, SLAType.RESOLUTION: resolution}

        total = 0.0
        for rule in sla_config.penalty_rules:
            check = checks[rule.breach_type]
            if not check.breached:
                continue
            if check.breach_hours <= (rule.grace_period_hours or 0.0):
                continue

            amount = case_value * rule.penalty_percentage / 100
            if rule.max_penalty_amount is not None:
                amount = min(amount, rule.max_penalty_amount)
            total += amount

        return total


class EscalationTracker:
    """
    Decides whether a case moves up its escalation ladder.

    A level fires at most once: only rules above the highest recorded level
    are considered.
    """

    def __init__(self, check_interval: timedelta):
        self.check_interval = check_interval

    def decide(
        self,
        rules: Iterable[EscalationRule],
        hours_elapsed: float,
        history: List[EscalationRecord],
        now: datetime
    ) -> EscalationDecision:
        last_level = current_escalation_level(history)
        next_check_at = now + self.check_interval

        for rule in sorted(rules, key=lambda r: r.level):
            if rule.level > last_level and hours_elapsed >= rule.trigger_after_hours:
                return EscalationDecision(
                    should_escalate=True,
                    current_level=last_level,
                    next_check_at=next_check_at,
                    level=rule.level,
                    kind=rule.escalation_type,
                    notify_roles=list(rule.notify_roles),
                )

        return EscalationDecision(
            should_escalate=False,
            current_level=last_level,
            next_check_at=next_check_at,
        )

    @staticmethod
    def hours_overdue(hours_elapsed: float, response_target: float, resolution_target: float) -> float:
        """Hours past the tighter of the two targets; zero when no configuration applied."""
        if response_target == 0 and resolution_target == 0:
            return 0.0
        return max(0.0, hours_elapsed - min(response_target, resolution_target))
