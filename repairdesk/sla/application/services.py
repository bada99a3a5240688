"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

- EscalationService: fires escalation rules and fans out the escalation
- SLAMonitoringService: evaluates compliance and runs the periodic sweep
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from repairdesk.cases.application import CaseService, ICaseRepository, IEscalationRepository
from repairdesk.cases.domain import Case, EscalationPayload, EscalationRecord
from repairdesk.config import Settings
from repairdesk.core import WorkflowServiceException
from repairdesk.shared.infrastructure.logging import get_logger, log_latency
from repairdesk.shared.infrastructure.notifications import BestEffortNotifier, Notification
from repairdesk.sla.domain import (
    ComplianceResult, EscalationContext, EscalationDecision, EscalationTracker,
    MonitoringResult, SLAConfiguration, SLAEvaluator
)

logger = get_logger(__name__)


# ========== Interfaces (Dependency Inversion) ==========

class ISLAConfigurationProvider(ABC):
    """Interface for SLA configuration lookup."""

    @abstractmethod
    def resolve(self, case: Case) -> Optional[SLAConfiguration]:
        """
        Configuration for a case: by linked workflow configuration, then by
        (customer tier, service type), then the tier/service-type default.
        """


class IEscalationHandler(ABC):
    """Receives escalations on the workflow side."""

    @abstractmethod
    async def handle_case_escalation(self, context: EscalationContext) -> None:
        """Notify the running workflow or start an escalation workflow."""


# ========== Application Services ==========

class EscalationService:
    """
    Moves cases up their escalation ladder.

    `escalate` records the escalation with the case's other SLA writes;
    `dispatch` then hands it to the notification sink and the workflow side.
    Neither of the latter can undo the record.
    """

    def __init__(
        self,
        escalation_repository: IEscalationRepository,
        case_service: CaseService,
        notifier: BestEffortNotifier,
        tracker: EscalationTracker,
        escalation_handler: Optional[IEscalationHandler] = None
    ):
        self._escalation_repo = escalation_repository
        self._case_service = case_service
        self._notifier = notifier
        self._tracker = tracker
        self._escalation_handler = escalation_handler

    async def decide(
        self,
        case: Case,
        compliance: ComplianceResult,
        sla_config: SLAConfiguration,
        now: datetime
    ) -> EscalationDecision:
        history = await self._escalation_repo.list_for_case(case.id)
        return self._tracker.decide(
            sla_config.escalation_rules, compliance.hours_elapsed, history, now
        )

    async def escalate(
        self,
        case: Case,
        compliance: ComplianceResult,
        decision: EscalationDecision,
        now: datetime
    ) -> EscalationContext:
        """
        Record a positive escalation decision.

        Appends the escalation record and the timeline entry and raises the
        case's level. Nothing leaves the process here.

        Returns:
            Context to pass to dispatch() once the writes are kept
        """
        await self._escalation_repo.append(EscalationRecord(
            case_id=case.id,
            level=decision.level,
            kind=decision.kind,
            created_at=now,
            sla_status=compliance.status,
        ))
        if decision.level > case.escalation_level:
            case.raise_escalation_level(decision.level)

        context = EscalationContext(
            case_id=case.id,
            status=case.status,
            priority=case.priority,
            kind=decision.kind,
            level=decision.level,
            hours_overdue=self._tracker.hours_overdue(
                compliance.hours_elapsed,
                compliance.response.target_hours,
                compliance.resolution.target_hours,
            ),
            assigned_technician_id=case.assigned_technician_id,
            workflow_instance_id=case.workflow_instance_id,
            notify_roles=list(decision.notify_roles),
        )

        await self._case_service.add_timeline_entry(
            case.id,
            "sla_escalation",
            f"SLA escalation level {context.level} ({context.kind.value})",
            EscalationPayload(
                level=context.level,
                escalation_type=context.kind.value,
                hours_overdue=context.hours_overdue,
                workflow_instance_id=context.workflow_instance_id,
            ),
        )

        logger.warning(
            "Case escalated",
            extra={
                "case_id": case.id,
                "level": context.level,
                "escalation_type": context.kind.value,
                "hours_overdue": round(context.hours_overdue, 2),
            }
        )
        return context

    async def dispatch(self, context: EscalationContext) -> List[str]:
        """
        Notify recipients and the workflow side of a recorded escalation.

        Never raises. Workflow-side writes run in their own savepoint, so a
        failure there leaves the recorded escalation intact.

        Returns:
            Actions taken, for the monitoring result
        """
        actions = []

        reports = await self._notifier.notify_all(self.build_notifications(context))
        if reports:
            delivered = sum(1 for r in reports if r.delivered)
            actions.append(f"notifications_sent_{delivered}_of_{len(reports)}")

        if self._escalation_handler is not None:
            try:
                async with self._case_service.savepoint():
                    await self._escalation_handler.handle_case_escalation(context)
                actions.append("workflow_notified")
            except Exception as e:
                logger.error(
                    "Workflow escalation failed",
                    extra={"case_id": context.case_id, "level": context.level, "error": str(e)},
                    exc_info=not isinstance(e, WorkflowServiceException)
                )
                actions.append("workflow_notification_failed")

        return actions

    @staticmethod
    def build_notifications(context: EscalationContext) -> List[Notification]:
        """One notification per role of the fired rule plus the assigned technician."""
        subject = f"SLA {context.kind.value}: case {context.case_id} at level {context.level}"
        body = (
            f"Case {context.case_id} ({context.priority.value}, {context.status.value}) "
            f"is {context.hours_overdue:.1f}h overdue."
        )
        data = {
            "level": context.level,
            "escalation_type": context.kind.value,
            "hours_overdue": context.hours_overdue,
        }

        notifications = [
            Notification(
                case_id=context.case_id,
                subject=subject,
                body=body,
                recipient_role=role,
                category="sla_escalation",
                data=data,
            )
            for role in context.notify_roles
        ]
        if context.assigned_technician_id:
            notifications.append(Notification(
                case_id=context.case_id,
                subject=subject,
                body=body,
                recipient_role="technician",
                recipient_id=context.assigned_technician_id,
                category="sla_escalation",
                data=data,
            ))
        return notifications


class SLAMonitoringService:
    """
    SLA sweep coordinator.

    Pulls cases due for a check and, one at a time, evaluates them, runs the
    escalation tracker and persists the outcome. A failing case is logged and
    skipped.
    """

    def __init__(
        self,
        settings: Settings,
        case_repository: ICaseRepository,
        config_provider: ISLAConfigurationProvider,
        escalation_service: EscalationService,
        evaluator: Optional[SLAEvaluator] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._enabled = settings.sla_monitoring_enabled
        self._escalation_enabled = settings.sla_escalation_enabled
        self._check_interval = timedelta(minutes=settings.sla_check_interval_minutes)
        self._case_repo = case_repository
        self._config_provider = config_provider
        self._escalation_service = escalation_service
        self._evaluator = evaluator or SLAEvaluator(
            at_risk_ratio=settings.sla_at_risk_ratio,
            penalty_calculation_enabled=settings.sla_penalty_calculation_enabled,
            default_case_value=settings.sla_default_case_value,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def evaluate_compliance(self, case: Case, now: Optional[datetime] = None) -> ComplianceResult:
        """Compliance of a single case without side effects."""
        return self._evaluator.evaluate(case, self._config_provider.resolve(case), now or self._clock())

    async def run_sweep(self) -> List[MonitoringResult]:
        """
        Check every case due for an SLA check.

        Each case is claimed, evaluated and recorded inside its own savepoint:
        a failing case leaves no writes behind and is retried by the next
        sweep. Notifications go out only for escalations that were kept.

        Returns:
            One MonitoringResult per case checked by this run; cases that
            failed or were claimed by another run are left out
        """
        if not self._enabled:
            logger.debug("SLA monitoring disabled, skipping sweep")
            return []

        now = self._clock()
        results = []
        failures = 0

        with log_latency(logger, "sla_sweep"):
            cases = await self._case_repo.list_due_for_sla_check(now - self._check_interval)

            for case in cases:
                try:
                    async with self._case_repo.savepoint():
                        checked = await self._claim_and_check(case, now)
                except Exception as e:
                    failures += 1
                    logger.error(
                        "SLA check failed",
                        extra={"case_id": case.id, "error": str(e)},
                        exc_info=True
                    )
                    continue

                if checked is None:
                    continue
                result, context = checked
                if context is not None:
                    result.actions.extend(await self._escalation_service.dispatch(context))
                results.append(result)

        logger.info(
            "SLA sweep complete",
            extra={
                "due": len(cases),
                "checked": len(results),
                "failed": failures,
                "escalated": sum(1 for r in results if r.escalation_required),
            }
        )
        return results

    async def _claim_and_check(
        self,
        case: Case,
        now: datetime
    ) -> Optional[Tuple[MonitoringResult, Optional[EscalationContext]]]:
        claimed = await self._case_repo.claim_sla_check(case.id, case.last_sla_check, now)
        if not claimed:
            logger.debug("SLA check already claimed", extra={"case_id": case.id})
            return None
        case.last_sla_check = now
        return await self.check_case(case, now)

    async def check_case(
        self,
        case: Case,
        now: datetime
    ) -> Tuple[MonitoringResult, Optional[EscalationContext]]:
        """
        Evaluate one case, record any escalation and persist the outcome.

        Returns:
            The monitoring result and, when the case escalated, the context
            still to be dispatched
        """
        sla_config = self._config_provider.resolve(case)
        compliance = self._evaluator.evaluate(case, sla_config, now)

        result = MonitoringResult(
            case_id=case.id,
            sla_status=compliance.status,
            escalation_level=case.escalation_level,
            next_check_at=now + self._check_interval,
            penalty_amount=compliance.penalty_amount,
        )
        context = None

        if self._escalation_enabled and sla_config is not None and sla_config.escalation_rules:
            decision = await self._escalation_service.decide(case, compliance, sla_config, now)
            result.next_check_at = decision.next_check_at
            if decision.should_escalate:
                context = await self._escalation_service.escalate(case, compliance, decision, now)
                result.escalation_required = True
                result.escalation_level = case.escalation_level
                result.actions.append(f"escalated_to_level_{decision.level}")

        case.sla_status = compliance.status
        await self._case_repo.record_sla_result(case.id, compliance.status, case.escalation_level)

        return result, context
