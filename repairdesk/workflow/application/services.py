"""
Workflow Application Services
=============================

Keeps repair cases and the external workflow orchestrator in step.

- WorkflowIntegrationService: calls made from the case side (start, step
  completion, status change, escalation, case completion)
- WorkflowEventHandler: events pushed by the orchestrator

Every orchestrator call accepts an optional ``deadline``, a
``time.monotonic()`` value after which the client stops retrying.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from repairdesk.assignment.application import TechnicianAssignmentService
from repairdesk.assignment.domain import AssignmentCriteria
from repairdesk.cases.application import CaseService, IEscalationRepository
from repairdesk.cases.domain import (
    ApprovalRequestedPayload, Case, EscalationPayload, EscalationRecord,
    StepCompletedPayload, StepFailedPayload, StepReadyPayload,
    WorkflowCompletedPayload, WorkflowStartedPayload
)
from repairdesk.config import CaseStatus, EscalationType, Settings, WorkflowState
from repairdesk.core import DomainException, ResourceNotFoundException, ValidationException, WorkflowServiceException
from repairdesk.shared.infrastructure.logging import get_logger
from repairdesk.shared.infrastructure.notifications import BestEffortNotifier, Notification
from repairdesk.sla.application import IEscalationHandler
from repairdesk.sla.domain import EscalationContext
from repairdesk.workflow.domain import (
    STEP_STATUS, CaseCompletionRequest, ConfigurationCriteria, OrchestratorEvent,
    OrchestratorEventType, StepCompletionRequest, StepReadyAck, StepResult,
    WorkflowConfiguration, WorkflowInstance, WorkflowStartRequest,
    WorkflowStatusView, WorkflowStep
)

logger = get_logger(__name__)

ESCALATION_WORKFLOW_CRITERIA = {
    "device_type": "escalation",
    "service_type": "escalation",
    "customer_tier": "any",
}


# ========== Interfaces (Dependency Inversion) ==========

class IOrchestratorClient(ABC):
    """Interface for the external workflow orchestrator."""

    @abstractmethod
    async def select_configuration(
        self,
        criteria: ConfigurationCriteria,
        deadline: Optional[float] = None
    ) -> Optional[WorkflowConfiguration]:
        """Workflow configuration matching the criteria, or None."""

    @abstractmethod
    async def start_instance(
        self,
        workflow_definition_id: str,
        case_id: str,
        context: Dict[str, Any],
        deadline: Optional[float] = None
    ) -> WorkflowInstance:
        """Start a workflow instance for a case."""

    @abstractmethod
    async def complete_step(
        self,
        instance_id: str,
        step_id: str,
        result: StepResult,
        completed_by: str,
        deadline: Optional[float] = None
    ) -> None:
        """Report a step as done."""

    @abstractmethod
    async def post_event(
        self,
        instance_id: str,
        event_type: str,
        data: Dict[str, Any],
        deadline: Optional[float] = None
    ) -> None:
        """Send a case event to a running instance."""

    @abstractmethod
    async def get_instance(
        self,
        instance_id: str,
        deadline: Optional[float] = None
    ) -> Optional[WorkflowInstance]:
        """Current instance snapshot, or None if the orchestrator does not know it."""

    async def close(self) -> None:
        """Release transport resources."""


def criteria_for_case(case: Case) -> AssignmentCriteria:
    return AssignmentCriteria(
        device_type=case.device_type,
        category=case.category,
        priority=case.priority,
        location=case.location,
    )


# ========== Application Services ==========

class WorkflowIntegrationService(IEscalationHandler):
    """
    Case-side half of the orchestrator integration.

    When integration is disabled the outbound operations are no-ops that
    report "nothing happened" (None / False), except completion, which
    still validates and closes the case locally.
    """

    def __init__(
        self,
        settings: Settings,
        orchestrator: IOrchestratorClient,
        case_service: CaseService,
        assignment_service: TechnicianAssignmentService,
        notifier: BestEffortNotifier,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._enabled = settings.workflow_integration_enabled
        self._orchestrator = orchestrator
        self._case_service = case_service
        self._assignment_service = assignment_service
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def select_workflow_configuration(
        self,
        criteria: ConfigurationCriteria,
        deadline: Optional[float] = None
    ) -> Optional[WorkflowConfiguration]:
        if not self._enabled:
            return None
        return await self._orchestrator.select_configuration(criteria, deadline=deadline)

    async def start_workflow(
        self,
        case_id: str,
        request: Optional[WorkflowStartRequest] = None,
        deadline: Optional[float] = None
    ) -> Optional[WorkflowInstance]:
        """
        Start the workflow of a case.

        Returns:
            The started instance, or None when integration is disabled or
            no workflow configuration matches the case

        Raises:
            ResourceNotFoundException: if the case does not exist
            DomainException: if the case already has a running workflow
            WorkflowServiceException: if the orchestrator call fails
        """
        if not self._enabled:
            logger.debug("Workflow integration disabled", extra={"case_id": case_id})
            return None

        case = await self._case_service.get_case(case_id)
        if case.workflow_status == WorkflowState.RUNNING:
            raise DomainException(
                f"Case {case_id} already has running workflow {case.workflow_instance_id}",
                {"case_id": case_id, "workflow_instance_id": case.workflow_instance_id}
            )

        request = request or WorkflowStartRequest()
        criteria = ConfigurationCriteria(
            device_type=request.device_type or case.device_type or "general",
            service_type=request.service_type or case.service_type,
            customer_tier=request.customer_tier or case.customer_tier,
            priority=request.priority or case.priority,
            additional_context={"caseId": case.id, "category": case.category},
        )

        configuration = await self._orchestrator.select_configuration(criteria, deadline=deadline)
        if configuration is None:
            logger.info(
                "No workflow configuration matched, case left without workflow",
                extra={
                    "case_id": case_id,
                    "device_type": criteria.device_type,
                    "service_type": criteria.service_type,
                    "customer_tier": criteria.customer_tier,
                }
            )
            return None

        context = {
            "caseId": case.id,
            "deviceType": criteria.device_type,
            "serviceType": criteria.service_type,
            "customerTier": criteria.customer_tier,
            "priority": criteria.priority.value,
            "configurationId": configuration.id,
            "variables": dict(request.variables),
            "metadata": {
                "startedBy": "case-service",
                "startedAt": self._clock().isoformat(),
                "configurationUsed": configuration.name or configuration.id,
            },
        }
        instance = await self._orchestrator.start_instance(
            configuration.workflow_definition_id, case.id, context, deadline=deadline
        )
        await self._attach(case, instance, configuration, "Workflow started")

        logger.info(
            "Workflow started",
            extra={
                "case_id": case.id,
                "workflow_instance_id": instance.id,
                "configuration_id": configuration.id,
            }
        )
        return instance

    async def complete_workflow_step(
        self,
        request: StepCompletionRequest,
        deadline: Optional[float] = None
    ) -> None:
        """
        Report a finished step of the case's workflow.

        Raises:
            ResourceNotFoundException: if the case or its workflow instance is missing
            WorkflowServiceException: if the orchestrator rejects or is unreachable
        """
        if not self._enabled:
            logger.debug("Workflow integration disabled", extra={"case_id": request.case_id})
            return

        case = await self._case_service.get_case(request.case_id)
        if not case.workflow_instance_id:
            raise ResourceNotFoundException("Workflow instance for case", request.case_id)

        await self._orchestrator.complete_step(
            case.workflow_instance_id,
            request.step_id,
            request.result,
            request.completed_by,
            deadline=deadline,
        )
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_step_completed",
            f"Workflow step {request.step_id} completed",
            StepCompletedPayload(
                step_id=request.step_id,
                status=request.result.status,
                completed_by=request.completed_by,
                output=dict(request.result.output),
            ),
            created_by=request.completed_by,
        )

    async def handle_step_ready(
        self,
        instance_id: str,
        step_id: str,
        step_config: Optional[Dict[str, Any]] = None
    ) -> Optional[StepReadyAck]:
        """
        Apply a step the orchestrator made ready.

        Moves the case to the step's mapped status, records the current
        step and runs the step's business action.

        Returns:
            Acknowledgement, or None if no case is linked to the instance
        """
        case = await self._case_service.find_by_workflow_instance(instance_id)
        if case is None:
            logger.warning(
                "Step ready for unknown workflow instance",
                extra={"workflow_instance_id": instance_id, "step_id": step_id}
            )
            return None

        step = WorkflowStep.parse(step_id)
        new_status = STEP_STATUS[step] if step is not None else None
        now = self._clock()
        actions: List[str] = []

        case.current_step_id = step_id
        case.updated_at = now
        if step == WorkflowStep.COMPLETED:
            if await self.close_finished_workflow(case):
                actions.append(f"status_changed_to_{CaseStatus.COMPLETED.value}")
        elif new_status is not None:
            if case.is_terminal:
                logger.info(
                    "Case already closed, status left unchanged",
                    extra={"case_id": case.id, "step_id": step_id, "status": case.status.value}
                )
            elif case.transition_to(new_status, now):
                actions.append(f"status_changed_to_{new_status.value}")
        await self._case_service.save(case)

        actions.extend(await self._run_step_action(case, step, step_config or {}))

        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_step_ready",
            f"Workflow step {step_id} ready",
            StepReadyPayload(
                step_id=step_id,
                instance_id=instance_id,
                mapped_status=new_status.value if new_status else None,
            ),
        )
        return StepReadyAck(
            case_id=case.id,
            step_id=step_id,
            step=step,
            new_status=new_status,
            actions=actions,
        )

    async def close_finished_workflow(self, case: Case) -> bool:
        """
        Close a case whose workflow the orchestrator reports as finished.

        Completion checks are skipped; the orchestrator ran its own. The
        caller saves the case.

        Returns:
            True if the case was moved to completed
        """
        if case.workflow_status == WorkflowState.RUNNING:
            case.finish_workflow(WorkflowState.COMPLETED)
        if case.is_terminal:
            return False
        case.transition_to(CaseStatus.COMPLETED, self._clock())
        await self._case_service.release_inventory_reservations(case.id)
        await self._assignment_service.close_case_assignments(case.id)
        return True

    async def handle_case_status_change(
        self,
        case_id: str,
        new_status: CaseStatus,
        updated_by: str = "system",
        deadline: Optional[float] = None
    ) -> bool:
        """
        Forward a case status change to the running workflow.

        Orchestrator failures are logged and not raised; the status change
        itself has already happened.

        Returns:
            True if the event reached the orchestrator
        """
        if not self._enabled:
            return False

        case = await self._case_service.get_case(case_id)
        if not case.workflow_instance_id:
            return False

        try:
            await self._orchestrator.post_event(
                case.workflow_instance_id,
                "case_status_changed",
                {
                    "caseId": case.id,
                    "newStatus": new_status.value,
                    "updatedBy": updated_by,
                    "timestamp": self._clock().isoformat(),
                },
                deadline=deadline,
            )
        except WorkflowServiceException as e:
            logger.warning(
                "Failed to forward status change to workflow",
                extra={
                    "case_id": case_id,
                    "workflow_instance_id": case.workflow_instance_id,
                    "new_status": new_status.value,
                    "error": str(e),
                }
            )
            return False
        return True

    async def handle_case_escalation(self, context: EscalationContext) -> None:
        """
        Tell the running workflow about an escalation, or start a dedicated
        escalation workflow when the case has none running.
        """
        if not self._enabled:
            return

        case = await self._case_service.get_case(context.case_id)
        data = {
            "caseId": case.id,
            "escalationLevel": context.level,
            "escalationType": context.kind.value,
            "hoursOverdue": round(context.hours_overdue, 2),
            "priority": context.priority.value,
            "status": context.status.value,
            "assignedTechnicianId": context.assigned_technician_id,
            "notifyRoles": list(context.notify_roles),
        }

        if case.workflow_instance_id and case.workflow_status == WorkflowState.RUNNING:
            await self._orchestrator.post_event(case.workflow_instance_id, "escalation", data)
            logger.info(
                "Escalation sent to workflow",
                extra={"case_id": case.id, "workflow_instance_id": case.workflow_instance_id}
            )
            return

        criteria = ConfigurationCriteria(
            priority=case.priority,
            additional_context={
                "escalationType": context.kind.value,
                "escalationLevel": context.level,
                "originalCaseId": case.id,
            },
            **ESCALATION_WORKFLOW_CRITERIA,
        )
        configuration = await self._orchestrator.select_configuration(criteria)
        if configuration is None:
            logger.warning(
                "No escalation workflow configured",
                extra={"case_id": case.id, "level": context.level}
            )
            return

        instance = await self._orchestrator.start_instance(
            configuration.workflow_definition_id,
            case.id,
            {**data, "isEscalation": True, "configurationId": configuration.id},
        )
        await self._attach(case, instance, configuration, "Escalation workflow started")
        logger.info(
            "Escalation workflow started",
            extra={"case_id": case.id, "workflow_instance_id": instance.id}
        )

    async def complete_case(
        self,
        case_id: str,
        request: CaseCompletionRequest,
        completed_by: str = "system",
        deadline: Optional[float] = None
    ) -> Case:
        """
        Complete a case after checking its completion preconditions.

        Raises:
            ResourceNotFoundException: if the case does not exist
            DomainException: if the case is already closed
            ValidationException: listing every unmet precondition
            WorkflowServiceException: if the orchestrator call fails; the
                case is left untouched in that case
        """
        case = await self._case_service.get_case(case_id)
        if case.is_terminal:
            raise DomainException(
                f"Case {case_id} is already {case.status.value}",
                {"case_id": case_id, "status": case.status.value}
            )

        resolution = request.resolution or case.resolution
        errors = []
        pending = await self._case_service.list_pending_documents(case.id)
        if pending:
            errors.append(
                f"Case has pending documents that need to be completed: {', '.join(pending)}"
            )
        if not resolution:
            errors.append("Case must have a resolution before completion")
        if errors:
            raise ValidationException("Case completion validation failed", errors=errors)

        workflow_notified = False
        if (
            self._enabled
            and case.workflow_instance_id
            and case.workflow_status == WorkflowState.RUNNING
        ):
            await self._orchestrator.post_event(
                case.workflow_instance_id,
                "case_completed",
                {
                    "caseId": case.id,
                    "resolution": resolution,
                    "notes": request.notes,
                    "completionData": dict(request.data),
                    "completedBy": completed_by,
                },
                deadline=deadline,
            )
            workflow_notified = True

        released = await self._case_service.release_inventory_reservations(case.id)
        closed = await self._assignment_service.close_case_assignments(case.id)

        case.resolution = resolution
        case.transition_to(CaseStatus.COMPLETED, self._clock())
        if workflow_notified:
            case.finish_workflow(WorkflowState.COMPLETED)
        case = await self._case_service.save(case)

        await self._case_service.add_timeline_entry(
            case.id,
            "case_completed",
            "Case completed",
            WorkflowCompletedPayload(
                workflow_instance_id=case.workflow_instance_id,
                completed_by=completed_by,
            ),
            created_by=completed_by,
        )
        logger.info(
            "Case completed",
            extra={
                "case_id": case.id,
                "reservations_released": released,
                "assignments_closed": closed,
                "workflow_notified": workflow_notified,
            }
        )
        return case

    async def get_workflow_status(
        self,
        case_id: str,
        deadline: Optional[float] = None
    ) -> Optional[WorkflowStatusView]:
        """Orchestrator view of the case's workflow, None when there is none."""
        if not self._enabled:
            return None

        case = await self._case_service.get_case(case_id)
        if not case.workflow_instance_id:
            return None

        instance = await self._orchestrator.get_instance(case.workflow_instance_id, deadline=deadline)
        if instance is None:
            return None
        return WorkflowStatusView(case_id=case.id, instance=instance)

    # ========== Helpers ==========

    async def _attach(
        self,
        case: Case,
        instance: WorkflowInstance,
        configuration: WorkflowConfiguration,
        description: str
    ) -> None:
        case.attach_workflow(instance.id, configuration.id)
        case.updated_at = self._clock()
        await self._case_service.save(case)
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_started",
            description,
            WorkflowStartedPayload(
                workflow_instance_id=instance.id,
                configuration_id=configuration.id,
            ),
        )

    async def _run_step_action(
        self,
        case: Case,
        step: Optional[WorkflowStep],
        step_config: Dict[str, Any]
    ) -> List[str]:
        if step == WorkflowStep.DEVICE_INSPECTION:
            rules = step_config.get("assignmentRules") or step_config.get("assignment_rules") or {}
            if rules.get("role") != "technician" or case.assigned_technician_id:
                return []
            technician = await self._assignment_service.auto_assign(case.id, criteria_for_case(case))
            if technician is None:
                return ["no_technician_available"]
            return [f"technician_assigned_{technician.id}"]

        notifications: List[Notification] = []
        if step == WorkflowStep.QUOTATION_APPROVAL:
            notifications.append(Notification(
                case_id=case.id,
                subject=f"Quotation ready for case {case.id}",
                body="A repair quotation is waiting for your approval.",
                recipient_role="customer",
                category="approval_request",
            ))
        elif step == WorkflowStep.REPAIR_EXECUTION and case.assigned_technician_id:
            notifications.append(Notification(
                case_id=case.id,
                subject=f"Repair ready to start for case {case.id}",
                body="The quotation was approved; parts and tools can be prepared.",
                recipient_role="technician",
                recipient_id=case.assigned_technician_id,
                category="workflow_step",
            ))
        elif step == WorkflowStep.QUALITY_CHECK:
            notifications.append(Notification(
                case_id=case.id,
                subject=f"Quality check required for case {case.id}",
                body="The repair is finished and waiting for inspection.",
                recipient_role="quality_inspector",
                category="workflow_step",
            ))
        elif step == WorkflowStep.DELIVERY:
            notifications.append(Notification(
                case_id=case.id,
                subject=f"Device ready for pickup, case {case.id}",
                body="The repaired device is ready for delivery.",
                recipient_role="customer",
                category="delivery",
            ))

        if not notifications:
            return []
        reports = await self._notifier.notify_all(notifications)
        delivered = sum(1 for r in reports if r.delivered)
        return [f"notifications_sent_{delivered}_of_{len(reports)}"]


class WorkflowEventHandler:
    """
    Applies orchestrator events to cases.

    Unknown event types and events for instances no case is linked to are
    logged and ignored.
    """

    def __init__(
        self,
        integration_service: WorkflowIntegrationService,
        case_service: CaseService,
        assignment_service: TechnicianAssignmentService,
        escalation_repository: IEscalationRepository,
        notifier: BestEffortNotifier,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._integration = integration_service
        self._case_service = case_service
        self._assignment_service = assignment_service
        self._escalation_repo = escalation_repository
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers: Dict[
            OrchestratorEventType, Callable[[Case, OrchestratorEvent], Awaitable[None]]
        ] = {
            OrchestratorEventType.WORKFLOW_STARTED: self._on_workflow_started,
            OrchestratorEventType.STEP_READY: self._on_step_ready,
            OrchestratorEventType.STEP_ACTIVATED: self._on_step_ready,
            OrchestratorEventType.STEP_COMPLETED: self._on_step_completed,
            OrchestratorEventType.STEP_FAILED: self._on_step_failed,
            OrchestratorEventType.STEP_TIMEOUT: self._on_step_timeout,
            OrchestratorEventType.WORKFLOW_COMPLETED: self._on_workflow_completed,
            OrchestratorEventType.WORKFLOW_FAILED: self._on_workflow_failed,
            OrchestratorEventType.WORKFLOW_ESCALATED: self._on_workflow_escalated,
            OrchestratorEventType.ASSIGNMENT_REQUIRED: self._on_assignment_required,
            OrchestratorEventType.APPROVAL_REQUIRED: self._on_approval_required,
        }

    async def handle_orchestrator_event(self, event: OrchestratorEvent) -> bool:
        """
        Dispatch one orchestrator event.

        Returns:
            True if the event was applied to a case
        """
        try:
            event_type = OrchestratorEventType(event.type)
        except ValueError:
            logger.info("Ignoring unknown workflow event", extra={"event_type": event.type})
            return False

        if not event.instance_id:
            logger.warning("Workflow event without instance id", extra={"event_type": event.type})
            return False

        case = await self._case_service.find_by_workflow_instance(event.instance_id)
        if case is None:
            logger.warning(
                "No case linked to workflow instance",
                extra={"event_type": event.type, "workflow_instance_id": event.instance_id}
            )
            return False

        logger.info(
            "Handling workflow event",
            extra={
                "event_type": event_type.value,
                "case_id": case.id,
                "workflow_instance_id": event.instance_id,
                "step_id": event.step_id,
            }
        )
        await self._handlers[event_type](case, event)
        return True

    # ========== Event handlers ==========

    async def _on_workflow_started(self, case: Case, event: OrchestratorEvent) -> None:
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_started",
            "Workflow started by orchestrator",
            WorkflowStartedPayload(
                workflow_instance_id=event.instance_id,
                configuration_id=case.workflow_configuration_id,
            ),
            created_by="workflow",
        )
        if case.assigned_technician_id:
            await self._notify(
                case, "Workflow started",
                f"The repair workflow for case {case.id} has started.",
                role="technician", recipient_id=case.assigned_technician_id,
                category="workflow_step",
            )

    async def _on_step_ready(self, case: Case, event: OrchestratorEvent) -> None:
        if not event.step_id:
            logger.warning("Step event without step id", extra={"case_id": case.id})
            return
        step_config = event.payload.get("stepConfig") or event.payload.get("step_config") or {}
        await self._integration.handle_step_ready(event.instance_id, event.step_id, step_config)

    async def _on_step_completed(self, case: Case, event: OrchestratorEvent) -> None:
        completed_by = event.payload.get("completedBy") or "workflow"
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_step_completed",
            f"Workflow step {event.step_id} completed",
            StepCompletedPayload(
                step_id=event.step_id or "unknown",
                status=event.payload.get("status") or "completed",
                completed_by=completed_by,
                output=event.payload.get("completionData") or {},
            ),
            created_by=completed_by,
        )

    async def _on_step_failed(self, case: Case, event: OrchestratorEvent) -> None:
        reason = self._failure_reason(event, "Step failed")
        self._put_on_hold(case)
        await self._case_service.save(case)
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_step_failed",
            f"Workflow step {event.step_id} failed: {reason}",
            StepFailedPayload(step_id=event.step_id, reason=reason),
            created_by="workflow",
        )
        await self._notify(
            case, f"Workflow step failed for case {case.id}", reason,
            role="supervisor", category="workflow_failure",
        )

    async def _on_step_timeout(self, case: Case, event: OrchestratorEvent) -> None:
        reason = f"Step {event.step_id} timed out"
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_step_timeout",
            reason,
            StepFailedPayload(step_id=event.step_id, reason="timeout"),
            created_by="workflow",
        )
        await self._notify(
            case, f"Workflow step timeout for case {case.id}", reason,
            role="supervisor", category="workflow_timeout",
        )

    async def _on_workflow_completed(self, case: Case, event: OrchestratorEvent) -> None:
        await self._integration.close_finished_workflow(case)
        await self._case_service.save(case)

        completed_by = event.payload.get("completedBy") or "workflow"
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_completed",
            "Workflow completed",
            WorkflowCompletedPayload(
                workflow_instance_id=event.instance_id,
                completed_by=completed_by,
            ),
            created_by="workflow",
        )

    async def _on_workflow_failed(self, case: Case, event: OrchestratorEvent) -> None:
        reason = self._failure_reason(event, "Workflow failed")
        if case.workflow_status == WorkflowState.RUNNING:
            case.finish_workflow(WorkflowState.FAILED)
        self._put_on_hold(case)
        await self._case_service.save(case)
        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_failed",
            f"Workflow failed: {reason}",
            StepFailedPayload(step_id=event.step_id, reason=reason),
            created_by="workflow",
        )
        await self._notify(
            case, f"Workflow failed for case {case.id}", reason,
            role="supervisor", category="workflow_failure",
        )

    async def _on_workflow_escalated(self, case: Case, event: OrchestratorEvent) -> None:
        data = event.payload.get("escalationData") or {}
        try:
            level = max(1, int(data.get("level") or 1))
        except (TypeError, ValueError):
            level = 1
        try:
            kind = EscalationType(data.get("escalationType") or EscalationType.WARNING.value)
        except ValueError:
            kind = EscalationType.WARNING

        if level > case.escalation_level:
            await self._escalation_repo.append(EscalationRecord(
                case_id=case.id,
                level=level,
                kind=kind,
                created_at=self._clock(),
                sla_status=case.sla_status,
            ))
            case.raise_escalation_level(level)
            await self._case_service.save(case)

        await self._case_service.add_timeline_entry(
            case.id,
            "workflow_escalated",
            f"Workflow escalated to level {level}",
            EscalationPayload(
                level=level,
                escalation_type=kind.value,
                hours_overdue=float(data.get("hoursOverdue") or 0.0),
                workflow_instance_id=event.instance_id,
            ),
            created_by="workflow",
        )

    async def _on_assignment_required(self, case: Case, event: OrchestratorEvent) -> None:
        if case.is_terminal:
            logger.warning("Assignment requested for closed case", extra={"case_id": case.id})
            return

        data = event.payload.get("assignmentData") or {}
        criteria = AssignmentCriteria(
            device_type=data.get("deviceType") or case.device_type,
            category=data.get("category") or case.category,
            priority=case.priority,
            location=data.get("location") or case.location,
        )
        technician = await self._assignment_service.auto_assign(case.id, criteria)
        if technician is None:
            await self._notify(
                case, f"No technician available for case {case.id}",
                "Automatic assignment found no eligible technician.",
                role="supervisor", category="assignment_escalation",
            )
            return

        if event.step_id:
            await self._integration.complete_workflow_step(StepCompletionRequest(
                case_id=case.id,
                step_id=event.step_id,
                result=StepResult(output={
                    "assignedTechnicianId": technician.id,
                    "assignedTechnicianName": technician.name,
                }),
            ))

    async def _on_approval_required(self, case: Case, event: OrchestratorEvent) -> None:
        data = event.payload.get("approvalData") or {}
        approver_role = data.get("approverRole") or "manager"
        await self._case_service.add_timeline_entry(
            case.id,
            "approval_requested",
            f"Approval requested from {approver_role}",
            ApprovalRequestedPayload(step_id=event.step_id, approver_role=approver_role),
            created_by="workflow",
        )
        await self._notify(
            case, f"Approval required for case {case.id}",
            data.get("message") or "A workflow step is waiting for approval.",
            role=approver_role, category="approval_request",
        )

    # ========== Helpers ==========

    def _put_on_hold(self, case: Case) -> None:
        if not case.is_terminal:
            case.transition_to(CaseStatus.ON_HOLD, self._clock())

    @staticmethod
    def _failure_reason(event: OrchestratorEvent, default: str) -> str:
        failure = event.payload.get("failureData") or {}
        return failure.get("reason") or event.payload.get("reason") or default

    async def _notify(
        self,
        case: Case,
        subject: str,
        body: str,
        role: str,
        category: str,
        recipient_id: Optional[str] = None
    ) -> None:
        await self._notifier.notify(Notification(
            case_id=case.id,
            subject=subject,
            body=body,
            recipient_role=role,
            recipient_id=recipient_id,
            category=category,
        ))
