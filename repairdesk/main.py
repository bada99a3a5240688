"""
Repair Desk Core - Main Application
===================================

SLA, escalation, assignment and workflow orchestration core of a repair
ticketing system.

Modules:
- Cases: case aggregate, escalation audit trail, timeline
- SLA Monitoring: compliance evaluation, escalation ladder, periodic sweep
- Assignment: technician scoring, auto-assignment, rebalancing
- Workflow: orchestrator integration and event handling

Clean Architecture Layers:
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, orchestrator client, YAML catalog, scheduler
"""

import asyncio
import signal
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

# Configuration and Core
from repairdesk.config import Settings, get_settings

# Infrastructure
from repairdesk.infrastructure.database import (
    close_database, create_tables, get_session_context, init_database
)

# Modules
from repairdesk.assignment.application import TechnicianAssignmentService
from repairdesk.assignment.infrastructure import SQLAlchemyTechnicianRepository
from repairdesk.cases.application import CaseService
from repairdesk.cases.infrastructure import (
    SQLAlchemyCaseRepository, SQLAlchemyEscalationRepository, SQLAlchemyTimelineRepository
)
from repairdesk.sla.application import (
    EscalationService, ISLAConfigurationProvider, SLAMonitoringService
)
from repairdesk.sla.domain import EscalationTracker
from repairdesk.sla.infrastructure import SLAConfigManager, SLAScheduler
from repairdesk.workflow.application import (
    IOrchestratorClient, WorkflowEventHandler, WorkflowIntegrationService
)
from repairdesk.workflow.infrastructure import HTTPOrchestratorClient, RetryPolicy

# Logging and notifications
from repairdesk.shared.infrastructure.logging import get_context_logger, get_logger, setup_logging
from repairdesk.shared.infrastructure.notifications import (
    BestEffortNotifier, INotificationSink, LoggingNotificationSink, SlackNotificationSink
)

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Services bound to one database session."""
    case_service: CaseService
    assignment_service: TechnicianAssignmentService
    escalation_service: EscalationService
    monitoring_service: SLAMonitoringService
    workflow_service: WorkflowIntegrationService
    event_handler: WorkflowEventHandler


def build_notification_sink(settings: Settings) -> INotificationSink:
    """Slack when a webhook is configured, log lines otherwise."""
    if settings.slack_webhook_url:
        return SlackNotificationSink(
            webhook_url=settings.slack_webhook_url,
            channel=settings.slack_channel,
            timeout_seconds=settings.slack_timeout_seconds,
        )
    logger.info("Slack webhook not configured, notifications go to the log")
    return LoggingNotificationSink()


def build_orchestrator_client(settings: Settings) -> HTTPOrchestratorClient:
    return HTTPOrchestratorClient(
        base_url=settings.workflow_service_url,
        timeout_seconds=settings.workflow_timeout_seconds,
        retry_policy=RetryPolicy(
            attempts=settings.workflow_retry_attempts,
            base_delay=settings.workflow_retry_delay_seconds,
        ),
    )


def build_container(
    session: AsyncSession,
    settings: Settings,
    config_provider: ISLAConfigurationProvider,
    notifier: BestEffortNotifier,
    orchestrator: IOrchestratorClient,
    clock: Optional[Callable[[], datetime]] = None
) -> ServiceContainer:
    """Wire repositories and services for one unit of work."""
    case_repository = SQLAlchemyCaseRepository(session)
    escalation_repository = SQLAlchemyEscalationRepository(session)
    timeline_repository = SQLAlchemyTimelineRepository(session)
    technician_repository = SQLAlchemyTechnicianRepository(session)

    case_service = CaseService(case_repository, timeline_repository, clock=clock)
    assignment_service = TechnicianAssignmentService(
        settings, technician_repository, case_service, clock=clock
    )
    workflow_service = WorkflowIntegrationService(
        settings, orchestrator, case_service, assignment_service, notifier, clock=clock
    )
    escalation_service = EscalationService(
        escalation_repository,
        case_service,
        notifier,
        EscalationTracker(timedelta(minutes=settings.sla_check_interval_minutes)),
        escalation_handler=workflow_service,
    )
    monitoring_service = SLAMonitoringService(
        settings, case_repository, config_provider, escalation_service, clock=clock
    )
    event_handler = WorkflowEventHandler(
        workflow_service,
        case_service,
        assignment_service,
        escalation_repository,
        notifier,
        clock=clock,
    )
    return ServiceContainer(
        case_service=case_service,
        assignment_service=assignment_service,
        escalation_service=escalation_service,
        monitoring_service=monitoring_service,
        workflow_service=workflow_service,
        event_handler=event_handler,
    )


async def run_service(settings: Settings) -> None:
    """
    Run the SLA sweep until SIGINT/SIGTERM.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load and watch the SLA catalog
    4. Build notifier and orchestrator client
    5. Start the SLA scheduler

    SHUTDOWN:
    1. Stop scheduler and config watcher
    2. Close notifier, orchestrator client and database
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting repair desk core", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database(settings)
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available, sweep will fail until it is", extra={"error": str(e)})

    config_manager = SLAConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    notifier = BestEffortNotifier(build_notification_sink(settings))
    orchestrator = build_orchestrator_client(settings)

    sweep_count = 0

    async def sla_sweep_job() -> None:
        """Background SLA sweep job."""
        nonlocal sweep_count
        sweep_count += 1
        job_logger = get_context_logger(__name__, correlation_id=f"sweep-{sweep_count}")
        async with get_session_context() as session:
            container = build_container(session, settings, config_manager, notifier, orchestrator)
            results = await container.monitoring_service.run_sweep()
        job_logger.info("SLA sweep job finished", extra={"checked": len(results)})

    scheduler = SLAScheduler(interval_minutes=settings.sla_check_interval_minutes)
    if settings.sla_monitoring_enabled:
        await scheduler.start(sla_sweep_job)
    else:
        logger.info("SLA monitoring disabled, scheduler not started")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Repair desk core started")
    await stop.wait()

    # === SHUTDOWN ===
    logger.info("Shutting down repair desk core")
    await scheduler.stop()
    config_manager.stop_watching()
    await notifier.close()
    await orchestrator.close()
    await close_database()


def main() -> None:
    asyncio.run(run_service(get_settings()))


if __name__ == "__main__":
    main()
