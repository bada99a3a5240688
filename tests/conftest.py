import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from repairdesk.assignment.application import ITechnicianRepository, TechnicianAssignmentService
from repairdesk.assignment.domain import ReassignmentCandidate, Technician, TechnicianPerformance
from repairdesk.cases.application import (
    CaseService, ICaseRepository, IEscalationRepository, ITimelineRepository
)
from repairdesk.cases.domain import Case, EscalationRecord, TimelineEntry
from repairdesk.config import (
    ACTIVE_STATUSES, CaseStatus, Priority, Settings, SLAState
)
from repairdesk.shared.infrastructure.notifications import (
    BestEffortNotifier, INotificationSink, Notification
)
from repairdesk.sla.application import (
    EscalationService, ISLAConfigurationProvider, SLAMonitoringService
)
from repairdesk.sla.domain import EscalationRule, EscalationTracker, SLAConfiguration
from repairdesk.workflow.application import (
    IOrchestratorClient, WorkflowEventHandler, WorkflowIntegrationService
)
from repairdesk.workflow.domain import (
    ConfigurationCriteria, InstanceStatus, StepResult, WorkflowConfiguration, WorkflowInstance
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "testing",
        "sla_monitoring_enabled": True,
        "sla_escalation_enabled": True,
        "sla_penalty_calculation_enabled": False,
        "sla_check_interval_minutes": 15,
        "max_cases_per_technician": 10,
        "workflow_integration_enabled": True,
        "workflow_retry_attempts": 3,
        "workflow_retry_delay_seconds": 1.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_case(case_id: str = "case-1", **overrides) -> Case:
    values = {
        "id": case_id,
        "priority": Priority.MEDIUM,
        "status": CaseStatus.OPEN,
        "created_at": T0,
        "device_type": "laptop",
        "category": "screen",
    }
    values.update(overrides)
    return Case(**values)


def make_sla_config(
    response_hours: float = 4,
    resolution_hours: float = 8,
    rules: Optional[List[EscalationRule]] = None,
    **overrides
) -> SLAConfiguration:
    values = {
        "id": "sla-test",
        "name": "Test SLA",
        "response_time_hours": response_hours,
        "resolution_time_hours": resolution_hours,
        "escalation_rules": rules if rules is not None else [
            EscalationRule(level=1, trigger_after_hours=8, escalation_type="warning",
                           notify_roles=["team_lead"]),
            EscalationRule(level=2, trigger_after_hours=12, escalation_type="critical",
                           notify_roles=["service_manager"]),
        ],
    }
    values.update(overrides)
    return SLAConfiguration(**values)


class Clock:
    """Mutable clock for services under test."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ========== Repository fakes ==========

class FakeCaseRepository(ICaseRepository):
    """In-memory store returning copies, like a database would."""

    def __init__(self):
        self.cases: Dict[str, Case] = {}
        self.pending_documents: Dict[str, List[str]] = {}
        self.reservations: Dict[str, int] = {}
        self.lose_claims_for: set = set()

    def add(self, case: Case) -> Case:
        self.cases[case.id] = copy.copy(case)
        return case

    async def get_by_id(self, case_id: str) -> Optional[Case]:
        case = self.cases.get(case_id)
        return copy.copy(case) if case else None

    async def get_by_workflow_instance(self, instance_id: str) -> Optional[Case]:
        for case in self.cases.values():
            if case.workflow_instance_id == instance_id:
                return copy.copy(case)
        return None

    async def save(self, case: Case) -> Case:
        stored = copy.copy(case)
        existing = self.cases.get(case.id)
        if existing is not None:
            stored.last_sla_check = existing.last_sla_check
            stored.sla_status = existing.sla_status
            stored.escalation_level = max(existing.escalation_level, case.escalation_level)
        self.cases[case.id] = stored
        return case

    async def list_due_for_sla_check(self, checked_before: datetime) -> List[Case]:
        due = [
            c for c in self.cases.values()
            if c.status in ACTIVE_STATUSES
            and (c.last_sla_check is None or c.last_sla_check < checked_before)
        ]
        due.sort(key=lambda c: (-c.priority.rank, c.created_at))
        return [copy.copy(c) for c in due]

    async def claim_sla_check(self, case_id, expected_last_check, checked_at) -> bool:
        case = self.cases[case_id]
        if case_id in self.lose_claims_for or case.last_sla_check != expected_last_check:
            return False
        case.last_sla_check = checked_at
        return True

    async def record_sla_result(self, case_id: str, sla_status: SLAState, escalation_level: int) -> None:
        case = self.cases[case_id]
        case.sla_status = sla_status
        case.escalation_level = max(case.escalation_level, escalation_level)

    async def list_pending_documents(self, case_id: str) -> List[str]:
        return list(self.pending_documents.get(case_id, []))

    async def release_inventory_reservations(self, case_id: str, released_at: datetime) -> int:
        return self.reservations.pop(case_id, 0)

    @asynccontextmanager
    async def savepoint(self):
        snapshot = {case_id: copy.copy(case) for case_id, case in self.cases.items()}
        try:
            yield
        except Exception:
            self.cases = snapshot
            raise


class FakeEscalationRepository(IEscalationRepository):
    def __init__(self):
        self.records: List[EscalationRecord] = []

    async def append(self, record: EscalationRecord) -> EscalationRecord:
        self.records.append(record)
        return record

    async def list_for_case(self, case_id: str) -> List[EscalationRecord]:
        return [r for r in self.records if r.case_id == case_id]


class FakeTimelineRepository(ITimelineRepository):
    def __init__(self):
        self.entries: List[TimelineEntry] = []

    async def append(self, entry: TimelineEntry) -> TimelineEntry:
        self.entries.append(entry)
        return entry

    async def list_for_case(self, case_id: str) -> List[TimelineEntry]:
        return [e for e in self.entries if e.case_id == case_id]

    def event_types(self, case_id: str) -> List[str]:
        return [e.event_type for e in self.entries if e.case_id == case_id]


class FakeTechnicianRepository(ITechnicianRepository):
    """Technicians with explicit workload counters; assign_case honours the cap."""

    def __init__(self, case_repository: FakeCaseRepository):
        self.case_repository = case_repository
        self.technicians: Dict[str, Technician] = {}
        self.workloads: Dict[str, int] = {}
        self.reassignable: Dict[str, List[ReassignmentCandidate]] = {}
        self.assignments: List[tuple] = []
        self.closed: List[str] = []
        self.race_losers: set = set()

    def add(self, technician: Technician) -> Technician:
        self.technicians[technician.id] = technician
        self.workloads[technician.id] = technician.current_workload
        return technician

    def _snapshot(self, technician_id: str) -> Technician:
        t = self.technicians[technician_id]
        return Technician(
            id=t.id, name=t.name, email=t.email, is_active=t.is_active,
            skills=t.skills, current_workload=self.workloads[t.id], location=t.location,
        )

    async def get_by_id(self, technician_id: str) -> Optional[Technician]:
        if technician_id not in self.technicians:
            return None
        return self._snapshot(technician_id)

    async def list_active(self) -> List[Technician]:
        return [self._snapshot(tid) for tid, t in self.technicians.items() if t.is_active]

    async def get_workload(self, technician_id: str) -> int:
        return self.workloads.get(technician_id, 0)

    async def assign_case(self, case_id, technician_id, max_workload, assigned_at) -> bool:
        if technician_id in self.race_losers or self.workloads[technician_id] >= max_workload:
            return False
        case = self.case_repository.cases[case_id]
        case.assign_technician(technician_id, assigned_at)
        self.workloads[technician_id] += 1
        self.assignments.append((case_id, technician_id))
        return True

    async def list_reassignable_cases(self, technician_id: str) -> List[ReassignmentCandidate]:
        return list(self.reassignable.get(technician_id, []))

    async def close_active_assignments(self, case_id: str, closed_at: datetime) -> int:
        self.closed.append(case_id)
        return sum(1 for cid, _ in self.assignments if cid == case_id)

    async def get_performance(self, technician_id: str, since: datetime) -> TechnicianPerformance:
        return TechnicianPerformance(technician_id=technician_id, period_days=0, completed_cases=4)


# ========== External fakes ==========

class RecordingSink(INotificationSink):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("webhook down")
        self.sent.append(notification)


class StaticConfigProvider(ISLAConfigurationProvider):
    def __init__(self, config: Optional[SLAConfiguration]):
        self.config = config

    def resolve(self, case: Case) -> Optional[SLAConfiguration]:
        return self.config


class FakeOrchestrator(IOrchestratorClient):
    """Records every call; raise_on maps a method name to the exception it raises."""

    def __init__(self, configuration: Optional[WorkflowConfiguration] = None):
        self.configuration = configuration
        self.calls: List[tuple] = []
        self.raise_on: Dict[str, Exception] = {}
        self.instances: Dict[str, WorkflowInstance] = {}
        self._next_id = 0

    def _check(self, name: str) -> None:
        if name in self.raise_on:
            raise self.raise_on[name]

    async def select_configuration(self, criteria: ConfigurationCriteria, deadline=None):
        self.calls.append(("select_configuration", criteria))
        self._check("select_configuration")
        return self.configuration

    async def start_instance(self, workflow_definition_id, case_id, context, deadline=None):
        self.calls.append(("start_instance", workflow_definition_id, case_id, context))
        self._check("start_instance")
        self._next_id += 1
        instance = WorkflowInstance(
            id=f"wf-{self._next_id}",
            case_id=case_id,
            status=InstanceStatus.RUNNING,
            workflow_definition_id=workflow_definition_id,
            context=dict(context),
        )
        self.instances[instance.id] = instance
        return instance

    async def complete_step(self, instance_id, step_id, result: StepResult, completed_by, deadline=None):
        self.calls.append(("complete_step", instance_id, step_id, result, completed_by))
        self._check("complete_step")

    async def post_event(self, instance_id, event_type, data: Dict[str, Any], deadline=None):
        self.calls.append(("post_event", instance_id, event_type, data))
        self._check("post_event")

    async def get_instance(self, instance_id, deadline=None):
        self.calls.append(("get_instance", instance_id))
        self._check("get_instance")
        return self.instances.get(instance_id)

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


# ========== Wiring ==========

@dataclass
class World:
    settings: Settings
    clock: Clock
    cases: FakeCaseRepository
    escalations: FakeEscalationRepository
    timeline: FakeTimelineRepository
    technicians: FakeTechnicianRepository
    sink: RecordingSink
    orchestrator: FakeOrchestrator
    config_provider: StaticConfigProvider
    case_service: CaseService
    assignment: TechnicianAssignmentService
    workflow: WorkflowIntegrationService
    escalation: EscalationService
    monitoring: SLAMonitoringService
    events: WorkflowEventHandler


def build_world(
    sla_config: Optional[SLAConfiguration] = None,
    configuration: Optional[WorkflowConfiguration] = None,
    sink_fails: bool = False,
    **setting_overrides
) -> World:
    settings = make_settings(**setting_overrides)
    clock = Clock()
    cases = FakeCaseRepository()
    escalations = FakeEscalationRepository()
    timeline = FakeTimelineRepository()
    technicians = FakeTechnicianRepository(cases)
    sink = RecordingSink(fail=sink_fails)
    notifier = BestEffortNotifier(sink)
    orchestrator = FakeOrchestrator(configuration)
    config_provider = StaticConfigProvider(sla_config)

    case_service = CaseService(cases, timeline, clock=clock)
    assignment = TechnicianAssignmentService(settings, technicians, case_service, clock=clock)
    workflow = WorkflowIntegrationService(
        settings, orchestrator, case_service, assignment, notifier, clock=clock
    )
    escalation = EscalationService(
        escalations, case_service, notifier,
        EscalationTracker(timedelta(minutes=settings.sla_check_interval_minutes)),
        escalation_handler=workflow,
    )
    monitoring = SLAMonitoringService(
        settings, cases, config_provider, escalation, clock=clock
    )
    events = WorkflowEventHandler(
        workflow, case_service, assignment, escalations, notifier, clock=clock
    )
    return World(
        settings=settings, clock=clock, cases=cases, escalations=escalations,
        timeline=timeline, technicians=technicians, sink=sink,
        orchestrator=orchestrator, config_provider=config_provider,
        case_service=case_service, assignment=assignment, workflow=workflow,
        escalation=escalation, monitoring=monitoring, events=events,
    )


@pytest.fixture()
def world() -> World:
    return build_world(
        sla_config=make_sla_config(),
        configuration=WorkflowConfiguration(
            id="cfg-standard", workflow_definition_id="def-repair", name="Standard repair"
        ),
    )
