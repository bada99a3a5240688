import asyncio
from datetime import timedelta

from conftest import T0, StaticConfigProvider, build_world, make_case, make_sla_config
from repairdesk.config import CaseStatus, EscalationType, Priority, SLAState, WorkflowState
from repairdesk.core import OrchestratorUnavailableException
from repairdesk.sla.application import SweepResponse
from repairdesk.sla.domain import EscalationRule
from repairdesk.workflow.domain import WorkflowConfiguration

URGENT_SLA = make_sla_config(
    response_hours=8,
    resolution_hours=8,
    rules=[EscalationRule(level=1, trigger_after_hours=8, escalation_type="warning",
                          notify_roles=["team_lead"])],
)


def test_urgent_case_at_risk_then_escalated_to_level_one():
    world = build_world(
        sla_config=URGENT_SLA,
        configuration=WorkflowConfiguration(id="cfg-esc", workflow_definition_id="def-esc"),
    )
    world.cases.add(make_case(priority=Priority.URGENT))

    world.clock.now = T0 + timedelta(hours=7)
    first = asyncio.run(world.monitoring.run_sweep())

    assert [r.sla_status for r in first] == [SLAState.AT_RISK]
    assert not first[0].escalation_required
    assert world.escalations.records == []

    world.clock.now = T0 + timedelta(hours=9)
    second = asyncio.run(world.monitoring.run_sweep())

    assert second[0].sla_status == SLAState.BREACHED
    assert second[0].escalation_required
    assert second[0].escalation_level == 1
    assert "escalated_to_level_1" in second[0].actions
    assert [r.level for r in world.escalations.records] == [1]
    assert world.escalations.records[0].kind == EscalationType.WARNING

    stored = world.cases.cases["case-1"]
    assert stored.escalation_level == 1
    assert stored.sla_status == SLAState.BREACHED
    assert stored.last_sla_check == T0 + timedelta(hours=9)

    # no running workflow: an escalation workflow is started instead
    criteria = world.orchestrator.called("select_configuration")[0][1]
    assert criteria.device_type == "escalation"
    assert stored.workflow_instance_id == "wf-1"
    assert stored.workflow_status == WorkflowState.RUNNING
    assert "workflow_notified" in second[0].actions

    assert [n.recipient_role for n in world.sink.sent] == ["team_lead"]
    assert "sla_escalation" in world.timeline.event_types("case-1")


def test_running_workflow_receives_escalation_event(world):
    case = make_case(
        priority=Priority.HIGH,
        status=CaseStatus.ASSIGNED,
        assigned_at=T0 + timedelta(hours=1),
        assigned_technician_id="tech-1",
    )
    case.attach_workflow("wf-existing", "cfg-standard")
    world.cases.add(case)
    world.clock.now = T0 + timedelta(hours=9)

    results = asyncio.run(world.monitoring.run_sweep())

    assert results[0].escalation_level == 1
    events = world.orchestrator.called("post_event")
    assert events[0][1:3] == ("wf-existing", "escalation")
    assert events[0][3]["escalationLevel"] == 1
    assert world.orchestrator.called("start_instance") == []
    # rule role plus the assigned technician
    assert {n.recipient_role for n in world.sink.sent} == {"team_lead", "technician"}


def test_sweep_orders_by_priority_then_age(world):
    world.cases.add(make_case("low-old", priority=Priority.LOW, created_at=T0))
    world.cases.add(make_case("urgent-new", priority=Priority.URGENT, created_at=T0 + timedelta(hours=1)))
    world.cases.add(make_case("urgent-old", priority=Priority.URGENT, created_at=T0))
    world.cases.add(make_case("high", priority=Priority.HIGH, created_at=T0))
    world.clock.now = T0 + timedelta(hours=2)

    results = asyncio.run(world.monitoring.run_sweep())

    assert [r.case_id for r in results] == ["urgent-old", "urgent-new", "high", "low-old"]


def test_terminal_and_recently_checked_cases_are_skipped(world):
    world.cases.add(make_case("done", status=CaseStatus.COMPLETED, completed_at=T0 + timedelta(hours=1)))
    world.cases.add(make_case("recent", last_sla_check=T0 + timedelta(hours=1, minutes=55)))
    world.cases.add(make_case("stale", last_sla_check=T0 + timedelta(hours=1)))
    world.clock.now = T0 + timedelta(hours=2)

    results = asyncio.run(world.monitoring.run_sweep())

    assert [r.case_id for r in results] == ["stale"]
    assert results[0].next_check_at == T0 + timedelta(hours=2, minutes=15)


def test_lost_claim_is_skipped(world):
    world.cases.add(make_case("mine"))
    world.cases.add(make_case("theirs"))
    world.cases.lose_claims_for.add("theirs")
    world.clock.now = T0 + timedelta(hours=1)

    results = asyncio.run(world.monitoring.run_sweep())

    assert [r.case_id for r in results] == ["mine"]


def test_failure_on_one_case_does_not_abort_sweep():
    class ExplodingProvider(StaticConfigProvider):
        def resolve(self, case):
            if case.id == "bad":
                raise RuntimeError("corrupt configuration link")
            return super().resolve(case)

    world = build_world(sla_config=make_sla_config())
    world.monitoring._config_provider = ExplodingProvider(make_sla_config())
    world.cases.add(make_case("bad", priority=Priority.URGENT))
    world.cases.add(make_case("good"))
    world.clock.now = T0 + timedelta(hours=1)

    results = asyncio.run(world.monitoring.run_sweep())

    assert [r.case_id for r in results] == ["good"]
    # the failed case keeps no claim and is due again
    assert world.cases.cases["bad"].last_sla_check is None
    assert world.cases.cases["good"].last_sla_check == T0 + timedelta(hours=1)


def test_notification_failure_does_not_block_escalation():
    world = build_world(sla_config=URGENT_SLA, sink_fails=True)
    world.cases.add(make_case())
    world.clock.now = T0 + timedelta(hours=9)

    results = asyncio.run(world.monitoring.run_sweep())

    assert results[0].escalation_level == 1
    assert "notifications_sent_0_of_1" in results[0].actions
    assert world.cases.cases["case-1"].escalation_level == 1


def test_orchestrator_failure_is_not_fatal_for_escalation():
    world = build_world(
        sla_config=URGENT_SLA,
        configuration=WorkflowConfiguration(id="cfg-esc", workflow_definition_id="def-esc"),
    )
    world.orchestrator.raise_on["select_configuration"] = OrchestratorUnavailableException(
        "POST /api/workflow-configuration/select", 3, ConnectionError("refused")
    )
    world.cases.add(make_case())
    world.clock.now = T0 + timedelta(hours=9)

    results = asyncio.run(world.monitoring.run_sweep())

    assert "workflow_notification_failed" in results[0].actions
    assert [r.level for r in world.escalations.records] == [1]
    assert world.cases.cases["case-1"].workflow_instance_id is None


def test_level_fires_once_across_sweeps(world):
    world.cases.add(make_case())

    levels = []
    for hours in (9, 10, 11, 13, 20):
        world.clock.now = T0 + timedelta(hours=hours)
        for result in asyncio.run(world.monitoring.run_sweep()):
            if result.escalation_required:
                levels.append(result.escalation_level)

    assert levels == [1, 2]
    assert [r.level for r in world.escalations.records] == [1, 2]


def test_disabled_monitoring_returns_nothing():
    world = build_world(sla_config=make_sla_config(), sla_monitoring_enabled=False)
    world.cases.add(make_case())
    world.clock.now = T0 + timedelta(hours=20)

    assert asyncio.run(world.monitoring.run_sweep()) == []
    assert world.cases.cases["case-1"].last_sla_check is None


def test_disabled_escalation_still_records_status():
    world = build_world(sla_config=make_sla_config(), sla_escalation_enabled=False)
    world.cases.add(make_case())
    world.clock.now = T0 + timedelta(hours=20)

    results = asyncio.run(world.monitoring.run_sweep())

    assert results[0].sla_status == SLAState.BREACHED
    assert not results[0].escalation_required
    assert world.escalations.records == []
    assert world.cases.cases["case-1"].sla_status == SLAState.BREACHED


def test_case_without_configuration_is_met():
    world = build_world(sla_config=None)
    world.cases.add(make_case())
    world.clock.now = T0 + timedelta(hours=500)

    results = asyncio.run(world.monitoring.run_sweep())

    assert results[0].sla_status == SLAState.MET
    assert not results[0].escalation_required


def test_sweep_response_summary(world):
    world.cases.add(make_case("a"))
    world.cases.add(make_case("b", created_at=T0 + timedelta(hours=8)))
    world.clock.now = T0 + timedelta(hours=9)

    summary = SweepResponse.from_results(asyncio.run(world.monitoring.run_sweep()))

    assert summary.checked == 2
    assert summary.escalated == 1
    assert summary.breached == 1


def test_evaluate_compliance_has_no_side_effects(world):
    world.cases.add(make_case())

    result = world.monitoring.evaluate_compliance(
        world.cases.cases["case-1"], T0 + timedelta(hours=9)
    )

    assert result.status == SLAState.BREACHED
    assert world.cases.cases["case-1"].sla_status is None
    assert world.escalations.records == []
