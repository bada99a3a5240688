import asyncio
from datetime import timedelta

import pytest

from conftest import T0, build_world, make_case
from repairdesk.assignment.domain import (
    AssignmentCriteria, ReassignmentCandidate, Technician, TechnicianScorer
)
from repairdesk.config import CaseStatus, Priority
from repairdesk.core import DomainException

CRITERIA = AssignmentCriteria(device_type="laptop", category="screen", priority=Priority.MEDIUM)


def tech(tech_id: str, workload: int = 0, skills=("laptop", "screen"), **kwargs) -> Technician:
    return Technician(id=tech_id, name=tech_id.title(), skills=skills, current_workload=workload, **kwargs)


# ========== Scoring ==========

def test_skilled_busy_technician_outscores_idle_unskilled_one():
    scorer = TechnicianScorer(10)
    skilled = tech("skilled", workload=9)
    unskilled = tech("unskilled", workload=2, skills=())

    assert scorer.score(skilled, CRITERIA).score == pytest.approx(68)
    assert scorer.score(unskilled, CRITERIA).score == pytest.approx(49)
    # lacking every requested skill makes a technician ineligible
    assert [s.technician.id for s in scorer.rank([unskilled, skilled], CRITERIA)] == ["skilled"]


def test_technician_at_cap_is_not_eligible():
    scorer = TechnicianScorer(10)

    assert scorer.rank([tech("full", workload=10)], CRITERIA) == []
    assert scorer.rank([tech("inactive", is_active=False)], CRITERIA) == []
    assert [s.technician.id for s in scorer.rank([tech("spare", workload=9)], CRITERIA)] == ["spare"]


@pytest.mark.parametrize("workload", [0, 3, 9, 10, 25])
@pytest.mark.parametrize("location", [None, "north", "south"])
def test_score_stays_within_bounds(workload, location):
    scorer = TechnicianScorer(10)
    criteria = AssignmentCriteria(device_type="laptop", location="north")

    result = scorer.score(tech("t", workload=workload, location=location), criteria)

    assert 0 <= result.score <= 100
    assert result.workload_score >= 0


def test_location_scores():
    criteria = AssignmentCriteria(location="north")

    assert TechnicianScorer.location_score(tech("a", location="north"), criteria) == 100
    assert TechnicianScorer.location_score(tech("b", location="south"), criteria) == 30
    assert TechnicianScorer.location_score(tech("c"), criteria) == 50
    assert TechnicianScorer.location_score(tech("d", location="north"), None) == 50


def test_no_requested_skills_gives_neutral_skill_score():
    result = TechnicianScorer(10).score(tech("t", skills=()), AssignmentCriteria())

    assert result.skill_match == 50


def test_equal_scores_break_ties_on_id():
    ranked = TechnicianScorer(10).rank([tech("bravo", 3), tech("alpha", 3), tech("charlie", 1)], CRITERIA)

    assert [s.technician.id for s in ranked] == ["charlie", "alpha", "bravo"]


def test_scorer_rejects_non_positive_cap():
    with pytest.raises(ValueError):
        TechnicianScorer(0)


# ========== Auto-assignment ==========

def test_auto_assign_picks_best_and_records_timeline(world):
    world.cases.add(make_case())
    world.technicians.add(tech("busy", workload=8))
    world.technicians.add(tech("free", workload=1))

    assigned = asyncio.run(world.assignment.auto_assign("case-1", CRITERIA))

    assert assigned.id == "free"
    assert world.technicians.assignments == [("case-1", "free")]
    stored = world.cases.cases["case-1"]
    assert stored.assigned_technician_id == "free"
    assert stored.status == CaseStatus.ASSIGNED
    assert stored.assigned_at == T0
    entry = world.timeline.entries[-1]
    assert entry.event_type == "technician_assigned"
    assert entry.payload.technician_id == "free"


def test_auto_assign_returns_none_when_nobody_eligible(world):
    world.cases.add(make_case())
    world.technicians.add(tech("full", workload=10))
    world.technicians.add(tech("wrong-skills", skills=("phone",)))

    assert asyncio.run(world.assignment.auto_assign("case-1", CRITERIA)) is None
    assert world.technicians.assignments == []
    assert world.cases.cases["case-1"].assigned_technician_id is None


def test_auto_assign_falls_back_when_best_fills_up_concurrently(world):
    world.cases.add(make_case())
    world.technicians.add(tech("best", workload=0))
    world.technicians.add(tech("second", workload=4))
    world.technicians.race_losers.add("best")

    assigned = asyncio.run(world.assignment.auto_assign("case-1", CRITERIA))

    assert assigned.id == "second"
    assert world.technicians.assignments == [("case-1", "second")]


def test_auto_assign_rejects_closed_case(world):
    world.cases.add(make_case(status=CaseStatus.CANCELLED, completed_at=T0 + timedelta(hours=1)))
    world.technicians.add(tech("free"))

    with pytest.raises(DomainException):
        asyncio.run(world.assignment.auto_assign("case-1", CRITERIA))


def test_concurrent_assignments_never_exceed_cap():
    world = build_world(max_cases_per_technician=2)
    for i in range(4):
        world.cases.add(make_case(f"case-{i}"))
    world.technicians.add(tech("only", workload=0))

    async def assign_all():
        return await asyncio.gather(*(
            world.assignment.auto_assign(f"case-{i}", CRITERIA) for i in range(4)
        ))

    results = asyncio.run(assign_all())

    assert sum(1 for r in results if r is not None) == 2
    assert world.technicians.workloads["only"] == 2


def test_workload_queries(world):
    world.technicians.add(tech("t", workload=9))

    assert asyncio.run(world.assignment.get_technician_workload("t")) == 9
    assert asyncio.run(world.assignment.can_assign_more_cases("t")) is True
    world.technicians.workloads["t"] = 10
    assert asyncio.run(world.assignment.can_assign_more_cases("t")) is False


def test_available_technicians_ranked(world):
    world.technicians.add(tech("busy", workload=8))
    world.technicians.add(tech("idle"))
    world.technicians.add(tech("full", workload=10))
    world.technicians.add(tech("phones", skills=("phone",)))

    ranked = asyncio.run(world.assignment.get_available_technicians(CRITERIA))
    unfiltered = asyncio.run(world.assignment.get_available_technicians())

    assert [s.technician.id for s in ranked] == ["idle", "busy"]
    assert {s.technician.id for s in unfiltered} == {"busy", "idle", "phones"}


# ========== Rebalancing ==========

def _candidates(prefix: str, count: int, priority: Priority = Priority.MEDIUM):
    return [
        ReassignmentCandidate(
            case_id=f"{prefix}-{i}", priority=priority, created_at=T0 + timedelta(hours=i)
        )
        for i in range(count)
    ]


def test_no_suggestions_without_overload(world):
    world.technicians.add(tech("a", workload=10))
    world.technicians.add(tech("b", workload=0))

    assert asyncio.run(world.assignment.suggest_reassignments()) == []


def test_suggestions_take_low_priority_recent_cases_first(world):
    world.technicians.add(tech("over", workload=12))
    world.technicians.add(tech("idle", workload=0))
    world.technicians.reassignable["over"] = (
        _candidates("urgent", 2, Priority.URGENT) + _candidates("low", 2, Priority.LOW)
        + _candidates("medium", 1)
    )

    suggestions = asyncio.run(world.assignment.suggest_reassignments())

    assert [s.case_id for s in suggestions] == ["low-1", "low-0", "medium-0"]
    assert all(s.suggested_technician_id == "idle" for s in suggestions)
    assert all(s.current_technician_id == "over" for s in suggestions)


def test_suggestions_never_push_receiver_past_cap():
    scorer = TechnicianScorer(10)
    technicians = [tech("over", workload=15), tech("a", workload=9), tech("b", workload=8)]

    suggestions = scorer.plan_reassignments(
        technicians, {"over": _candidates("c", 5)}, batch_size=5
    )

    received = {}
    for s in suggestions:
        received[s.suggested_technician_id] = received.get(s.suggested_technician_id, 0) + 1
    assert received == {"a": 1, "b": 2}


def test_performance_reports_requested_period(world):
    performance = asyncio.run(world.assignment.get_technician_performance("t", days=7))

    assert performance.period_days == 7
    assert performance.completed_cases == 4
