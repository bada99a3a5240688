import asyncio
import json

import httpx
import pytest

from conftest import make_case
from repairdesk.config import CaseStatus
from repairdesk.core import (
    OrchestratorTimeoutException, OrchestratorUnavailableException,
    WorkflowRejectedException, WorkflowServiceException
)
from repairdesk.workflow.domain import ConfigurationCriteria, InstanceStatus, StepResult
from repairdesk.workflow.infrastructure import HTTPOrchestratorClient, RetryPolicy

BASE_URL = "http://orchestrator.test"


class FakeTime:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_client(handler, attempts: int = 3, fake_time: FakeTime = None):
    fake_time = fake_time or FakeTime()
    policy = RetryPolicy(attempts=attempts, base_delay=1.0, sleep=fake_time.sleep, clock=fake_time)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPOrchestratorClient(BASE_URL, retry_policy=policy, http_client=http_client)


def refusing(calls):
    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)
    return handler


CRITERIA = ConfigurationCriteria(device_type="laptop", service_type="repair", customer_tier="premium")


# ========== Retry ==========

def test_gives_up_after_configured_attempts():
    calls = []
    fake_time = FakeTime()
    client = make_client(refusing(calls), attempts=3, fake_time=fake_time)

    with pytest.raises(OrchestratorUnavailableException) as exc_info:
        asyncio.run(client.post_event("wf-1", "escalation", {}))

    assert len(calls) == 3
    assert fake_time.sleeps == [1.0, 2.0]
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    assert exc_info.value.endpoint == "POST /api/workflow/case-event"


def test_succeeds_on_retry():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(204)

    asyncio.run(make_client(handler).post_event("wf-1", "escalation", {"caseId": "case-1"}))

    assert len(calls) == 2


def test_rejection_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(422, json={"error": "unknown step"})

    with pytest.raises(WorkflowRejectedException) as exc_info:
        asyncio.run(make_client(handler).complete_step("wf-1", "nope", StepResult(), "tech-1"))

    assert len(calls) == 1
    assert exc_info.value.status_code == 422


def undecodable(calls):
    def handler(request):
        calls.append(request)
        raise httpx.DecodingError("invalid gzip stream", request=request)
    return handler


def test_request_error_is_wrapped_and_not_retried():
    calls = []

    with pytest.raises(WorkflowServiceException) as exc_info:
        asyncio.run(make_client(undecodable(calls)).post_event("wf-1", "escalation", {}))

    assert len(calls) == 1
    assert not isinstance(exc_info.value, OrchestratorUnavailableException)
    assert isinstance(exc_info.value.__cause__, httpx.DecodingError)


def test_status_change_survives_undecodable_response(world):
    case = make_case()
    case.attach_workflow("wf-1", "cfg-standard")
    world.cases.add(case)
    world.workflow._orchestrator = make_client(undecodable([]))

    assert asyncio.run(world.workflow.handle_case_status_change("case-1", CaseStatus.ON_HOLD)) is False


def test_deadline_stops_retrying():
    calls = []
    fake_time = FakeTime(now=0.0)
    client = make_client(refusing(calls), attempts=5, fake_time=fake_time)

    with pytest.raises(OrchestratorTimeoutException):
        asyncio.run(client.post_event("wf-1", "escalation", {}, deadline=1.5))

    # first retry waits 1s, the second would wait 2s past the deadline
    assert len(calls) == 2
    assert fake_time.sleeps == [1.0]


def test_expired_deadline_makes_no_call():
    calls = []
    client = make_client(refusing(calls), fake_time=FakeTime(now=100.0))

    with pytest.raises(OrchestratorTimeoutException) as exc_info:
        asyncio.run(client.get_instance("wf-1", deadline=50.0))

    assert calls == []
    assert exc_info.value.attempts == 0


def test_policy_requires_an_attempt():
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)


# ========== Endpoints ==========

def test_select_configuration_sends_camel_case_criteria():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"configuration": {
            "id": "cfg-premium", "workflowDefinitionId": "def-premium", "name": "Premium"
        }})

    configuration = asyncio.run(make_client(handler).select_configuration(CRITERIA))

    assert seen["path"] == "/api/workflow-configuration/select"
    assert seen["body"]["deviceType"] == "laptop"
    assert seen["body"]["customerTier"] == "premium"
    assert seen["body"]["additionalContext"]["priority"] == "medium"
    assert configuration.id == "cfg-premium"
    assert configuration.workflow_definition_id == "def-premium"


@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"configuration": None}),
    httpx.Response(404),
])
def test_select_configuration_without_match(response):
    assert asyncio.run(make_client(lambda request: response).select_configuration(CRITERIA)) is None


def test_start_instance_parses_wrapped_instance():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"instance": {
            "id": "wf-42", "status": "running", "currentStepId": "registration"
        }})

    instance = asyncio.run(make_client(handler).start_instance("def-1", "case-1", {"caseId": "case-1"}))

    assert seen["body"]["workflowDefinitionId"] == "def-1"
    assert seen["body"]["startedBy"] == "system"
    assert instance.id == "wf-42"
    assert instance.case_id == "case-1"
    assert instance.status == InstanceStatus.RUNNING
    assert instance.current_step_id == "registration"


def test_start_instance_with_unexpected_body():
    handler = lambda request: httpx.Response(200, json={"instance": {"status": "running"}})

    with pytest.raises(WorkflowServiceException):
        asyncio.run(make_client(handler).start_instance("def-1", "case-1", {}))


def test_get_instance_unknown_returns_none():
    handler = lambda request: httpx.Response(404)

    assert asyncio.run(make_client(handler).get_instance("wf-missing")) is None


def test_complete_step_body():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    result = StepResult(output={"assignedTechnicianId": "tech-1"}, notes="done")
    asyncio.run(make_client(handler).complete_step("wf-1", "device_inspection", result, "tech-1"))

    assert seen["path"] == "/api/workflow/step/complete"
    assert seen["body"] == {
        "instanceId": "wf-1",
        "stepId": "device_inspection",
        "result": {"status": "completed", "output": {"assignedTechnicianId": "tech-1"}, "notes": "done"},
        "completedBy": "tech-1",
    }
