"""
Workflow External Service Integrations
======================================

HTTP client for the workflow orchestrator.

Every call goes through `RetryPolicy`:
- Transport failures are retried, waiting base_delay x attempt between tries
- Other request errors (decoding, redirects) are wrapped and not retried
- Non-2xx answers are not retried and raise WorkflowRejectedException
- A caller deadline (time.monotonic() value) stops the loop early
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from repairdesk.core import (
    OrchestratorTimeoutException, OrchestratorUnavailableException,
    WorkflowRejectedException, WorkflowServiceException
)
from repairdesk.shared.infrastructure.logging import get_logger
from repairdesk.workflow.application import (
    IOrchestratorClient, WorkflowConfigurationMessage, WorkflowInstanceMessage
)
from repairdesk.workflow.domain import (
    ConfigurationCriteria, StepResult, WorkflowConfiguration, WorkflowInstance
)

logger = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def deadline_after(seconds: float) -> float:
    """Deadline value for orchestrator calls, `seconds` from now."""
    return time.monotonic() + seconds


class RetryPolicy:
    """
    Bounded retry for orchestrator calls.

    attempts counts every try, the first included. The delay before try
    n+1 is base_delay * n.
    """

    def __init__(
        self,
        attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    def _remaining(self, deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return deadline - self._clock()

    async def run(
        self,
        endpoint: str,
        operation: Callable[[], Awaitable[T]],
        deadline: Optional[float] = None
    ) -> T:
        """
        Run operation until it succeeds or the policy gives up.

        Raises:
            OrchestratorUnavailableException: every attempt failed at the
                transport level; chains the last transport error
            OrchestratorTimeoutException: the deadline expired first
            WorkflowServiceException: any other request error, raised at once
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.attempts + 1):
            remaining = self._remaining(deadline)
            if remaining is not None and remaining <= 0:
                raise OrchestratorTimeoutException(endpoint, attempt - 1, last_error)

            try:
                if remaining is None:
                    return await operation()
                return await asyncio.wait_for(operation(), timeout=remaining)
            except asyncio.TimeoutError as e:
                raise OrchestratorTimeoutException(endpoint, attempt, e) from e
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "Workflow service call failed",
                    extra={
                        "endpoint": endpoint,
                        "attempt": attempt,
                        "max_attempts": self.attempts,
                        "error": str(e) or e.__class__.__name__,
                    }
                )
            except httpx.RequestError as e:
                raise WorkflowServiceException(
                    f"{endpoint} failed: {e.__class__.__name__}",
                    {"endpoint": endpoint, "attempt": attempt, "error": str(e)}
                ) from e

            if attempt < self.attempts:
                delay = self.base_delay * attempt
                remaining = self._remaining(deadline)
                if remaining is not None and delay >= remaining:
                    raise OrchestratorTimeoutException(endpoint, attempt, last_error) from last_error
                await self._sleep(delay)

        raise OrchestratorUnavailableException(endpoint, self.attempts, last_error) from last_error


class HTTPOrchestratorClient(IOrchestratorClient):
    """
    JSON-over-HTTP orchestrator client.

    Endpoints:
    - POST /api/workflow-configuration/select
    - POST /api/workflow/start
    - POST /api/workflow/step/complete
    - POST /api/workflow/case-event
    - GET  /api/workflow/instance/{id}
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._retry = retry_policy or RetryPolicy()
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        deadline: Optional[float] = None,
        allow_not_found: bool = False
    ) -> Optional[Dict[str, Any]]:
        endpoint = f"{method} {path}"

        async def call() -> httpx.Response:
            client = await self._get_client()
            return await client.request(method, f"{self._base_url}{path}", json=body)

        response = await self._retry.run(endpoint, call, deadline)

        if allow_not_found and response.status_code == 404:
            return None
        if not response.is_success:
            raise WorkflowRejectedException(endpoint, response.status_code, response.reason_phrase)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise WorkflowServiceException(f"{endpoint} returned invalid JSON") from e

    @staticmethod
    def _parse(model: Type[M], data: Any, endpoint: str) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise WorkflowServiceException(
                f"{endpoint} returned an unexpected body",
                {"endpoint": endpoint, "errors": e.errors(include_url=False)}
            ) from e

    async def select_configuration(
        self,
        criteria: ConfigurationCriteria,
        deadline: Optional[float] = None
    ) -> Optional[WorkflowConfiguration]:
        path = "/api/workflow-configuration/select"
        data = await self._request(
            "POST",
            path,
            {
                "deviceType": criteria.device_type,
                "serviceType": criteria.service_type,
                "customerTier": criteria.customer_tier,
                "additionalContext": {
                    "priority": criteria.priority.value,
                    **criteria.additional_context,
                },
            },
            deadline=deadline,
            allow_not_found=True,
        )
        configuration = (data or {}).get("configuration")
        if not configuration:
            return None
        return self._parse(WorkflowConfigurationMessage, configuration, path).to_domain()

    async def start_instance(
        self,
        workflow_definition_id: str,
        case_id: str,
        context: Dict[str, Any],
        deadline: Optional[float] = None
    ) -> WorkflowInstance:
        path = "/api/workflow/start"
        data = await self._request(
            "POST",
            path,
            {
                "workflowDefinitionId": workflow_definition_id,
                "caseId": case_id,
                "context": context,
                "startedBy": "system",
            },
            deadline=deadline,
        )
        body = data.get("instance", data)
        body.setdefault("caseId", case_id)
        return self._parse(WorkflowInstanceMessage, body, path).to_domain()

    async def complete_step(
        self,
        instance_id: str,
        step_id: str,
        result: StepResult,
        completed_by: str,
        deadline: Optional[float] = None
    ) -> None:
        await self._request(
            "POST",
            "/api/workflow/step/complete",
            {
                "instanceId": instance_id,
                "stepId": step_id,
                "result": {
                    "status": result.status,
                    "output": result.output,
                    "notes": result.notes,
                },
                "completedBy": completed_by,
            },
            deadline=deadline,
        )

    async def post_event(
        self,
        instance_id: str,
        event_type: str,
        data: Dict[str, Any],
        deadline: Optional[float] = None
    ) -> None:
        await self._request(
            "POST",
            "/api/workflow/case-event",
            {"instanceId": instance_id, "eventType": event_type, "eventData": data},
            deadline=deadline,
        )

    async def get_instance(
        self,
        instance_id: str,
        deadline: Optional[float] = None
    ) -> Optional[WorkflowInstance]:
        path = f"/api/workflow/instance/{instance_id}"
        data = await self._request("GET", path, deadline=deadline, allow_not_found=True)
        if data is None:
            return None
        return self._parse(WorkflowInstanceMessage, data.get("instance", data), path).to_domain()

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
