"""
Workflow Infrastructure Layer
=============================

- External: HTTP orchestrator client and its retry policy
"""

from repairdesk.workflow.infrastructure.external import (
    HTTPOrchestratorClient,
    RetryPolicy,
    deadline_after,
)

__all__ = [
    "HTTPOrchestratorClient",
    "RetryPolicy",
    "deadline_after",
]
