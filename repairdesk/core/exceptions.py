"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Validation failures map to
4xx-style responses, external service failures to 5xx-style responses.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    def __init__(
        self,
        message: str,
        errors: Optional[list[str]] = None,
        details: Optional[dict] = None
    ):
        self.errors = list(errors or [])
        if self.errors:
            message = f"{message}: {', '.join(self.errors)}"
        super().__init__(message, details or {"errors": self.errors})


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class WorkflowServiceException(ExternalServiceException):
    """Exception for workflow orchestrator failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Workflow Service", message, details)


class OrchestratorUnavailableException(WorkflowServiceException):
    """Raised when every retry attempt failed at the transport level."""

    def __init__(
        self,
        endpoint: str,
        attempts: int,
        original_error: Exception,
        details: Optional[dict] = None
    ):
        self.endpoint = endpoint
        self.attempts = attempts
        self.original_error = original_error
        super().__init__(
            f"{endpoint} unreachable after {attempts} attempt(s): {original_error}",
            details or {"endpoint": endpoint, "attempts": attempts}
        )


class OrchestratorTimeoutException(WorkflowServiceException):
    """Raised when the caller's deadline expired inside the retry loop."""

    def __init__(
        self,
        endpoint: str,
        attempts: int,
        original_error: Optional[Exception] = None,
        details: Optional[dict] = None
    ):
        self.endpoint = endpoint
        self.attempts = attempts
        self.original_error = original_error
        super().__init__(
            f"{endpoint} deadline exceeded after {attempts} attempt(s)",
            details or {"endpoint": endpoint, "attempts": attempts}
        )


class WorkflowRejectedException(WorkflowServiceException):
    """Raised when the orchestrator answers with a non-success status."""

    def __init__(
        self,
        endpoint: str,
        status_code: int,
        reason: str = "",
        details: Optional[dict] = None
    ):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(
            f"{endpoint} rejected with {status_code} {reason}".rstrip(),
            details or {"endpoint": endpoint, "status_code": status_code}
        )
