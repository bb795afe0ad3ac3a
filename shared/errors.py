"""
Shared exception hierarchy for flowtest.

Every error raised by the engine client, the resilience layer and the test
runner derives from ``FlowtestError`` so callers can catch the whole family
with a single clause while still dispatching on the concrete type.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from shared.test_runner.models import ResourceHandles


class FlowtestError(Exception):
    """Base class for all flowtest errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.timestamp = datetime.now(timezone.utc)


class ValidationError(FlowtestError):
    """Raised when a test case or workflow graph is structurally invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"Validation error: {message}", details)


class ConfigurationError(FlowtestError):
    """Raised when configuration is missing or inconsistent."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"Configuration error: {message}", details)


class EngineConnectionError(FlowtestError, ConnectionError):
    """Raised when the automation engine cannot be reached.

    ``code`` classifies the transport failure (``connection_refused``,
    ``timeout``) and drives the default retry policy.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(f"Connection failed: {message}", details)
        self.code = code


class WorkflowError(FlowtestError):
    """Raised when a remote workflow operation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"Workflow error: {message}", details)


class CredentialError(FlowtestError):
    """Raised when a remote credential operation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"Credential error: {message}", details)


class ApiError(FlowtestError):
    """Raised for any non-2xx response from the engine."""

    def __init__(
        self,
        status_code: int,
        status_text: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        merged["status_code"] = status_code
        super().__init__(f"API error ({status_code}): {message}", merged)
        self.status_code = status_code
        self.status_text = status_text


class OperationTimeoutError(FlowtestError, TimeoutError):
    """Raised when a retry budget, rate-limiter wait or test timeout is exceeded.

    ``timeout`` is expressed in seconds.
    """

    def __init__(
        self,
        operation: str,
        timeout: float,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        merged["timeout"] = timeout
        super().__init__(f"Operation '{operation}' timed out after {timeout:g}s", merged)
        self.operation = operation
        self.timeout = timeout


class RetryExhaustedError(FlowtestError):
    """Raised when every allowed attempt failed with a retryable error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"Operation failed after {attempts} attempts: {last_error}",
            {"last_error": str(last_error), "attempts": attempts},
        )
        self.last_error = last_error
        self.attempts = attempts


class ResourceProvisioningError(FlowtestError):
    """Raised when provisioning stops partway.

    ``handles`` holds every resource created before the failure so the caller
    can still clean them up.
    """

    def __init__(self, message: str, handles: "ResourceHandles") -> None:
        super().__init__(message, {"handles": handles.as_dict()})
        self.handles = handles


class TestFileError(FlowtestError):
    """Raised when a declarative test-case file cannot be loaded."""

    __test__ = False


__all__ = [
    "ApiError",
    "ConfigurationError",
    "CredentialError",
    "EngineConnectionError",
    "FlowtestError",
    "OperationTimeoutError",
    "ResourceProvisioningError",
    "RetryExhaustedError",
    "TestFileError",
    "ValidationError",
    "WorkflowError",
]
