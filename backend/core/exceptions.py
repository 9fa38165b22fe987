"""Custom exceptions for the automation engine."""

from typing import Optional


class AutomationError(Exception):
    """Base exception for the automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AutomationError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(AutomationError):
    """Workflow graph or request validation failed.

    Raised before an execution starts, never mid-run.
    """

    def __init__(self, message: str = "Validation failed", violations: Optional[list] = None):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)
        self.violations = violations or []


class ConflictError(AutomationError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class DuplicateKeyError(ConflictError):
    """A context key was written twice without an explicit override."""

    def __init__(self, key: str):
        super().__init__(f"Context key already set: {key}")
        self.key = key


class LeaseUnavailableError(ConflictError):
    """Another worker currently holds the execution lease."""

    def __init__(self, execution_id: str):
        super().__init__(f"Execution {execution_id} is leased by another worker")
        self.execution_id = execution_id


class ActionNotFoundError(NotFoundError):
    """No action is registered under the requested identifier."""

    def __init__(self, action_id: str):
        super().__init__(f"Unknown action: {action_id}")
        self.action_id = action_id


class ConfigResolutionError(AutomationError):
    """A template path could not be resolved.

    The context store catches this and substitutes an empty string.
    """

    def __init__(self, path: str):
        super().__init__(f"Unresolved template path: {path}", 500)
        self.path = path


class ActionFailure(AutomationError):
    """Raised by an action to report a typed failure."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message, 502)
        self.retryable = retryable


class RetryExhausted(ActionFailure):
    """A retryable failure that ran out of attempts."""

    def __init__(self, node_id: str, attempts: int, message: str):
        super().__init__(
            f"Node '{node_id}' failed after {attempts} retries: {message}",
            retryable=False,
        )
        self.node_id = node_id
        self.attempts = attempts


class EngineInternalError(AutomationError):
    """Unexpected error caught at the node dispatch boundary."""

    def __init__(self, message: str = "Internal engine error"):
        super().__init__(message, 500)


class RateLimitExceededError(AutomationError):
    """A workflow has started as many executions as its hourly limit allows."""

    def __init__(self, workflow_id: str, limit: int, retry_after: int):
        super().__init__(
            f"Workflow {workflow_id} reached its limit of {limit} executions per hour", 429
        )
        self.workflow_id = workflow_id
        self.limit = limit
        self.retry_after = retry_after
