"""Domain exceptions for the KeyWork marketplace.

These exceptions are framework-agnostic and represent business rule
violations. Each carries a stable machine-readable ``code`` and a
human-readable ``message``; the API layer's middleware translates them to
HTTP responses without exposing internal detail.
"""

from __future__ import annotations


class KeyWorkError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "KEYWORK_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input / identity errors ---


class ValidationError(KeyWorkError):
    """Malformed or missing input. Never retried."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")


class UnauthenticatedError(KeyWorkError):
    """Missing, malformed or expired credential."""

    def __init__(self, message: str = "Missing or invalid credentials") -> None:
        super().__init__(message=message, code="UNAUTHENTICATED")


class UnauthorizedError(KeyWorkError):
    """Authenticated, but not allowed to perform the action.

    Example: a basic-tier worker accepting a job that requires ``verified``.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="UNAUTHORIZED")


# --- Record lookup / lifecycle errors ---


class NotFoundError(KeyWorkError):
    """Record absent, or present but not owned by the caller.

    Both cases are reported identically so existence is not leaked.
    """

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            code="NOT_FOUND",
        )
        self.resource = resource
        self.resource_id = resource_id


class PreconditionFailedError(KeyWorkError):
    """The job is not in the status the operation requires.

    Raised by the state machine guard and by a compare-and-set update that
    lost a race. Covers duplicate actions such as a second approve.
    """

    def __init__(
        self,
        job_id: str,
        required: str | tuple[str, ...] | None = None,
        actual: str | None = None,
    ) -> None:
        super().__init__(
            message=f"Job not found or not in required status: {job_id}",
            code="PRECONDITION_FAILED",
        )
        self.job_id = job_id
        self.required = required
        self.actual = actual


class InvalidTransitionError(KeyWorkError):
    """The requested transition can never happen from the current status.

    Example: cancelling a submitted job, which must be approved or rejected.
    """

    def __init__(self, current_status: str, event: str, reason: str = "") -> None:
        message = f"Invalid transition: {event} from {current_status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message, code="INVALID_TRANSITION")
        self.current_status = current_status
        self.event = event


class DuplicateOperationError(KeyWorkError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )


# --- Upstream / money errors ---


class UpstreamUnavailableError(KeyWorkError):
    """Ledger or storage dependency failed or timed out."""

    def __init__(self, dependency: str, detail: str = "") -> None:
        message = f"{dependency} is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message=message, code="UPSTREAM_UNAVAILABLE")
        self.dependency = dependency


class InsufficientFundsError(KeyWorkError):
    """The ledger rejected a hold, or a withdrawal exceeds the balance."""

    def __init__(self, message: str = "Insufficient balance to fund this job") -> None:
        super().__init__(message=message, code="INSUFFICIENT_FUNDS")


# --- Throttling ---


class RateLimitExceededError(KeyWorkError):
    """Caller exceeded its quota for an operation category."""

    def __init__(self, category: str, limit: int, retry_after_seconds: int) -> None:
        super().__init__(
            message=f"Rate limit exceeded for {category}: {limit} requests per window",
            code="RATE_LIMITED",
        )
        self.category = category
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds
