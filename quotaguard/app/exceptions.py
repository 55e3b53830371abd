"""Custom exceptions for quotaguard."""

from enum import Enum


class QuotaKind(str, Enum):
    """Which quota a limiter enforces."""
    REQUEST = "request"
    TOKEN = "token"


class QuotaGuardException(Exception):
    """Base class for quotaguard exceptions with HTTP status code.

    All custom exceptions inherit from this class and define their
    specific status_code so an HTTP surface can map them consistently.
    """
    status_code: int = 500

    def __init__(self, message: str = "quotaguard error"):
        self.message = message
        super().__init__(message)


class QuotaExceededError(QuotaGuardException):
    """Raised when an identifier has exhausted a request or token quota.

    ``kind`` tells callers which quota was hit so they can branch on it
    without string matching. Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        kind: QuotaKind,
        identifier: str,
        limit: int = 0,
        remaining: int = 0,
        reset_at: float | None = None,
        detail: str | None = None,
    ):
        self.kind = QuotaKind(kind)
        self.identifier = identifier
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        message = detail or (
            f"{self.kind.value.capitalize()} quota exceeded for '{identifier}'. "
            f"Limit: {limit}, remaining: {remaining}."
        )
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API response format."""
        return {
            "error": "quota_exceeded",
            "kind": self.kind.value,
            "identifier": self.identifier,
            "message": self.message,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
        }


class BackendUnavailableError(QuotaGuardException):
    """Raised when the counter store cannot be reached.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, backend: str, detail: str = "Counter store unavailable"):
        self.backend = backend
        self.detail = detail
        super().__init__(f"{backend}: {detail}")


class HandlerStateError(QuotaGuardException):
    """Raised when a rate limit handler is attached to more than one invocation."""
    status_code = 500

    def __init__(self, state: str, detail: str | None = None):
        self.state = state
        super().__init__(
            detail or f"Handler already used (state={state}); create a new handler per invocation"
        )
