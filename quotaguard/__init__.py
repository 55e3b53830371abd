"""quotaguard: fixed window request and token quotas for LLM pipeline invocations."""

from quotaguard.app.exceptions import (
    BackendUnavailableError,
    HandlerStateError,
    QuotaExceededError,
    QuotaGuardException,
    QuotaKind,
)
from quotaguard.app.middleware import HandlerState, RatelimitHandler, TokenUsageFields
from quotaguard.app.services.ratelimit import (
    FailurePolicy,
    FixedWindowRatelimit,
    InMemoryCounterStore,
    LimitConfig,
    RateLimitDecision,
    RedisCounterStore,
    RestCounterStore,
)

__version__ = "0.1.0"

__all__ = [
    "BackendUnavailableError",
    "HandlerStateError",
    "QuotaExceededError",
    "QuotaGuardException",
    "QuotaKind",
    "HandlerState",
    "RatelimitHandler",
    "TokenUsageFields",
    "FailurePolicy",
    "FixedWindowRatelimit",
    "InMemoryCounterStore",
    "LimitConfig",
    "RateLimitDecision",
    "RedisCounterStore",
    "RestCounterStore",
]
