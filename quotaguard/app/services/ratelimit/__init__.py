"""Fixed window rate limiting backed by a shared counter store.

This package provides the limiter gate and its counter stores
(in-memory, Redis and Redis-over-REST).
"""

from quotaguard.app.services.ratelimit.backends import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
    RestCounterStore,
    create_counter_store,
    get_counter_store,
    reset_counter_store,
)
from quotaguard.app.services.ratelimit.limiter import (
    FixedWindowRatelimit,
    LimiterGate,
    request_limit_from_settings,
    token_limit_from_settings,
)
from quotaguard.app.services.ratelimit.models import (
    FailurePolicy,
    LimitConfig,
    RateLimitDecision,
)
from quotaguard.app.services.ratelimit.redis_lua import FIXED_WINDOW_SCRIPT

__all__ = [
    # Models
    "FailurePolicy",
    "LimitConfig",
    "RateLimitDecision",
    # Stores
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "RestCounterStore",
    "create_counter_store",
    "get_counter_store",
    "reset_counter_store",
    "FIXED_WINDOW_SCRIPT",
    # Gates
    "LimiterGate",
    "FixedWindowRatelimit",
    "request_limit_from_settings",
    "token_limit_from_settings",
]
