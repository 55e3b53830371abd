"""Fixed window limiter gate.

A gate answers one question: may ``identifier`` spend ``cost`` units now?
Counting lives in a CounterStore; the gate builds window keys, applies the
configured limit and decides what happens when the store is unreachable.
"""

import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from quotaguard.app.core.config import settings
from quotaguard.app.core.logging import get_log_context, get_logger
from quotaguard.app.core.utils import window_index, window_reset_at
from quotaguard.app.exceptions import BackendUnavailableError
from quotaguard.app.services.ratelimit.backends import CounterStore, get_counter_store
from quotaguard.app.services.ratelimit.models import (
    FailurePolicy,
    LimitConfig,
    RateLimitDecision,
)

logger = get_logger(__name__)


class LimiterGate(ABC):
    """Abstract base class for limiter gates."""

    @abstractmethod
    async def check(self, identifier: str, cost: int = 1) -> RateLimitDecision:
        """Check and consume ``cost`` units for ``identifier``.

        Args:
            identifier: Subject being limited
            cost: Units to consume

        Returns:
            RateLimitDecision with allowed status and metadata
        """
        pass


class FixedWindowRatelimit(LimiterGate):
    """Fixed window gate backed by a CounterStore.

    Redis key format:
    - {prefix}:{name}:{identifier}:{window_index} - units used in that window
    """

    def __init__(
        self,
        limit: LimitConfig,
        store: Optional[CounterStore] = None,
        prefix: Optional[str] = None,
        name: str = "default",
        failure_policy: Optional[FailurePolicy | str] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the gate.

        Args:
            limit: Limit bound to this gate
            store: Counter store (defaults to the global store)
            prefix: Key prefix (defaults to settings.ratelimit_prefix)
            name: Distinguishes gates sharing a store, e.g. "request" and "token"
            failure_policy: Behaviour when the store is unreachable
                (defaults to settings.ratelimit_failure_policy)
            clock: Returns current epoch seconds
        """
        self.limit = limit
        self.store = store if store is not None else get_counter_store()
        self.prefix = prefix or settings.ratelimit_prefix
        self.name = name
        self.failure_policy = FailurePolicy(failure_policy or settings.ratelimit_failure_policy)
        self._clock = clock

    def _make_key(self, identifier: str, now: float) -> str:
        index = window_index(now, self.limit.window_seconds)
        return f"{self.prefix}:{self.name}:{identifier}:{index}"

    async def check(self, identifier: str, cost: int = 1) -> RateLimitDecision:
        if cost < 0:
            raise ValueError("cost must be non-negative")

        now = self._clock()
        reset_at = window_reset_at(now, self.limit.window_seconds)
        key = self._make_key(identifier, now)

        try:
            allowed, used = await self.store.check_and_consume(
                key, self.limit.max_count, cost, self.limit.window_ms
            )
        except BackendUnavailableError as e:
            return self._handle_backend_failure(e, identifier, cost, now, reset_at)

        remaining = max(0, self.limit.max_count - used)
        context = get_log_context(
            identifier=identifier, limiter=self.name, cost=cost, remaining=remaining
        )
        if not allowed:
            logger.info(f"Rate limit exceeded for {identifier}", extra=context)
            return RateLimitDecision(
                allowed=False,
                limit=self.limit.max_count,
                remaining=remaining,
                reset_at=reset_at,
                retry_after=max(1, int(reset_at - now)),
            )

        logger.debug(f"Rate limit check passed for {identifier}", extra=context)
        return RateLimitDecision(
            allowed=True,
            limit=self.limit.max_count,
            remaining=remaining,
            reset_at=reset_at,
        )

    def _handle_backend_failure(
        self,
        error: BackendUnavailableError,
        identifier: str,
        cost: int,
        now: float,
        reset_at: float,
    ) -> RateLimitDecision:
        """Apply the configured failure policy.

        Raises:
            BackendUnavailableError: When the policy is ``raise``
        """
        context = get_log_context(
            identifier=identifier, limiter=self.name, cost=cost, backend=error.backend
        )
        if self.failure_policy is FailurePolicy.RAISE:
            logger.error(f"Counter store unavailable, surfacing error: {error}", extra=context)
            raise error

        if self.failure_policy is FailurePolicy.FAIL_CLOSED:
            logger.warning(
                f"Rate limiting fail-closed triggered: {error}. Request denied.",
                extra=context,
            )
            return RateLimitDecision(
                allowed=False,
                limit=self.limit.max_count,
                remaining=0,
                reset_at=reset_at,
                retry_after=max(1, int(reset_at - now)),
                degraded=True,
            )

        logger.warning(
            f"Rate limiting fail-open triggered: {error}. "
            "Request allowed without rate limit check.",
            extra=context,
        )
        return RateLimitDecision(
            allowed=True,
            limit=self.limit.max_count,
            remaining=self.limit.max_count,
            reset_at=reset_at,
            degraded=True,
        )

    async def get_remaining(self, identifier: str) -> int:
        """Return units left for ``identifier`` in the current window."""
        used = await self.store.get_used(self._make_key(identifier, self._clock()))
        return max(0, self.limit.max_count - used)

    async def reset(self, identifier: str) -> None:
        """Clear the current window's counter for ``identifier``."""
        await self.store.reset(self._make_key(identifier, self._clock()))
        logger.info(
            f"Reset {self.name} quota for {identifier}",
            extra=get_log_context(identifier=identifier, limiter=self.name),
        )


def request_limit_from_settings() -> LimitConfig:
    """Request limit configured through settings."""
    return LimitConfig(
        max_count=settings.request_limit_max_count,
        window_seconds=settings.request_limit_window_seconds,
    )


def token_limit_from_settings() -> LimitConfig:
    """Token limit configured through settings."""
    return LimitConfig(
        max_count=settings.token_limit_max_count,
        window_seconds=settings.token_limit_window_seconds,
    )
