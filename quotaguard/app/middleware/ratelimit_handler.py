"""Rate limit callback handler for pipeline invocations.

The handler mediates exactly one pipeline invocation under a request quota,
a token quota, or both:

    IDLE -> PRE_CHECK -> RUNNING -> POST_CHECK -> COMPLETED
                |                        |
                +-------> DENIED <-------+

The request quota is checked before the pipeline starts (cost 1). The token
quota is checked after the pipeline produced a result, since its cost is
only known then. A token denial is raised after the fact: the pipeline has
already run.

Handlers are single use. Create a new one per invocation, or call
``reset()`` to get a fresh handler with the same configuration.
"""

import inspect
from enum import Enum
from typing import Any, Optional

from quotaguard.app.core.logging import get_log_context, get_logger
from quotaguard.app.exceptions import (
    BackendUnavailableError,
    HandlerStateError,
    QuotaExceededError,
    QuotaKind,
)
from quotaguard.app.middleware.usage import (
    DEFAULT_USAGE_FIELDS,
    TokenUsageFields,
    extract_token_count,
)
from quotaguard.app.services.ratelimit.limiter import LimiterGate
from quotaguard.app.services.ratelimit.models import RateLimitDecision

logger = get_logger(__name__)


class HandlerState(str, Enum):
    """Lifecycle of a rate limit handler."""
    IDLE = "idle"
    PRE_CHECK = "pre_check"
    RUNNING = "running"
    POST_CHECK = "post_check"
    COMPLETED = "completed"
    DENIED = "denied"
    FAILED = "failed"


TERMINAL_STATES = frozenset({HandlerState.COMPLETED, HandlerState.DENIED, HandlerState.FAILED})


class RatelimitHandler:
    """Callback handler enforcing request and token quotas for one invocation.

    Example:
        >>> handler = RatelimitHandler(
        ...     identifier="user-123",
        ...     request_ratelimit=FixedWindowRatelimit(LimitConfig(10, 60), name="request"),
        ...     token_ratelimit=FixedWindowRatelimit(LimitConfig(1000, 60), name="token"),
        ...     include_output_tokens=True,
        ... )
        >>> result = await handler.ainvoke(chain, {"question": "hi"})
    """

    def __init__(
        self,
        identifier: str,
        request_ratelimit: Optional[LimiterGate] = None,
        token_ratelimit: Optional[LimiterGate] = None,
        include_output_tokens: bool = False,
        usage_fields: Optional[TokenUsageFields] = None,
    ):
        """Initialize the handler.

        Args:
            identifier: Subject being limited (e.g. a user id)
            request_ratelimit: Gate charged one unit before the invocation
            token_ratelimit: Gate charged the result's token count afterwards
            include_output_tokens: Charge total tokens instead of prompt tokens
            usage_fields: Field names locating token usage in results
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")
        self.identifier = identifier
        self.request_ratelimit = request_ratelimit
        self.token_ratelimit = token_ratelimit
        self.include_output_tokens = include_output_tokens
        self.usage_fields = usage_fields or DEFAULT_USAGE_FIELDS

        self.state = HandlerState.IDLE
        self.token_count = 0
        self._request_checked = False

    def _context(self, limiter: Optional[str] = None, **extra) -> dict:
        return get_log_context(
            identifier=self.identifier, limiter=limiter, state=self.state.value, **extra
        )

    def _ensure_usable(self) -> None:
        if self.state in TERMINAL_STATES:
            raise HandlerStateError(self.state.value)

    def _deny(self, kind: QuotaKind, decision: RateLimitDecision) -> QuotaExceededError:
        self.state = HandlerState.DENIED
        logger.warning(
            f"{kind.value.capitalize()} quota exceeded for {self.identifier}",
            extra=self._context(kind.value, remaining=decision.remaining),
        )
        return QuotaExceededError(
            kind=kind,
            identifier=self.identifier,
            limit=decision.limit,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
        )

    async def on_chain_start(self, *args: Any, **kwargs: Any) -> None:
        """Check the request quota before the pipeline does any work.

        Nested chains fire this hook repeatedly; only the first call
        charges the request quota.

        Raises:
            QuotaExceededError: kind=REQUEST when the request quota is exhausted
            BackendUnavailableError: When the gate surfaces a store failure
            HandlerStateError: When the handler was already used
        """
        self._ensure_usable()
        if self._request_checked:
            return
        self._request_checked = True

        self.state = HandlerState.PRE_CHECK
        if self.request_ratelimit is not None:
            try:
                decision = await self.request_ratelimit.check(self.identifier, 1)
            except BackendUnavailableError:
                self.state = HandlerState.FAILED
                raise
            if not decision.allowed:
                raise self._deny(QuotaKind.REQUEST, decision)
        self.state = HandlerState.RUNNING

    async def on_llm_end(self, result: Any, **kwargs: Any) -> None:
        """Charge the token quota with the usage reported in ``result``.

        Raises:
            QuotaExceededError: kind=TOKEN when the token quota is exhausted
            BackendUnavailableError: When the gate surfaces a store failure
            HandlerStateError: When the handler was already used
        """
        self._ensure_usable()
        self.state = HandlerState.POST_CHECK

        cost = extract_token_count(result, self.usage_fields, self.include_output_tokens)
        self.token_count += cost

        if self.token_ratelimit is not None:
            try:
                decision = await self.token_ratelimit.check(self.identifier, cost)
            except BackendUnavailableError:
                self.state = HandlerState.FAILED
                raise
            if not decision.allowed:
                raise self._deny(QuotaKind.TOKEN, decision)

        logger.debug(
            f"Charged {cost} tokens for {self.identifier}",
            extra=self._context("token", cost=cost),
        )
        self.state = HandlerState.RUNNING

    async def on_chain_end(self, *args: Any, **kwargs: Any) -> None:
        """Mark the invocation as completed."""
        if self.state not in TERMINAL_STATES:
            self.state = HandlerState.COMPLETED

    async def on_chain_error(self, error: BaseException, **kwargs: Any) -> None:
        """Mark the invocation as failed. The error itself is left to the caller."""
        if self.state not in TERMINAL_STATES:
            self.state = HandlerState.FAILED
            logger.debug(
                f"Pipeline failed for {self.identifier}: {error!r}",
                extra=self._context(),
            )

    async def ainvoke(self, pipeline: Any, *args: Any, **kwargs: Any) -> Any:
        """Run one pipeline invocation under this handler's quotas.

        Args:
            pipeline: Object with an ``ainvoke`` method, or a sync/async callable
            *args: Positional arguments for the pipeline
            **kwargs: Keyword arguments for the pipeline

        Returns:
            The pipeline's result

        Raises:
            QuotaExceededError: When a quota is exhausted
            HandlerStateError: When the handler was already used
            Exception: Any pipeline error, unchanged
        """
        if self.state is not HandlerState.IDLE:
            raise HandlerStateError(self.state.value)

        await self.on_chain_start()

        try:
            if hasattr(pipeline, "ainvoke"):
                result = pipeline.ainvoke(*args, **kwargs)
            else:
                result = pipeline(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            await self.on_chain_error(e)
            raise

        await self.on_llm_end(result)
        await self.on_chain_end()
        return result

    def reset(self, identifier: Optional[str] = None) -> "RatelimitHandler":
        """Return a fresh handler with this handler's configuration.

        Args:
            identifier: New identifier (defaults to the current one)
        """
        return RatelimitHandler(
            identifier=identifier or self.identifier,
            request_ratelimit=self.request_ratelimit,
            token_ratelimit=self.token_ratelimit,
            include_output_tokens=self.include_output_tokens,
            usage_fields=self.usage_fields,
        )
