"""Tests for the rate limit callback handler."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from quotaguard.app.exceptions import (
    BackendUnavailableError,
    HandlerStateError,
    QuotaExceededError,
    QuotaKind,
)
from quotaguard.app.middleware import HandlerState, RatelimitHandler, TokenUsageFields
from quotaguard.app.providers import MockPipeline
from quotaguard.app.services.ratelimit import InMemoryCounterStore, RateLimitDecision


USAGE_RESULT = {"output": "ok", "token_usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30}}


def returning(value):
    async def pipeline(*args, **kwargs):
        return value
    return pipeline


def raising(error):
    async def pipeline(*args, **kwargs):
        raise error
    return pipeline


@pytest.fixture
def chain():
    return MockPipeline(prompt_tokens=10, completion_tokens=20)


class TestRequestQuota:
    """Tests for the pre-invocation request check."""

    @pytest.mark.asyncio
    async def test_eleventh_call_denied(self, make_gate, chain):
        """10 requests per 60 s: ten pass, the eleventh is denied."""
        request_gate = make_gate(max_count=10, window_seconds=60)

        for _ in range(10):
            handler = RatelimitHandler("u1", request_ratelimit=request_gate)
            result = await handler.ainvoke(chain, {"question": "hello"})
            assert result["output"]
            assert handler.state is HandlerState.COMPLETED

        handler = RatelimitHandler("u1", request_ratelimit=request_gate)
        with pytest.raises(QuotaExceededError) as exc_info:
            await handler.ainvoke(chain, {"question": "hello"})

        assert exc_info.value.kind is QuotaKind.REQUEST
        assert exc_info.value.identifier == "u1"
        assert exc_info.value.limit == 10
        assert exc_info.value.status_code == 429
        assert handler.state is HandlerState.DENIED

    @pytest.mark.asyncio
    async def test_denied_request_never_runs_pipeline(self, make_gate, chain):
        request_gate = make_gate(max_count=1)
        await RatelimitHandler("u1", request_ratelimit=request_gate).ainvoke(chain)
        assert chain.calls == 1

        with pytest.raises(QuotaExceededError):
            await RatelimitHandler("u1", request_ratelimit=request_gate).ainvoke(chain)
        assert chain.calls == 1

    @pytest.mark.asyncio
    async def test_nested_chain_start_charges_once(self, make_gate):
        request_gate = make_gate(max_count=5)
        handler = RatelimitHandler("u1", request_ratelimit=request_gate)

        await handler.on_chain_start()
        await handler.on_chain_start()
        await handler.on_chain_start()

        assert await request_gate.get_remaining("u1") == 4

    @pytest.mark.asyncio
    async def test_concurrent_invocations_with_one_remaining(self, make_gate, chain):
        request_gate = make_gate(max_count=1)
        handlers = [RatelimitHandler("u1", request_ratelimit=request_gate) for _ in range(5)]

        outcomes = await asyncio.gather(
            *(h.ainvoke(chain) for h in handlers), return_exceptions=True
        )

        assert sum(1 for o in outcomes if isinstance(o, dict)) == 1
        assert sum(1 for o in outcomes if isinstance(o, QuotaExceededError)) == 4
        assert chain.calls == 1


class TestTokenQuota:
    """Tests for the post-invocation token check."""

    @pytest.mark.parametrize(
        ("include_output_tokens", "expected_cost"),
        [(False, 10), (True, 30)],
    )
    @pytest.mark.asyncio
    async def test_cost_passed_to_gate(self, include_output_tokens, expected_cost):
        token_gate = AsyncMock()
        token_gate.check.return_value = RateLimitDecision(
            allowed=True, limit=1000, remaining=900, reset_at=0.0
        )
        handler = RatelimitHandler(
            "u1", token_ratelimit=token_gate, include_output_tokens=include_output_tokens
        )

        result = await handler.ainvoke(returning(USAGE_RESULT))

        assert result is USAGE_RESULT
        token_gate.check.assert_awaited_once_with("u1", expected_cost)
        assert handler.token_count == expected_cost

    @pytest.mark.asyncio
    async def test_token_check_runs_after_pipeline(self):
        events = []
        token_gate = AsyncMock()

        async def record_check(identifier, cost):
            events.append("token_check")
            return RateLimitDecision(allowed=True, limit=100, remaining=90, reset_at=0.0)

        async def pipeline():
            events.append("pipeline")
            return USAGE_RESULT

        token_gate.check.side_effect = record_check
        handler = RatelimitHandler("u1", token_ratelimit=token_gate)
        await handler.ainvoke(pipeline)

        assert events == ["pipeline", "token_check"]

    @pytest.mark.asyncio
    async def test_token_quota_exceeded_after_run(self, make_gate, chain):
        token_gate = make_gate(max_count=25, name="token")

        first = RatelimitHandler("u1", token_ratelimit=token_gate, include_output_tokens=True)
        with pytest.raises(QuotaExceededError) as exc_info:
            await first.ainvoke(chain)

        # The pipeline already ran; the failure is reported after the fact
        assert chain.calls == 1
        assert exc_info.value.kind is QuotaKind.TOKEN
        assert first.state is HandlerState.DENIED

    @pytest.mark.asyncio
    async def test_tokens_accumulate_across_invocations(self, make_gate, chain):
        token_gate = make_gate(max_count=25, name="token")

        for _ in range(2):
            await RatelimitHandler("u1", token_ratelimit=token_gate).ainvoke(chain)
        assert await token_gate.get_remaining("u1") == 5

        with pytest.raises(QuotaExceededError) as exc_info:
            await RatelimitHandler("u1", token_ratelimit=token_gate).ainvoke(chain)
        assert exc_info.value.kind is QuotaKind.TOKEN
        assert exc_info.value.remaining == 5

    @pytest.mark.asyncio
    async def test_missing_usage_does_not_fail_call(self, make_gate):
        token_gate = make_gate(max_count=1, name="token")
        handler = RatelimitHandler("u1", token_ratelimit=token_gate)

        result = await handler.ainvoke(returning({"output": "no usage here"}))

        assert result == {"output": "no usage here"}
        assert handler.token_count == 0
        assert handler.state is HandlerState.COMPLETED

    @pytest.mark.asyncio
    async def test_custom_usage_fields(self, make_gate):
        token_gate = make_gate(max_count=100, name="token")
        handler = RatelimitHandler(
            "u1",
            token_ratelimit=token_gate,
            usage_fields=TokenUsageFields(usage_field="usage", prompt_field="input_tokens"),
        )
        await handler.ainvoke(lambda: {"usage": {"input_tokens": 42}})
        assert await token_gate.get_remaining("u1") == 58

    @pytest.mark.asyncio
    async def test_multiple_llm_calls_accumulate(self, make_gate):
        token_gate = make_gate(max_count=100, name="token")
        handler = RatelimitHandler("u1", token_ratelimit=token_gate)

        await handler.on_chain_start()
        await handler.on_llm_end(USAGE_RESULT)
        await handler.on_llm_end(USAGE_RESULT)
        await handler.on_chain_end()

        assert handler.token_count == 20
        assert await token_gate.get_remaining("u1") == 80


class TestHandlerLifecycle:
    """Tests for handler state transitions and error translation."""

    @pytest.mark.asyncio
    async def test_both_limiters(self, make_gate, chain):
        handler = RatelimitHandler(
            "u1",
            request_ratelimit=make_gate(max_count=10, name="request"),
            token_ratelimit=make_gate(max_count=1000, name="token"),
            include_output_tokens=True,
        )
        assert handler.state is HandlerState.IDLE

        await handler.ainvoke(chain)

        assert handler.state is HandlerState.COMPLETED
        assert handler.token_count == 30

    @pytest.mark.asyncio
    async def test_no_limiters_passes_through(self, chain):
        handler = RatelimitHandler("u1")
        result = await handler.ainvoke(chain)
        assert "token_usage" in result

    @pytest.mark.asyncio
    async def test_sync_callable_pipeline(self):
        handler = RatelimitHandler("u1")
        assert await handler.ainvoke(lambda x: {"echo": x}, 5) == {"echo": 5}

    @pytest.mark.asyncio
    async def test_pipeline_errors_propagate_unchanged(self, make_gate):
        error = ConnectionError("model endpoint down")
        handler = RatelimitHandler("u1", request_ratelimit=make_gate())

        with pytest.raises(ConnectionError) as exc_info:
            await handler.ainvoke(raising(error))

        assert exc_info.value is error
        assert handler.state is HandlerState.FAILED

    @pytest.mark.asyncio
    async def test_backend_unavailable_surfaces(self, make_gate, chain):
        broken = AsyncMock(spec=InMemoryCounterStore)
        broken.check_and_consume.side_effect = BackendUnavailableError("rest", "HTTP 503")
        handler = RatelimitHandler("u1", request_ratelimit=make_gate(store=broken))

        with pytest.raises(BackendUnavailableError):
            await handler.ainvoke(chain)

        assert chain.calls == 0
        assert handler.state is HandlerState.FAILED

    @pytest.mark.asyncio
    async def test_fail_open_lets_invocation_through(self, make_gate, chain):
        broken = AsyncMock(spec=InMemoryCounterStore)
        broken.check_and_consume.side_effect = BackendUnavailableError("rest", "HTTP 503")
        handler = RatelimitHandler(
            "u1", request_ratelimit=make_gate(store=broken, failure_policy="fail_open")
        )
        await handler.ainvoke(chain)
        assert handler.state is HandlerState.COMPLETED

    @pytest.mark.asyncio
    async def test_handler_is_single_use(self, make_gate, chain):
        handler = RatelimitHandler("u1", request_ratelimit=make_gate())
        await handler.ainvoke(chain)

        with pytest.raises(HandlerStateError):
            await handler.ainvoke(chain)
        with pytest.raises(HandlerStateError):
            await handler.on_chain_start()
        with pytest.raises(HandlerStateError):
            await handler.on_llm_end(USAGE_RESULT)

    @pytest.mark.asyncio
    async def test_reset_returns_fresh_handler(self, make_gate, chain):
        request_gate = make_gate()
        handler = RatelimitHandler("u1", request_ratelimit=request_gate, include_output_tokens=True)
        await handler.ainvoke(chain)

        fresh = handler.reset()
        assert fresh is not handler
        assert fresh.state is HandlerState.IDLE
        assert fresh.token_count == 0
        assert fresh.identifier == "u1"
        assert fresh.include_output_tokens is True
        await fresh.ainvoke(chain)

        other = handler.reset(identifier="u2")
        assert other.identifier == "u2"
        assert other.request_ratelimit is request_gate

    def test_identifier_required(self):
        with pytest.raises(ValueError):
            RatelimitHandler("")

    def test_quota_exceeded_response(self):
        error = QuotaExceededError(kind="token", identifier="u1", limit=100, remaining=3, reset_at=60.0)
        response = error.to_response()
        assert response["kind"] == "token"
        assert response["remaining"] == 3
        assert "Token quota exceeded" in response["message"]
