"""
Run a mock chain under request and token quotas and print each outcome.

Usage:
    python scripts/demo_ratelimited_chain.py --user u1 --calls 12
"""
import argparse
import asyncio
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from quotaguard.app.core.config import settings
from quotaguard.app.core.logging import setup_logging
from quotaguard.app.exceptions import QuotaExceededError
from quotaguard.app.middleware import RatelimitHandler
from quotaguard.app.providers import MockPipeline
from quotaguard.app.services.ratelimit import (
    FixedWindowRatelimit,
    create_counter_store,
    request_limit_from_settings,
    token_limit_from_settings,
)


async def run(user: str, calls: int, include_output_tokens: bool) -> None:
    store = create_counter_store()
    request_ratelimit = FixedWindowRatelimit(request_limit_from_settings(), store=store, name="request")
    token_ratelimit = FixedWindowRatelimit(token_limit_from_settings(), store=store, name="token")
    chain = MockPipeline()

    print(f"=== backend={settings.ratelimit_backend} user={user} ===\n")
    try:
        for i in range(1, calls + 1):
            # One handler per invocation
            handler = RatelimitHandler(
                identifier=user,
                request_ratelimit=request_ratelimit,
                token_ratelimit=token_ratelimit,
                include_output_tokens=include_output_tokens,
            )
            try:
                result = await handler.ainvoke(chain, {"question": "hello, tell me about python"})
            except QuotaExceededError as e:
                print(f"#{i}: denied ({e.kind.value} quota), resets at {e.reset_at}")
                continue
            print(f"#{i}: {result['output']} [{handler.token_count} tokens charged]")
    finally:
        await store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Rate limited mock chain demo")
    parser.add_argument("--user", default="u1")
    parser.add_argument("--calls", type=int, default=settings.request_limit_max_count + 1)
    parser.add_argument("--include-output-tokens", action="store_true")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(run(args.user, args.calls, args.include_output_tokens))


if __name__ == "__main__":
    main()
