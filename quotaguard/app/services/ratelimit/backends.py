"""Counter store backends for fixed window rate limiting.

A counter store owns the counter records. Gates only touch them through
``check_and_consume``, which every backend implements atomically:
in-process with an asyncio lock, in Redis with a Lua script.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple

import httpx
import redis
import redis.asyncio as aioredis

from quotaguard.app.core.config import settings
from quotaguard.app.core.http_client import create_http_client
from quotaguard.app.core.logging import get_logger
from quotaguard.app.exceptions import BackendUnavailableError
from quotaguard.app.services.ratelimit.models import CounterEntry
from quotaguard.app.services.ratelimit.redis_lua import FIXED_WINDOW_SCRIPT

logger = get_logger(__name__)


class CounterStore(ABC):
    """Abstract base class for counter stores."""

    name: str = "abstract"

    @abstractmethod
    async def check_and_consume(
        self, key: str, limit: int, cost: int, window_ms: int
    ) -> Tuple[bool, int]:
        """Atomically check and consume ``cost`` units under ``key``.

        Args:
            key: Counter key for one identifier and window
            limit: Maximum units allowed in the window
            cost: Units to consume
            window_ms: Window length, used as the key's expiry

        Returns:
            Tuple of (allowed, used) where used is the counter value after
            the call. A denied call does not change the counter.

        Raises:
            BackendUnavailableError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def get_used(self, key: str) -> int:
        """Return units used under ``key`` (0 when absent)."""
        pass

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Delete the counter under ``key``."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None


class InMemoryCounterStore(CounterStore):
    """Single-process counter store.

    Memory optimization:
    - Uses OrderedDict for LRU cache behavior
    - Limits max entries to prevent unbounded memory growth
    - Expired windows are dropped lazily on access, and all at once when
      the store fills up

    When the store is full of counters whose windows are still open, the
    least recently used 20% are evicted and a warning is logged. An evicted
    identifier starts again from zero in its current window, so size
    ``max_entries`` above the number of identifiers active per window.
    """

    name = "memory"

    def __init__(
        self,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        if max_entries is None:
            max_entries = settings.memory_store_max_entries
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._clock = clock
        self._storage: OrderedDict[str, CounterEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    def _drop_expired(self, now: float) -> int:
        expired = [k for k, e in self._storage.items() if e.expires_at <= now]
        for key in expired:
            del self._storage[key]
        return len(expired)

    def _enforce_lru_limit(self, now: float) -> None:
        """Enforce max entries limit, dropping expired windows before live ones."""
        if len(self._storage) < self._max_entries:
            return
        if self._drop_expired(now) and len(self._storage) < self._max_entries:
            return

        # Remove oldest 20% of entries
        remove_count = min(max(1, int(self._max_entries * 0.2)), len(self._storage))
        logger.warning(
            f"In-memory counter store full ({self._max_entries} entries), "
            f"evicting {remove_count} live counters",
            extra={"backend": self.name},
        )
        for _ in range(remove_count):
            self._storage.popitem(last=False)

    def _live_entry(self, key: str, now: float) -> Optional[CounterEntry]:
        entry = self._storage.get(key)
        if entry is not None and entry.expires_at <= now:
            del self._storage[key]
            return None
        return entry

    async def check_and_consume(
        self, key: str, limit: int, cost: int, window_ms: int
    ) -> Tuple[bool, int]:
        async with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)

            if entry is None:
                self._enforce_lru_limit(now)
                entry = CounterEntry(used=0, expires_at=now + window_ms / 1000.0)
                self._storage[key] = entry
            else:
                self._storage.move_to_end(key)

            if entry.used + cost > limit:
                return False, entry.used

            entry.used += cost
            return True, entry.used

    async def get_used(self, key: str) -> int:
        async with self._lock:
            entry = self._live_entry(key, self._clock())
            return entry.used if entry is not None else 0

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._storage.pop(key, None)

    async def cleanup(self) -> int:
        """Drop expired windows. Returns the number of entries removed."""
        async with self._lock:
            return self._drop_expired(self._clock())


class RedisCounterStore(CounterStore):
    """Redis-based distributed counter store.

    Check-and-consume runs as a Lua script so concurrent callers across
    processes are serialised by Redis.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
    ):
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url

    def _get_redis(self) -> Any:
        """Get or create Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _unavailable(self, e: Exception) -> BackendUnavailableError:
        logger.error(f"Redis counter store error: {e}", extra={"backend": self.name})
        return BackendUnavailableError(self.name, str(e))

    async def check_and_consume(
        self, key: str, limit: int, cost: int, window_ms: int
    ) -> Tuple[bool, int]:
        try:
            result = await self._get_redis().eval(
                FIXED_WINDOW_SCRIPT,
                1,  # Number of keys
                key,  # KEYS[1]
                limit,  # ARGV[1]
                cost,  # ARGV[2]
                window_ms,  # ARGV[3]
            )
        except (redis.RedisError, OSError) as e:
            raise self._unavailable(e) from e
        return bool(int(result[0])), int(result[1])

    async def get_used(self, key: str) -> int:
        try:
            value = await self._get_redis().get(key)
        except (redis.RedisError, OSError) as e:
            raise self._unavailable(e) from e
        return int(value) if value is not None else 0

    async def reset(self, key: str) -> None:
        try:
            await self._get_redis().delete(key)
        except (redis.RedisError, OSError) as e:
            raise self._unavailable(e) from e

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None


class RestCounterStore(CounterStore):
    """Counter store speaking to Redis over a REST endpoint.

    Each command is POSTed as a JSON array (``["EVAL", script, ...]``) with
    a bearer token; the endpoint answers ``{"result": ...}`` or
    ``{"error": ...}``.
    """

    name = "rest"

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = (url or settings.upstash_redis_rest_url).rstrip("/")
        self.token = token or settings.upstash_redis_rest_token
        if not self.url or not self.token:
            raise ValueError(
                "REST counter store requires UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN"
            )
        self._http_client = http_client
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = create_http_client()
        return self._http_client

    async def _command(self, *args: Any) -> Any:
        """Send one command and return its ``result`` field."""
        try:
            response = await self._get_client().post(
                self.url, json=[str(a) for a in args], headers=self.headers
            )
        except httpx.HTTPError as e:
            logger.error(f"REST counter store unreachable: {e}", extra={"backend": self.name})
            raise BackendUnavailableError(self.name, str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code >= 400 or "error" in body:
            detail = body.get("error") or f"HTTP {response.status_code}"
            logger.error(f"REST counter store error: {detail}", extra={"backend": self.name})
            raise BackendUnavailableError(self.name, detail)
        if "result" not in body:
            raise self._malformed(body)
        return body["result"]

    def _malformed(self, result: Any) -> BackendUnavailableError:
        logger.error(
            f"REST counter store returned malformed response: {result!r}",
            extra={"backend": self.name},
        )
        return BackendUnavailableError(self.name, "malformed response")

    async def check_and_consume(
        self, key: str, limit: int, cost: int, window_ms: int
    ) -> Tuple[bool, int]:
        result = await self._command("EVAL", FIXED_WINDOW_SCRIPT, 1, key, limit, cost, window_ms)
        if not isinstance(result, list) or len(result) != 2:
            raise self._malformed(result)
        try:
            return bool(int(result[0])), int(result[1])
        except (TypeError, ValueError) as e:
            raise self._malformed(result) from e

    async def get_used(self, key: str) -> int:
        result = await self._command("GET", key)
        if result is None:
            return 0
        try:
            return int(result)
        except (TypeError, ValueError) as e:
            raise self._malformed(result) from e

    async def reset(self, key: str) -> None:
        await self._command("DEL", key)

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def create_counter_store(backend: Optional[str] = None) -> CounterStore:
    """Create a counter store for ``backend`` (defaults to settings)."""
    backend = (backend or settings.ratelimit_backend).lower()
    if backend == "redis":
        logger.info("Using Redis counter store")
        return RedisCounterStore()
    if backend == "rest":
        logger.info("Using REST counter store")
        return RestCounterStore()
    if backend == "memory":
        logger.debug("Using in-memory counter store")
        return InMemoryCounterStore()
    raise ValueError(f"Unknown counter store backend: {backend}")


_counter_store: Optional[CounterStore] = None


def get_counter_store() -> CounterStore:
    """Get the global counter store instance."""
    global _counter_store
    if _counter_store is None:
        _counter_store = create_counter_store()
    return _counter_store


def reset_counter_store() -> None:
    """Reset the global counter store instance."""
    global _counter_store
    _counter_store = None
