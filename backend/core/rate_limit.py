"""Per-workflow execution rate limiting.

Each workflow may start at most ``max_executions_per_hour`` executions
in a fixed one-hour window that opens with the first start. A refused
start is not counted.

The in-memory counter serves a single process; workers that share a
limit across processes count in Redis.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

import redis.asyncio as aioredis

from app.config import get_settings

RATE_KEY_PREFIX = "formflow:workflow-rate:"
HOUR_SECONDS = 3600

# Refuse without counting once the limit is reached; the window opens on the first hit
_HIT_SCRIPT = """
local current = tonumber(redis.call("get", KEYS[1]) or "0")
if current >= tonumber(ARGV[1]) then
    return {0, redis.call("ttl", KEYS[1])}
end
if redis.call("incr", KEYS[1]) == 1 then
    redis.call("expire", KEYS[1], ARGV[2])
end
return {1, 0}
"""


class RateLimiter(ABC):

    @abstractmethod
    async def hit(self, key: str, limit: int, window_seconds: int = HOUR_SECONDS) -> Tuple[bool, int]:
        """Count one start against ``key``.

        Returns:
            (allowed, retry_after_seconds)
        """
        ...

    async def close(self) -> None:
        """Release client resources held by the limiter."""


class InMemoryRateLimiter(RateLimiter):
    """Thread-safe fixed window counter for a single process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (count, window_start)
        self._windows: dict[str, Tuple[int, float]] = {}

    async def hit(self, key: str, limit: int, window_seconds: int = HOUR_SECONDS) -> Tuple[bool, int]:
        now = self._clock()
        with self._lock:
            count, window_start = self._windows.get(key, (0, now))
            elapsed = now - window_start
            if elapsed >= window_seconds:
                count, window_start, elapsed = 0, now, 0.0
            if count >= limit:
                return False, max(1, int(window_seconds - elapsed))
            self._windows[key] = (count + 1, window_start)
        return True, 0


class RedisRateLimiter(RateLimiter):
    """Counters shared by every worker through Redis ``INCR``/``EXPIRE``."""

    def __init__(self, client: Optional[aioredis.Redis] = None, url: Optional[str] = None):
        self._client = client
        self._url = url or get_settings().REDIS_URL

    def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._url, decode_responses=True)
        return self._client

    async def hit(self, key: str, limit: int, window_seconds: int = HOUR_SECONDS) -> Tuple[bool, int]:
        allowed, ttl = await self._redis().eval(
            _HIT_SCRIPT, 1, RATE_KEY_PREFIX + key, int(limit), int(window_seconds)
        )
        if allowed:
            return True, 0
        # A key without expiry reports -1
        return False, int(ttl) if int(ttl) > 0 else int(window_seconds)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_rate_limiter(backend: Optional[str] = None, shared: bool = False) -> RateLimiter:
    """Rate limiter for the configured backend.

    ``shared`` is set by callers that count together with other
    processes (Celery workers); process-local counters are refused there.
    """
    backend = backend or get_settings().RATE_LIMIT_BACKEND
    if backend == "redis":
        return RedisRateLimiter()
    if backend == "memory":
        if shared:
            raise ValueError("RATE_LIMIT_BACKEND=memory cannot count across workers; use redis")
        return InMemoryRateLimiter()
    raise ValueError(f"Unknown rate limit backend: {backend!r}")
