"""Execution leases.

Exactly one worker may advance an execution at a time. A worker takes
the lease before loading the record and releases it after persisting
the turn. Leases expire on their own so a crashed worker cannot strand
an execution forever.
"""

import threading
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import uuid4

import redis.asyncio as aioredis
import structlog

from app.config import get_settings
from core.exceptions import LeaseUnavailableError

logger = structlog.get_logger(__name__)

LEASE_KEY_PREFIX = "formflow:execution-lease:"

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LeaseManager(ABC):

    @abstractmethod
    async def acquire(self, execution_id: str, owner: str, ttl_seconds: int) -> bool:
        ...

    @abstractmethod
    async def release(self, execution_id: str, owner: str) -> None:
        ...

    @asynccontextmanager
    async def hold(
        self,
        execution_id: str,
        ttl_seconds: Optional[int] = None,
        owner: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Hold the lease for the duration of the block.

        Raises LeaseUnavailableError if another worker holds it.
        """
        owner = owner or uuid4().hex
        ttl = ttl_seconds or get_settings().EXECUTION_LEASE_SECONDS
        if not await self.acquire(execution_id, owner, ttl):
            raise LeaseUnavailableError(execution_id)
        try:
            yield owner
        finally:
            await self.release(execution_id, owner)

    async def close(self) -> None:
        """Release client resources held by the manager."""


class InMemoryLeaseManager(LeaseManager):
    """Leases for a single process; safe across threads."""

    def __init__(self):
        self._leases: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    async def acquire(self, execution_id: str, owner: str, ttl_seconds: int) -> bool:
        now = time.monotonic()
        with self._lock:
            current = self._leases.get(execution_id)
            if current and current[0] != owner and current[1] > now:
                return False
            self._leases[execution_id] = (owner, now + ttl_seconds)
        return True

    async def release(self, execution_id: str, owner: str) -> None:
        with self._lock:
            current = self._leases.get(execution_id)
            if current and current[0] == owner:
                del self._leases[execution_id]


class RedisLeaseManager(LeaseManager):
    """Leases shared by every worker through Redis ``SET NX EX``."""

    def __init__(self, client: Optional[aioredis.Redis] = None, url: Optional[str] = None):
        self._client = client
        self._url = url or get_settings().REDIS_URL

    def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self._url, decode_responses=True)
        return self._client

    async def acquire(self, execution_id: str, owner: str, ttl_seconds: int) -> bool:
        acquired = await self._redis().set(
            LEASE_KEY_PREFIX + execution_id, owner, nx=True, ex=int(ttl_seconds)
        )
        if not acquired:
            logger.debug("lease_busy", execution_id=execution_id)
        return bool(acquired)

    async def release(self, execution_id: str, owner: str) -> None:
        await self._redis().eval(_RELEASE_SCRIPT, 1, LEASE_KEY_PREFIX + execution_id, owner)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_lease_manager(backend: Optional[str] = None, shared: bool = False) -> LeaseManager:
    """Lease manager for the configured backend.

    ``shared`` is set by callers that coordinate with other processes
    (Celery workers); process-local leases are refused there.
    """
    backend = backend or get_settings().LEASE_BACKEND
    if backend == "redis":
        return RedisLeaseManager()
    if backend == "memory":
        if shared:
            raise ValueError("LEASE_BACKEND=memory cannot coordinate separate workers; use redis")
        return InMemoryLeaseManager()
    raise ValueError(f"Unknown lease backend: {backend!r}")
