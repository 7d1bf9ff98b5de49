# infra_dashboard/infrastructure/cache/redis_client.py

import functools
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from infra_dashboard.application.exceptions import ActionFailedError, BackendUnavailableError
from infra_dashboard.domain.schemas.snapshot import ServiceStatus

SCAN_COUNT = 200

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def translate_redis_errors(func: F) -> F:
    """Surface store failures as application errors: rejected commands vs. unreachable store."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except ResponseError as e:
            raise ActionFailedError(f"Queue store rejected command: {e}") from e
        except (RedisError, OSError) as e:
            raise BackendUnavailableError(f"Queue store unavailable: {e}") from e

    return wrapper  # type: ignore[return-value]


class RedisClient:
    """
    Shared redis.asyncio connection pool for the job-queue store. One instance per process,
    used concurrently by the aggregation loop and by action handlers.
    """

    def __init__(
        self,
        url: Optional[str],
        socket_timeout: float = 5.0,
        max_connections: int = 20,
    ) -> None:
        self._url = url
        self._client: Optional[redis.Redis] = None
        if url:
            self._client = redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
                max_connections=max_connections,
            )

    @property
    def configured(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise BackendUnavailableError("REDIS_URL is not configured")
        return self._client

    async def ping(self) -> ServiceStatus:
        """Connectivity check with round-trip latency."""
        if self._client is None:
            return ServiceStatus.failed("REDIS_URL is not configured")
        start = time.monotonic()
        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            return ServiceStatus.failed(str(e) or "Failed to connect to Redis")
        latency_ms = int((time.monotonic() - start) * 1000)
        return ServiceStatus(ok=True, message="Connected to Redis", latency_ms=latency_ms)

    @translate_redis_errors
    async def get(self, key: str) -> Optional[str]:
        """Get value for key. Returns None if key does not exist."""
        return await self.client.get(key)

    @translate_redis_errors
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Set key to value, with TTL in seconds when given."""
        await self.client.set(key, value, ex=ttl)

    @translate_redis_errors
    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    @translate_redis_errors
    async def ttl(self, key: str) -> int:
        return await self.client.ttl(key)

    @translate_redis_errors
    async def scan_keys(self, pattern: str) -> list[str]:
        """All keys matching pattern, via incremental SCAN (never KEYS)."""
        return [key async for key in self.client.scan_iter(match=pattern, count=SCAN_COUNT)]

    @translate_redis_errors
    async def mget(self, keys: list[str]) -> list[Optional[str]]:
        if not keys:
            return []
        return await self.client.mget(keys)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
