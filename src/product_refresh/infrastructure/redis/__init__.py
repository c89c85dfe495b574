"""Redis infrastructure with graceful degradation.

Provides the cache used to share circuit breaker state between processes
and the lease that keeps refresh runs from overlapping. Every helper no-ops
(or reports "not held") when Redis is unavailable.
"""

import uuid
from typing import Any

import orjson
import redis.asyncio as aioredis
import structlog

from product_refresh.config import get_settings
from product_refresh.services.circuit_breaker import CircuitSnapshot
from shared.constants import CIRCUIT_STATE_KEY_PREFIX, REFRESH_LOCK_KEY

logger = structlog.get_logger()

_redis_client: aioredis.Redis | None = None

# Delete the key only if we still own it
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the global async Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        try:
            _redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning("Redis unavailable, locks and shared state disabled", error=str(e))
            _redis_client = None
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class CacheService:
    """Async Redis cache with orjson serialization. No-ops if Redis is unavailable."""

    def __init__(self, client: aioredis.Redis | None):
        self.client = client

    async def get(self, key: str) -> Any | None:
        if not self.client:
            return None
        try:
            data = await self.client.get(key)
            if data:
                return orjson.loads(data)
        except Exception as e:
            logger.warning("Cache get failed", key=key, error=str(e))
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        if not self.client:
            return
        try:
            await self.client.set(key, orjson.dumps(value), ex=ttl_seconds)
        except Exception as e:
            logger.warning("Cache set failed", key=key, error=str(e))

    async def health_check(self) -> bool:
        if not self.client:
            return False
        try:
            return await self.client.ping()
        except Exception:
            return False


class CircuitStateStore:
    """Shares circuit breaker snapshots between processes."""

    def __init__(self, cache: CacheService, ttl_seconds: int = 24 * 60 * 60):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(name: str) -> str:
        return f"{CIRCUIT_STATE_KEY_PREFIX}{name}"

    async def save(self, snapshot: CircuitSnapshot) -> None:
        await self.cache.set(self.key(snapshot.name), snapshot.to_dict(), self.ttl_seconds)

    async def load(self, name: str) -> CircuitSnapshot | None:
        data = await self.cache.get(self.key(name))
        if not data:
            return None
        try:
            return CircuitSnapshot.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.warning("Ignoring malformed circuit state", name=name, error=str(e))
            return None


class RunLock:
    """Lease held for the duration of one refresh run (``SET NX EX``)."""

    def __init__(
        self,
        client: aioredis.Redis | None,
        key: str = REFRESH_LOCK_KEY,
        ttl_seconds: int = 600,
    ):
        self.client = client
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        """Try to take the lease.

        Returns False only when another run holds it. When Redis is
        unreachable the run proceeds unguarded.
        """
        if not self.client:
            logger.warning("Redis unavailable, refresh run proceeding without lock")
            return True
        try:
            acquired = await self.client.set(self.key, self.token, nx=True, ex=self.ttl_seconds)
        except Exception as e:
            logger.warning("Refresh lock acquire failed, proceeding without lock", error=str(e))
            return True
        self.held = bool(acquired)
        return self.held

    async def release(self) -> None:
        if not self.client or not self.held:
            return
        try:
            await self.client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except Exception as e:
            logger.warning("Refresh lock release failed", key=self.key, error=str(e))
        finally:
            self.held = False
