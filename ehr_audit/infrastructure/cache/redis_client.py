# ehr_audit/infrastructure/cache/redis_client.py

import redis.asyncio as redis
from redis.exceptions import RedisError

from ehr_audit.config.settings import settings
from ehr_audit.scalability.distributed_lock import LockBackendError

_DELETE_IF_VALUE = (
    "if redis.call('get', KEYS[1]) == ARGV[1] then return redis.call('del', KEYS[1]) else return 0 end"
)


class RedisClient:
    """Lock backend for the cross-node chain-tail lock. Redis failures surface as LockBackendError."""

    def __init__(self, url: str | None = None):
        self.client = redis.from_url(
            url or settings.redis_url,
            decode_responses=True,
        )

    async def set_nx_ex(self, key: str, value: str, ttl: int) -> bool:
        """Set key to value only if not exists, with TTL. Returns True if key was set."""
        try:
            return bool(await self.client.set(key, value, nx=True, ex=ttl))
        except RedisError as e:
            raise LockBackendError(str(e)) from e

    async def get(self, key: str) -> str | None:
        """Get value for key. Returns None if key does not exist."""
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise LockBackendError(str(e)) from e

    async def delete_if_value(self, key: str, value: str) -> bool:
        """Delete key only if its value equals value (atomic). Returns True if deleted."""
        try:
            result = await self.client.eval(_DELETE_IF_VALUE, 1, key, value)
        except RedisError as e:
            raise LockBackendError(str(e)) from e
        return bool(result)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.client.aclose()
