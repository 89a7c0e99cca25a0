"""RedisClient as a lock backend: Redis failures surface as LockBackendError."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ehr_audit.infrastructure.cache.redis_client import RedisClient
from ehr_audit.scalability.distributed_lock import LockBackendError


@pytest.fixture
def client():
    c = RedisClient(url="redis://localhost:6379/0")
    c.client = AsyncMock()
    return c


@pytest.mark.asyncio
async def test_set_nx_ex_passes_ttl(client):
    client.client.set = AsyncMock(return_value=True)
    assert await client.set_nx_ex("lock:k", "token", 10) is True
    client.client.set.assert_awaited_once_with("lock:k", "token", nx=True, ex=10)


@pytest.mark.asyncio
async def test_set_nx_ex_returns_false_when_held(client):
    client.client.set = AsyncMock(return_value=None)
    assert await client.set_nx_ex("lock:k", "token", 10) is False


@pytest.mark.asyncio
async def test_delete_if_value_uses_script(client):
    client.client.eval = AsyncMock(return_value=1)
    assert await client.delete_if_value("lock:k", "token") is True
    args = client.client.eval.await_args.args
    assert args[1:] == (1, "lock:k", "token")


@pytest.mark.asyncio
async def test_unreachable_redis_is_backend_error(client):
    client.client.set = AsyncMock(side_effect=RedisConnectionError("refused"))
    with pytest.raises(LockBackendError):
        await client.set_nx_ex("lock:k", "token", 10)
