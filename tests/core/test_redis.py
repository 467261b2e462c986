"""
Tests for the per-domain run creation lock.
"""

import pytest

from sitescope.core.redis import RunLock


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX / DEL."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        return 1 if self.values.pop(key, None) is not None else 0


class TestRunLock:

    @pytest.mark.asyncio
    async def test_second_acquire_fails_until_released(self):
        lock = RunLock(FakeRedis(), ttl=10)
        assert await lock.acquire("example.com")
        assert not await lock.acquire("EXAMPLE.com")
        await lock.release("example.com")
        assert await lock.acquire("example.com")

    @pytest.mark.asyncio
    async def test_domains_are_independent(self):
        lock = RunLock(FakeRedis(), ttl=10)
        assert await lock.acquire("example.com")
        assert await lock.acquire("other.org")

    @pytest.mark.asyncio
    async def test_key_expires(self):
        redis = FakeRedis()
        await RunLock(redis, namespace="test", ttl=7).acquire("example.com")
        assert redis.ttls == {"test:run-lock:example.com": 7}
