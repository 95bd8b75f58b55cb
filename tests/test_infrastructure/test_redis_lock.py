"""Tests for the scan overlap lock."""

from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from engagement_lifecycle.domain.exceptions import DuplicateOperationError
from engagement_lifecycle.infrastructure.redis_client import scan_lock


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX EX and the release script."""

    def __init__(self, down: bool = False) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = down

    async def set(self, key, value, nx=False, ex=None):  # noqa: ANN001, ANN201
        if self.down:
            raise RedisConnectionError("Connection refused")
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.ttls[key] = ex
        return True

    async def eval(self, script, numkeys, key, token):  # noqa: ANN001, ANN201
        if self.values.get(key) == token:
            del self.values[key]
            return 1
        return 0


class TestScanLock:
    @pytest.mark.asyncio
    async def test_held_for_the_cycle_then_released(self) -> None:
        redis = FakeRedis()

        async with scan_lock(redis, "lock:scan", 300) as token:
            assert redis.values["lock:scan"] == token
            assert redis.ttls["lock:scan"] == 300

        assert "lock:scan" not in redis.values

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_rejected(self) -> None:
        redis = FakeRedis()

        async with scan_lock(redis, "lock:scan", 300):
            with pytest.raises(DuplicateOperationError):
                async with scan_lock(redis, "lock:scan", 300):
                    pass

    @pytest.mark.asyncio
    async def test_released_on_error(self) -> None:
        redis = FakeRedis()

        with pytest.raises(RuntimeError):
            async with scan_lock(redis, "lock:scan", 300):
                raise RuntimeError("cycle crashed")

        assert redis.values == {}

    @pytest.mark.asyncio
    async def test_foreign_token_is_not_released(self) -> None:
        redis = FakeRedis()

        async with scan_lock(redis, "lock:scan", 300):
            # Our lock expired and another cycle took it
            redis.values["lock:scan"] = "someone-else"

        assert redis.values["lock:scan"] == "someone-else"

    @pytest.mark.asyncio
    async def test_unreachable_redis_runs_unlocked(self) -> None:
        async with scan_lock(FakeRedis(down=True), "lock:scan", 300) as token:
            assert token is None
