"""
Tests for pacefund/utils/locks.py — per-principal refresh lock.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from pacefund.utils import locks
from pacefund.utils.locks import principal_lock, LockTimeoutError


class TestPrincipalLock:
    @pytest.mark.asyncio
    async def test_serializes_same_principal(self, mock_redis):
        active = 0
        peak = 0

        async def critical():
            nonlocal active, peak
            async with principal_lock(42):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(critical() for _ in range(4)))

        assert peak == 1
        assert locks._local_locks == {}

    @pytest.mark.asyncio
    async def test_different_principals_run_concurrently(self, mock_redis):
        entered = asyncio.Event()

        async def hold_first():
            async with principal_lock(1):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def enter_second():
            async with principal_lock(2):
                entered.set()

        await asyncio.gather(hold_first(), enter_second())

    @pytest.mark.asyncio
    async def test_releases_redis_lock(self, mock_redis):
        async with principal_lock(42):
            pass

        key = mock_redis.set.await_args.args[0]
        assert key == "pacefund:lock:principal:42"
        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_unavailable_falls_back_to_local(self):
        with patch("pacefund.utils.redis_client.get_redis", new_callable=AsyncMock, side_effect=ConnectionError("down")):
            async with principal_lock(42):
                pass

    @pytest.mark.asyncio
    async def test_held_elsewhere_times_out(self, mock_redis):
        mock_redis.set = AsyncMock(return_value=None)

        with pytest.raises(LockTimeoutError):
            async with principal_lock(42, wait=0.2):
                pass
