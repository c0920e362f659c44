"""
Tests for pacefund/workers/retention_sweeper.py.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from pacefund.workers.retention_sweeper import sweep_once


class TestSweepOnce:
    @pytest.mark.asyncio
    async def test_uses_configured_retention(self):
        store = MagicMock()
        store.clear_old_events = AsyncMock(return_value=4)
        settings = MagicMock(webhook_event_retention_days=14)

        with (
            patch("pacefund.workers.retention_sweeper.get_event_log", return_value=store),
            patch("pacefund.workers.retention_sweeper.get_settings", return_value=settings),
        ):
            removed = await sweep_once()

        assert removed == 4
        store.clear_old_events.assert_awaited_once_with(14)
