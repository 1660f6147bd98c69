"""
Unit tests for the Celery beat schedule and the scheduled sync task.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.schedules import crontab

from cardsync.core.config import Settings
from cardsync.core.exceptions import SyncInProgressError
from cardsync.services.sync_orchestrator import SyncResult, SyncSelection
from cardsync.tasks import sync_tasks
from cardsync.tasks.celery_app import SCHEDULED_SYNC_TASK, build_beat_schedule


def test_interval_schedule_by_default():
    schedule = build_beat_schedule(Settings(SYNC_INTERVAL_MINUTES=30))

    entry = schedule["scheduled-full-sync"]
    assert entry["task"] == SCHEDULED_SYNC_TASK
    assert entry["schedule"] == timedelta(minutes=30)


def test_daily_schedule_when_time_set():
    schedule = build_beat_schedule(Settings(SYNC_DAILY_TIME="03:30"))

    entry = schedule["scheduled-full-sync"]["schedule"]
    assert isinstance(entry, crontab)
    assert entry.hour == {3}
    assert entry.minute == {30}


def test_invalid_daily_time_rejected():
    with pytest.raises(ValueError):
        Settings(SYNC_DAILY_TIME="25:00")


def test_summarize_lists_requested_entities():
    result = SyncResult(run_id="abc")
    result.entities["games"].was_requested = True
    result.entities["games"].added = 3

    summary = sync_tasks.summarize(result)

    assert summary["status"] == "completed"
    assert summary["added"] == 3
    assert list(summary["entities"]) == ["games"]


@pytest.fixture
def patched_client():
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    with patch.object(sync_tasks, "CardTraderClient", return_value=client):
        yield client


@pytest.mark.asyncio
async def test_scheduled_sync_runs_full_selection(patched_client, mock_redis):
    result = SyncResult(run_id="run-1")
    sync = AsyncMock(return_value=result)
    with patch.object(sync_tasks, "create_redis", return_value=mock_redis), \
            patch.object(sync_tasks.SyncOrchestrator, "sync", sync):
        summary = await sync_tasks._run_scheduled_sync_async()

    assert summary["run_id"] == "run-1"
    assert sync.await_args.args[0] == SyncSelection.full()
    mock_redis.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_scheduled_sync_skips_when_lease_held(patched_client, mock_redis):
    sync = AsyncMock(side_effect=SyncInProgressError(holder="api-run"))
    with patch.object(sync_tasks, "create_redis", return_value=mock_redis), \
            patch.object(sync_tasks.SyncOrchestrator, "sync", sync):
        summary = await sync_tasks._run_scheduled_sync_async()

    assert summary["status"] == "skipped"
    assert "api-run" in summary["reason"]


@pytest.mark.asyncio
async def test_scheduled_sync_without_redis_runs_unleased(patched_client, mock_redis):
    mock_redis.ping.side_effect = ConnectionError("refused")
    captured = {}

    async def sync(self, selection):
        captured["lease"] = self.lease
        return SyncResult(run_id="run-2")

    with patch.object(sync_tasks, "create_redis", return_value=mock_redis), \
            patch.object(sync_tasks.SyncOrchestrator, "sync", sync):
        summary = await sync_tasks._run_scheduled_sync_async()

    assert captured["lease"] is None
    assert summary["run_id"] == "run-2"
