"""Tests for the per-property sync job queue.

The engine is an AsyncMock; retry sleeps are captured instead of awaited.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.app.portal.errors import PortalSyncError
from src.app.portal.jobs import RETRY_DELAYS, SyncJob, SyncJobQueue, is_permanent_failure
from src.app.properties.schemas import NotificationType, SyncJobKind


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def sync_engine() -> AsyncMock:
    engine = AsyncMock()
    engine.create_sync.return_value = True
    return engine


@pytest.fixture
def queue(sync_engine, notifications, sleeps) -> SyncJobQueue:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return SyncJobQueue(sync_engine, notifications, max_retries=3, sleep=fake_sleep)


class TestProcessJob:
    async def test_create_job_success(self, queue, sync_engine, sleeps):
        job = SyncJob(kind=SyncJobKind.CREATE, property_id="p-1", publish=True)

        assert await queue.process_job(job) is True

        sync_engine.create_sync.assert_awaited_once_with("p-1", True)
        assert job.attempts == 1
        assert sleeps == []

    async def test_create_job_retried_then_succeeds(self, queue, sync_engine, sleeps):
        sync_engine.create_sync.side_effect = [False, False, True]
        job = SyncJob(kind=SyncJobKind.CREATE, property_id="p-1")

        assert await queue.process_job(job) is True

        assert job.attempts == 3
        assert sleeps == [1, 4]

    async def test_dead_letter_after_retries(self, queue, sync_engine, sleeps, notification_repo):
        sync_engine.create_sync.return_value = False
        job = SyncJob(kind=SyncJobKind.CREATE, property_id="p-1")

        assert await queue.process_job(job) is False

        assert job.attempts == 1 + len(RETRY_DELAYS)
        assert sleeps == list(RETRY_DELAYS)
        assert queue.dead_letters == [job]
        assert notification_repo.titles() == ["Sync Job Failed"]
        assert notification_repo.items[0].type == NotificationType.ERROR

    async def test_update_client_error_dead_lettered_at_once(self, queue, sync_engine, sleeps, notification_repo):
        sync_engine.update_sync.side_effect = PortalSyncError(400, "Location is required")
        job = SyncJob(kind=SyncJobKind.UPDATE, property_id="p-2", publish=False)

        assert await queue.process_job(job) is False

        sync_engine.update_sync.assert_awaited_once_with("p-2", publish=False)
        assert job.attempts == 1
        assert sleeps == []
        assert job.error == "Location is required"
        assert queue.dead_letters == [job]
        assert "Location is required" in notification_repo.items[0].message

    @pytest.mark.parametrize("status_code", [408, 429, 502, 503])
    async def test_update_transient_error_retried(self, queue, sync_engine, sleeps, status_code):
        sync_engine.update_sync.side_effect = [PortalSyncError(status_code, "busy"), None]
        job = SyncJob(kind=SyncJobKind.UPDATE, property_id="p-2")

        assert await queue.process_job(job) is True

        assert job.attempts == 2
        assert sleeps == [1]

    @pytest.mark.parametrize(
        "status_code,permanent",
        [(400, True), (404, True), (422, True), (408, False), (429, False), (500, False), (502, False)],
    )
    def test_is_permanent_failure(self, status_code, permanent):
        assert is_permanent_failure(status_code) is permanent

    async def test_max_retries_zero(self, sync_engine, notifications, sleeps):
        sync_engine.create_sync.return_value = False

        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)

        queue = SyncJobQueue(sync_engine, notifications, max_retries=0, sleep=fake_sleep)
        job = SyncJob(kind=SyncJobKind.CREATE, property_id="p-1")

        assert await queue.process_job(job) is False
        assert job.attempts == 1
        assert sleeps == []

    def test_to_read(self):
        job = SyncJob(kind=SyncJobKind.UPDATE, property_id="p-3", attempts=2, error="boom")
        read = job.to_read()
        assert read.kind == SyncJobKind.UPDATE
        assert read.attempts == 2


class TestWorker:
    async def test_worker_drains_queue(self, queue, sync_engine):
        queue.start()
        queue.enqueue(SyncJobKind.CREATE, "p-1", publish=False)
        queue.enqueue(SyncJobKind.UPDATE, "p-2")

        await asyncio.wait_for(queue._queue.join(), timeout=1)
        await queue.stop()

        sync_engine.create_sync.assert_awaited_once_with("p-1", False)
        sync_engine.update_sync.assert_awaited_once_with("p-2", publish=None)
        assert queue.pending == 0

    async def test_stop_without_start(self, queue):
        await queue.stop()
