"""In-process job queue for per-property portal syncs.

Catalog writes enqueue a job and return immediately; a single worker task
drains the queue and runs the matching engine operation. A failed job is
retried after 1s, 4s and 16s, then moved to the dead letter list and
reported as an ERROR notification. Client errors (4xx other than 408 and
429) are dead-lettered after the first attempt.

Exports:
    SyncJob: Queued sync request.
    SyncJobQueue: asyncio.Queue backed worker with retries and dead letters.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from src.app.core.monitoring import portal_sync_jobs_total
from src.app.portal.errors import PortalSyncError
from src.app.portal.notifications import NotificationService
from src.app.portal.sync import PortalSyncEngine
from src.app.properties.schemas import NotificationType, SyncJobKind, SyncJobRead

logger = structlog.get_logger(__name__)

RETRY_DELAYS = (1, 4, 16)
MAX_DEAD_LETTERS = 100

# Client errors that can succeed on a later attempt
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def is_permanent_failure(status_code: int) -> bool:
    """A 4xx other than timeout or rate limit fails the same way on every attempt."""
    return 400 <= status_code < 500 and status_code not in RETRYABLE_CLIENT_STATUSES


@dataclass
class SyncJob:
    kind: SyncJobKind
    property_id: str
    publish: bool | None = None
    attempts: int = 0
    error: str | None = None
    permanent: bool = False

    def to_read(self) -> SyncJobRead:
        return SyncJobRead(
            kind=self.kind,
            property_id=self.property_id,
            publish=self.publish,
            attempts=self.attempts,
            error=self.error,
        )


class SyncJobQueue:
    """Background worker that runs queued create/update syncs.

    Args:
        engine: Sync engine executing the jobs.
        notifications: Receives the dead letter notification.
        max_retries: Retries after the first attempt (capped by RETRY_DELAYS).
        sleep: Awaitable used between retries; injectable for tests.
    """

    def __init__(
        self,
        engine: PortalSyncEngine,
        notifications: NotificationService,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._notifications = notifications
        self._max_retries = min(max_retries, len(RETRY_DELAYS))
        self._sleep = sleep
        self._queue: asyncio.Queue[SyncJob] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self.dead_letters: list[SyncJob] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(
        self, kind: SyncJobKind, property_id: str, publish: bool | None = None
    ) -> SyncJob:
        job = SyncJob(kind=kind, property_id=property_id, publish=publish)
        self._queue.put_nowait(job)
        logger.info("sync_job_enqueued", kind=kind.value, property_id=property_id)
        return job

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="portal-sync-jobs")
            logger.info("sync_job_queue_started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("sync_job_queue_stopped", pending=self.pending)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.process_job(job)
            except Exception:
                logger.exception("sync_job_worker_error", property_id=job.property_id)
            finally:
                self._queue.task_done()

    async def _attempt(self, job: SyncJob) -> bool:
        job.attempts += 1
        job.permanent = False
        if job.kind is SyncJobKind.CREATE:
            ok = await self._engine.create_sync(job.property_id, bool(job.publish))
            if not ok:
                job.error = "create sync failed"
            return ok
        try:
            await self._engine.update_sync(job.property_id, publish=job.publish)
            return True
        except PortalSyncError as exc:
            job.error = exc.message
            job.permanent = is_permanent_failure(exc.status_code)
            return False

    async def process_job(self, job: SyncJob) -> bool:
        """Run a job with retries.

        Returns:
            True when an attempt succeeded, False when the job was dead-lettered.
        """
        while True:
            if await self._attempt(job):
                portal_sync_jobs_total.labels(kind=job.kind.value, status="success").inc()
                logger.info(
                    "sync_job_completed",
                    kind=job.kind.value,
                    property_id=job.property_id,
                    attempts=job.attempts,
                )
                return True

            retry = job.attempts - 1
            if job.permanent or retry >= self._max_retries:
                break
            logger.warning(
                "sync_job_retrying",
                kind=job.kind.value,
                property_id=job.property_id,
                attempt=job.attempts,
                delay=RETRY_DELAYS[retry],
                error=job.error,
            )
            await self._sleep(RETRY_DELAYS[retry])

        await self._dead_letter(job)
        return False

    async def _dead_letter(self, job: SyncJob) -> None:
        self.dead_letters.append(job)
        del self.dead_letters[:-MAX_DEAD_LETTERS]
        portal_sync_jobs_total.labels(kind=job.kind.value, status="dead_letter").inc()
        logger.error(
            "sync_job_dead_lettered",
            kind=job.kind.value,
            property_id=job.property_id,
            attempts=job.attempts,
            error=job.error,
        )
        await self._notifications.notify(
            NotificationType.ERROR,
            "Sync Job Failed",
            f"Property {job.property_id} could not be synced to Property Finder "
            f"after {job.attempts} attempts: {job.error or 'unknown error'}",
        )
