"""Background scheduler for the periodic portal resync.

Wraps an AsyncIOScheduler with a single per-minute cron job. Each tick
re-derives the schedule from wall-clock time in the configured timezone:
- warning notification ``warning_minutes`` before a run hour
- bulk export, bulk import, then agent import at minute 0 of every hour
  divisible by ``interval_hours``

Failures are reported as notifications and never propagate.

Exports:
    PortalSyncScheduler: Periodic bulk sync driver.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.app.portal.notifications import NotificationService
from src.app.portal.sync import PortalSyncEngine
from src.app.properties.schemas import NotificationType

logger = structlog.get_logger(__name__)


class PortalSyncScheduler:
    """Runs the bulk export/import cycle every ``interval_hours``.

    Args:
        engine: Sync engine providing the bulk operations.
        notifications: Receives the pending/started/completed/failed notices.
        timezone: IANA timezone the run hours are computed in.
        interval_hours: Hours between runs (run hours are multiples of it).
        warning_minutes: Lead time of the pending notification.
    """

    def __init__(
        self,
        engine: PortalSyncEngine,
        notifications: NotificationService,
        timezone: str = "UTC",
        interval_hours: int = 6,
        warning_minutes: int = 15,
    ) -> None:
        self._engine = engine
        self._notifications = notifications
        self._tz = ZoneInfo(timezone)
        self._interval_hours = interval_hours
        self._warning_minutes = warning_minutes
        self._scheduler: AsyncIOScheduler | None = None
        self._running = False

    def start(self) -> bool:
        if self._scheduler is not None:
            return False
        self._scheduler = AsyncIOScheduler(timezone=self._tz)
        self._scheduler.add_job(
            self.tick,
            trigger=CronTrigger(minute="*", timezone=self._tz),
            id="portal_sync_tick",
            name="Portal sync schedule tick",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )
        self._scheduler.start()
        logger.info(
            "portal_scheduler_started",
            timezone=str(self._tz),
            interval_hours=self._interval_hours,
            warning_minutes=self._warning_minutes,
        )
        return True

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("portal_scheduler_stopped")

    def is_run_time(self, now: datetime) -> bool:
        return now.minute == 0 and now.hour % self._interval_hours == 0

    def is_warning_time(self, now: datetime) -> bool:
        return (
            now.minute == 60 - self._warning_minutes
            and (now.hour + 1) % self._interval_hours == 0
        )

    async def tick(self, now: datetime | None = None) -> None:
        """Evaluate the schedule for one minute."""
        now = (now or datetime.now(self._tz)).astimezone(self._tz)
        if self.is_warning_time(now):
            await self._notifications.notify(
                NotificationType.WARNING,
                "Auto Sync Pending",
                f"Property Finder sync will start in {self._warning_minutes} minutes.",
            )
        elif self.is_run_time(now):
            await self.run_sync()

    async def run_sync(self) -> None:
        """One full cycle: export, import, then agents."""
        if self._running:
            logger.warning("portal_scheduler_run_skipped", reason="previous run in progress")
            return
        self._running = True
        logger.info("portal_scheduled_sync_triggered")
        try:
            await self._notifications.notify(
                NotificationType.INFO,
                "Auto Sync Started",
                "Scheduled Property Finder sync has started.",
            )
            exported = await self._engine.sync_all_to_portal()
            imported = await self._engine.sync_from_portal()
            await self._notifications.notify(
                NotificationType.SUCCESS,
                "Auto Sync Completed",
                f"Exported {exported.synced}/{exported.total} properties "
                f"({exported.failed} failed). Imported {imported.synced}/{imported.total} "
                f"listings ({imported.failed} failed).",
            )

            agents = await self._engine.sync_agents_from_portal()
            await self._notifications.notify(
                NotificationType.SUCCESS,
                "Agent Sync Completed",
                f"Synced {agents.synced}/{agents.total} agents ({agents.failed} failed).",
            )
            logger.info(
                "portal_scheduled_sync_complete",
                exported=exported.synced,
                imported=imported.synced,
                agents=agents.synced,
            )
        except Exception as exc:
            logger.error("portal_scheduled_sync_failed", error=str(exc), exc_info=True)
            await self._notifications.notify(
                NotificationType.ERROR,
                "Auto Sync Failed",
                f"Scheduled Property Finder sync failed: {exc}",
            )
        finally:
            self._running = False
