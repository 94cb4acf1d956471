"""
APScheduler jobs for background sync and event reminders.

Two independent interval jobs, so a slow provider never delays reminders:

  calendar_sync   every SYNC_INTERVAL_MINUTES (5): incremental sync of every due user
  event_reminders every NOTIFICATION_INTERVAL_SECONDS (60): push reminders

Neither job overlaps its own previous run (max_instances=1, coalesce=True).
A failing user or tick is logged and never stops the scheduler.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from planner.config import get_settings

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "calendar_sync"
REMINDER_JOB_ID = "event_reminders"


def build_scheduler(sync_service, notification_service=None) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        sync_service: CalendarSyncService driven by the sync job.
        notification_service: NotificationService for the reminder job, or
            None when push is not configured (job not registered).

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()
    first_run = datetime.now(timezone.utc)

    scheduler.add_job(
        _sync_tick,
        trigger="interval",
        minutes=settings.sync_interval_minutes,
        id=SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=first_run,
        kwargs={"sync_service": sync_service},
    )

    if notification_service is not None:
        scheduler.add_job(
            _notification_tick,
            trigger="interval",
            seconds=settings.notification_interval_seconds,
            id=REMINDER_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=first_run,
            kwargs={"notification_service": notification_service},
        )

    return scheduler


async def _sync_tick(sync_service) -> None:
    """Incrementally sync every user whose last sync is older than the interval."""
    try:
        user_ids = sync_service.list_due_user_ids()
    except Exception as exc:
        logger.error("Gmail sync job error: %s", exc)
        return

    if not user_ids:
        return

    logger.info("Running Gmail sync for %d user(s)", len(user_ids))
    for user_id in user_ids:
        try:
            await sync_service.incremental_sync(user_id)
        except Exception as exc:
            logger.error("Error syncing user %s: %s", user_id, exc)
    logger.info("Gmail sync batch completed")


async def _notification_tick(notification_service) -> None:
    try:
        sent = await notification_service.check_upcoming_events()
    except Exception as exc:
        logger.error("Error checking upcoming events: %s", exc)
        return
    if sent:
        logger.info("Sent %d event reminder(s)", sent)


class BackgroundJobs:
    """
    Explicit lifecycle around the two timers.

    start() is idempotent: a second call while running logs and returns
    False. stop() is safe to call when not running.
    """

    def __init__(self, sync_service, notification_service=None):
        self.sync_service = sync_service
        self.notification_service = notification_service
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> bool:
        if self._scheduler is not None:
            logger.warning("Background jobs already running")
            return False
        if self.notification_service is None:
            logger.info("Push notification job disabled (VAPID keys not configured)")
        self._scheduler = build_scheduler(self.sync_service, self.notification_service)
        self._scheduler.start()
        logger.info("Background jobs started")
        return True

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Background jobs stopped")
