"""
Main entrypoint: runs the background sync and reminder jobs in one process.

FastAPI runs separately under uvicorn.

Usage:
    python -m planner                        # starts sync + reminder jobs
    python -m planner sync USER_ID [--full]  # one-off sync for one user
    uvicorn planner.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_sync(argv) -> None:
    from planner.scripts.resync import main
    main(argv)


async def _run_jobs() -> None:
    from planner.config import get_settings
    from planner.scheduler.jobs import BackgroundJobs
    from planner.services import get_notification_service, get_sync_service

    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        logger.warning("Google OAuth credentials not configured; syncs will fail to refresh tokens.")

    notification_service = get_notification_service() if settings.push_enabled else None
    jobs = BackgroundJobs(get_sync_service(), notification_service)
    jobs.start()
    logger.info(
        "Sync every %d min, reminders every %d s. Press Ctrl+C to stop.",
        settings.sync_interval_minutes,
        settings.notification_interval_seconds,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        jobs.stop()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m planner sync ...` or just `python -m planner`
    if len(sys.argv) > 1 and sys.argv[1] == "sync":
        _run_sync(sys.argv[2:])
    else:
        try:
            asyncio.run(_run_jobs())
        except KeyboardInterrupt:
            pass
