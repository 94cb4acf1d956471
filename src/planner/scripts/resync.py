"""
One-off sync for a single user, outside the scheduler.

Usage:
    python -m planner.scripts.resync USER_ID           # incremental (full if no cursor)
    python -m planner.scripts.resync USER_ID --full    # rescan the mailbox

Safe to run while the scheduler is up: the per-user sync lock makes a
concurrent pass report "sync already in progress" instead of overlapping.
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def _resync(user_id: str, full: bool) -> int:
    from planner.errors import PlannerError
    from planner.services import get_sync_service

    service = get_sync_service()
    try:
        if full:
            result = await service.full_sync(user_id)
        else:
            result = await service.incremental_sync(user_id)
    except PlannerError as exc:
        logger.error("Sync failed for user %s: %s", user_id, exc)
        return 1

    if result.skipped:
        logger.info("Sync skipped for user %s: %s", user_id, result.reason)
        return 0

    logger.info(
        "%s sync done for user %s. Events: %d, messages: %d, failed: %d",
        result.mode.capitalize(),
        user_id,
        result.events_synced,
        result.messages_processed,
        result.messages_failed,
    )
    return 0


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Sync Gmail calendar invitations for one user")
    parser.add_argument("user_id", help="User whose integration to sync")
    parser.add_argument(
        "--full",
        action="store_true",
        help="Rescan the mailbox instead of reading changes since the stored cursor",
    )
    args = parser.parse_args(argv)
    sys.exit(asyncio.run(_resync(args.user_id, args.full)))


if __name__ == "__main__":
    main()
