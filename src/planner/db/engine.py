"""SQLModel engine singleton."""
from sqlmodel import SQLModel, create_engine

from planner.config import get_settings

_engine = None


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # SQLite only; safe for FastAPI
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        init_db(_engine)
    return _engine


def init_db(engine) -> None:
    """Create all tables and apply pending column migrations."""
    # Import all models so metadata is populated before create_all
    from planner.models.event import Event  # noqa
    from planner.models.integration import Integration  # noqa
    from planner.models.push import NotificationLog, PushSubscription  # noqa
    SQLModel.metadata.create_all(engine)
    from planner.db.migrations import run_migrations
    run_migrations(engine)

