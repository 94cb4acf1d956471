"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from planner.config import get_settings
from planner.db.engine import get_engine
from planner.api.routes import integrations, push

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build and return the FastAPI app.

    With RUN_BACKGROUND_JOBS=true the sync and reminder timers run inside the
    API process; otherwise they run under ``python -m planner``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables and run column migrations on startup (idempotent)
        get_engine()
        jobs = None
        if get_settings().run_background_jobs:
            from planner.scheduler.jobs import BackgroundJobs
            from planner.services import get_notification_service, get_sync_service

            notification_service = get_notification_service() if get_settings().push_enabled else None
            jobs = BackgroundJobs(get_sync_service(), notification_service)
            jobs.start()
        yield
        if jobs is not None:
            jobs.stop()

    app = FastAPI(
        title="Planner API",
        description="Gmail calendar sync and event reminder backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(integrations.router, prefix="/integrations/google", tags=["integrations"])
    app.include_router(push.router, prefix="/push", tags=["push"])

    return app


# Module-level app instance for uvicorn
app = create_app()
