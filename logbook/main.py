"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from logbook.backup.router import router as backup_router
from logbook.backup.service import BackupService
from logbook.config import get_settings
from logbook.db.database import open_store
from logbook.dependencies import Store
from logbook.preferences.router import router as settings_router
from logbook.preferences.service import SettingsService, init_settings
from logbook.records.router import router as records_router
from logbook.scheduler.auto_backup import AutoBackupScheduler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)

settings = get_settings()


def setup_logging(debug: bool = False) -> None:
    """Configure root logging for the app and the CLI."""
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events.

    Migrates and opens the store, seeds default settings and starts the
    auto-backup scheduler.

    Args:
        app: FastAPI application instance.
    """
    setup_logging(settings.debug)
    store = await open_store()
    await init_settings(store)
    app.state.store = store

    scheduler = AutoBackupScheduler(
        BackupService(store),
        SettingsService(store),
        interval_minutes=settings.auto_backup_check_minutes,
    )
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await store.close()
        app.state.store = None


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Build the application and register routers.

    Args:
        use_lifespan: Open the store on startup. Tests attach their own.

    Returns:
        FastAPI: Configured application.
    """
    application = FastAPI(
        title=settings.app_name,
        description="Local-first data layer for the sailing logbook",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
        debug=settings.debug,
    )

    # API routes
    application.include_router(backup_router, prefix="/api/backup", tags=["backup"])
    application.include_router(settings_router, prefix="/api/settings", tags=["settings"])
    application.include_router(records_router, prefix="/api/records", tags=["records"])

    @application.get("/api/system/upgrade-notice")
    async def upgrade_notice(store: Store) -> dict:
        """Return the pending upgrade notice once.

        Returns:
            ``{"notice": {...}}`` after a schema upgrade, ``{"notice": null}``
            otherwise.
        """
        return {"notice": await store.pop_upgrade_notice()}

    @application.get("/health")
    async def health() -> dict:
        """Health check endpoint."""
        return {"status": "healthy"}

    return application


app = create_app()
