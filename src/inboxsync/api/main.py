"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from inboxsync.application.use_cases.sync_mailbox import SyncEngine
from inboxsync.domain.errors import InboxSyncError
from inboxsync.infrastructure import MailStore, Settings, SyncEngineFactory, get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    if app.state.engine is None:
        try:
            app.state.store = SyncEngineFactory.store(settings)
            app.state.engine = SyncEngineFactory.from_settings(settings, store=app.state.store)
            logger.info("Sync engine ready")
        except InboxSyncError as e:
            # Keep serving so /sync can report the failure as a 500
            app.state.startup_error = f"{type(e).__name__}: {e}"
            logger.error(f"Sync engine unavailable: {app.state.startup_error}")

    yield

    logger.info("Shutting down...")
    disconnect = getattr(app.state.store, "disconnect", None)
    if disconnect is not None:
        disconnect()
    logger.info("Shutdown complete")


def create_app(
    settings: Settings | None = None,
    engine: SyncEngine | None = None,
    store: MailStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Incremental mailbox synchronization service",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.startup_error = None

    from inboxsync.api.routes import router

    app.include_router(router)

    return app


def run() -> None:
    """Serve the API with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "inboxsync.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance
app = create_app()
