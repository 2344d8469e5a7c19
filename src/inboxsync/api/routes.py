"""
API routes for the inboxsync service.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from inboxsync import __version__
from inboxsync.api.auth import verify_bearer
from inboxsync.domain.errors import AuthError, InboxSyncError, SyncInProgressError
from inboxsync.domain.models import MessageFailure, ProcessedMessage, SyncPassResult

router = APIRouter()


# ============================================================================
# Response Models
# ============================================================================


class SyncResponse(BaseModel):
    """Result of a sync invocation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    processed_count: int = Field(0, alias="processedCount")
    details: list[ProcessedMessage] = Field(default_factory=list)
    failures: list[MessageFailure] = Field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_result(cls, result: SyncPassResult) -> "SyncResponse":
        return cls(
            success=True,
            processed_count=result.processed_count,
            details=result.processed,
            failures=result.failures,
        )

    @classmethod
    def failed(cls, error: str) -> "SyncResponse":
        return cls(success=False, error=error)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str


def _respond(payload: SyncResponse, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/sync")
def trigger_sync(
    request: Request,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """
    Run one synchronization pass.

    Status codes:
    - 200: pass completed (including a no-op with zero messages)
    - 401: missing or invalid bearer token; the mailbox is not touched
    - 409: another pass is still running
    - 500: pass-fatal failure (configuration, mailbox transport, store)
    """
    settings = request.app.state.settings
    try:
        verify_bearer(authorization, settings.sync_api_token)
    except AuthError as e:
        logger.warning(f"Sync unauthorized attempt: {e}")
        return _respond(SyncResponse.failed("Unauthorized"), 401)

    engine = request.app.state.engine
    if engine is None:
        error = request.app.state.startup_error or "Sync engine is not configured"
        logger.error(f"Sync requested but engine unavailable: {error}")
        return _respond(SyncResponse.failed(error), 500)

    try:
        result = engine.run_sync_pass()
    except SyncInProgressError as e:
        logger.warning(str(e))
        return _respond(SyncResponse.failed(str(e)), 409)
    except InboxSyncError as e:
        logger.error(f"Sync pass failed: {type(e).__name__}: {e}")
        return _respond(SyncResponse.failed(f"{type(e).__name__}: {e}"), 500)
    except Exception as e:
        logger.exception(f"Unexpected error during sync pass: {e}")
        return _respond(SyncResponse.failed("Internal error during sync pass"), 500)

    return _respond(SyncResponse.from_result(result), 200)


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
    )


@router.get("/health/ready")
def readiness_check(request: Request) -> JSONResponse:
    """Readiness check: engine wired and store reachable."""
    store = request.app.state.store
    services: dict[str, Any] = {
        "engine": "ready" if request.app.state.engine is not None else "unavailable",
        "store": store.health_check() if store is not None else {"status": "unavailable"},
    }
    ready = services["engine"] == "ready" and services["store"].get("status") == "healthy"
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not_ready",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": services,
        },
    )
