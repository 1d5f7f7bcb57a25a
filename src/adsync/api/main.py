"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

from adsync.api.routes import health, imports, sync as sync_routes
from adsync.db.engine import get_engine
from adsync.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    SyncError,
    SyncStateError,
    TerminalStateError,
)

# Checked in order; subclasses before their bases.
_ERROR_STATUS = (
    (NotFoundError, 404),
    (InvalidArgumentError, 422),
    (TerminalStateError, 409),
    (ConflictError, 409),
    (SyncError, 502),
)


def status_for(exc: SyncStateError) -> int:
    for exc_type, status in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent); honours a test engine override
        engine = app.dependency_overrides.get(get_engine, get_engine)()
        SQLModel.metadata.create_all(engine)
        yield

    app = FastAPI(
        title="Ad Sync API",
        description="Sync state and health monitoring for ad-account projects",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(SyncStateError)
    async def sync_state_error_handler(request: Request, exc: SyncStateError):
        return JSONResponse(status_code=status_for(exc), content={"detail": str(exc)})

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(imports.router, prefix="/imports", tags=["imports"])

    return app


# Module-level app instance for uvicorn
app = create_app()
