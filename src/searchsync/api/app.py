"""FastAPI application factory and lifecycle management."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from searchsync import __version__
from searchsync.api.deps import set_service
from searchsync.api.v1.router import router as v1_router
from searchsync.config.settings import Settings
from searchsync.core.service import SearchSyncService
from searchsync.exceptions import EngineError, IndexNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, service: SearchSyncService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. If None, loads from environment
            (and ``searchsync-config.yaml`` when present).
        service: Prebuilt service, e.g. one wired to a host application's
            content repository. Built from ``settings`` when None.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = service.settings if service is not None else _load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifecycle (startup/shutdown)."""
        logger.info("Starting searchsync v%s", __version__)
        svc = service or SearchSyncService(settings)
        await svc.initialize()
        set_service(svc)

        app.state.settings = settings
        app.state.service = svc

        logger.info("searchsync is ready to serve requests on port %d", settings.server.port)
        yield

        logger.info("Shutting down searchsync...")
        await svc.shutdown()
        set_service(None)
        logger.info("searchsync shutdown complete")

    app = FastAPI(
        title="searchsync",
        description="Backend-agnostic search over content mirrored into pluggable search engines.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router, prefix="/v1")
    _register_error_handlers(app)
    return app


def _load_settings() -> Settings:
    yaml_path = Path(os.environ.get("SEARCHSYNC_CONFIG_PATH", "searchsync-config.yaml"))
    if yaml_path.exists():
        logger.info("Loading configuration from %s", yaml_path)
        return Settings.from_yaml(yaml_path)
    return Settings()


# ── Error mapping ──


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(IndexNotFoundError)
    async def index_not_found(request: Request, exc: IndexNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc), "option": exc.option})

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"error": str(exc), "option": exc.option})

    @app.exception_handler(EngineError)
    async def engine_error(request: Request, exc: EngineError) -> JSONResponse:
        logger.error("Engine error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc), "error_type": type(exc).__name__})
