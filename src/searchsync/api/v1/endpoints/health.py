"""Health check endpoints — System and engine health monitoring."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from searchsync import __version__
from searchsync.api.deps import get_service
from searchsync.core.service import SearchSyncService
from searchsync.engines.base.engine import EngineHealth

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Response models ──────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """System health check response."""

    status: str = Field(description="Health status (e.g. 'healthy')")
    version: str = Field(description="searchsync server version")
    service: str = Field(description="Service name ('searchsync')")
    environment: str = Field(description="Deployment environment")
    registered_engines: list[str] = Field(description="Engine type tags available to indexes")
    active_engines: list[str] = Field(description="Engine instances initialized so far")


class EngineHealthResponse(BaseModel):
    """Per-engine health check response, keyed by engine instance."""

    engines: dict[str, EngineHealth] = Field(description="Map of engine instance to its health status")


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="System Health Check",
    description="Returns overall system health, server version and the available search engines.",
)
async def health_check(
    service: SearchSyncService = Depends(get_service),
) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        service="searchsync",
        environment=service.settings.environment,
        registered_engines=service.registry.registered_engines,
        active_engines=service.registry.active_engines,
    )


@router.get(
    "/health/engines",
    response_model=EngineHealthResponse,
    summary="Engine Health Check",
    description="Run health checks on every initialized engine instance.",
)
async def engine_health(
    service: SearchSyncService = Depends(get_service),
) -> EngineHealthResponse:
    """Check health of all initialized engines."""
    return EngineHealthResponse(engines=await service.registry.health_check_all())
