"""API v1 Router — Health, search, document and index management endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from searchsync.api.v1.endpoints.health import router as health_router
from searchsync.api.v1.endpoints.indexes import router as indexes_router

router = APIRouter(tags=["v1"])
router.include_router(indexes_router)
router.include_router(health_router)
