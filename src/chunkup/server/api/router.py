"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from chunkup.server.api import health, upload

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(upload.router)
