"""Main API router - aggregates all sub-routers.

All routes are versioned under /api/v1.
"""

from __future__ import annotations

from fastapi import APIRouter

from cachelayer.api import cache

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(cache.router)
