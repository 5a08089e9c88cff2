"""Cache management API endpoints.

Admin-only endpoints for inspecting and managing the read-through cache.

GET  /api/v1/admin/cache - Cache statistics (20 requests / 60 s)
POST /api/v1/admin/cache - {"action": "reset"} zeroes statistics,
                           {"action": "invalidate", "pattern": "..."} evicts keys
                           (10 requests / 60 s)

Both endpoints are rate limited before authentication runs and require the
admin role. The cache instance is resolved via FastAPI dependency injection
so it can be replaced in tests.

Rate-limit windows live in the same store as cache entries, so invalidate
patterns that could reach ``ratelimit:`` keys (``*``, ``r*``, ...) are
refused.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from cachelayer.auth.dependencies import AuthenticatedUser, require_role
from cachelayer.cache.read_through import ReadThroughCache
from cachelayer.core.rate_limit import rate_limit
from cachelayer.infra.rate_limiter import (
    ADMIN_CACHE_READ_RULE,
    ADMIN_CACHE_WRITE_RULE,
    pattern_may_match_windows,
)

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin/cache", tags=["cache"])


# ---------------------------------------------------------------------------
# Dependency: resolve the process-wide ReadThroughCache
# ---------------------------------------------------------------------------


def get_read_through_cache(request: Request) -> ReadThroughCache:
    """Return the cache built at startup.

    In tests it can be overridden with app.dependency_overrides.
    """
    return request.app.state.read_through_cache  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class CacheCounters(BaseModel):
    hits: int
    misses: int
    errors: int
    sets: int
    deletes: int


class CacheStatsResponse(BaseModel):
    stats: CacheCounters
    hit_rate: float = Field(serialization_alias="hitRate")
    timestamp: str
    backend: str


class CacheActionRequest(BaseModel):
    """Request body as published in the OpenAPI schema.

    The body itself is parsed by _parse_action so that malformed input is
    answered with 400 rather than 422.
    """

    action: Literal["reset", "invalidate"]
    pattern: str | None = None


class CacheActionResponse(BaseModel):
    message: str
    keys_deleted: int | None = Field(default=None, serialization_alias="keysDeleted")


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


async def _parse_action(request: Request) -> tuple[str, str | None]:
    """Read the raw body and return (action, pattern).

    Raises HTTP 400 for a missing or non-JSON body, a non-object body, an
    unknown action, or a missing / blank / non-string pattern.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict):
        raise _bad_request("Request body must be a JSON object with an 'action'")

    action = body.get("action")
    if action == "reset":
        return action, None
    if action != "invalidate":
        raise _bad_request("Invalid action: expected 'reset' or 'invalidate'")

    pattern = body.get("pattern")
    if not isinstance(pattern, str) or not pattern.strip():
        raise _bad_request("'invalidate' requires a non-empty string 'pattern'")
    pattern = pattern.strip()
    if pattern_may_match_windows(pattern):
        raise _bad_request(
            "Pattern could match rate-limit windows; use a narrower cache prefix"
        )
    return action, pattern


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=CacheStatsResponse,
    summary="Cache statistics (admin only)",
    dependencies=[Depends(rate_limit("admin:cache:get", ADMIN_CACHE_READ_RULE))],
)
async def get_cache_stats(
    current_user: AuthenticatedUser = Depends(require_role("admin")),
    cache: ReadThroughCache = Depends(get_read_through_cache),
) -> CacheStatsResponse:
    """Return hit/miss/error counters, hit rate and the active backend."""
    return CacheStatsResponse(
        stats=CacheCounters(**cache.stats.snapshot()),
        hit_rate=cache.stats.hit_rate(),
        timestamp=datetime.now(UTC).isoformat(),
        backend=cache.backend.name,
    )


@router.post(
    "",
    response_model=CacheActionResponse,
    summary="Reset statistics or invalidate keys (admin only)",
    dependencies=[Depends(rate_limit("admin:cache:post", ADMIN_CACHE_WRITE_RULE))],
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {
                "application/json": {"schema": CacheActionRequest.model_json_schema()}
            },
        }
    },
)
async def post_cache_action(
    request: Request,
    current_user: AuthenticatedUser = Depends(require_role("admin")),
    cache: ReadThroughCache = Depends(get_read_through_cache),
) -> CacheActionResponse:
    """Apply one admin action.

    Input is fully validated before anything is touched, so a rejected
    request has no side effects.
    """
    action, pattern = await _parse_action(request)

    if action == "reset":
        cache.stats.reset()
        log.info("cache.api.stats_reset", admin_user=current_user.id)
        return CacheActionResponse(message="Cache statistics reset successfully")

    keys_deleted = await cache.invalidate(pattern)  # type: ignore[arg-type]
    log.info(
        "cache.api.invalidated",
        pattern=pattern,
        keys_deleted=keys_deleted,
        admin_user=current_user.id,
    )
    return CacheActionResponse(
        message=f'Cache keys matching pattern "{pattern}" invalidated successfully',
        keys_deleted=keys_deleted,
    )
