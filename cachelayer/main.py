"""FastAPI application entrypoint.

Application startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Select the cache backend (fails fast in production without REDIS_URL)
4. Build the shared CacheStats, ReadThroughCache and RateLimiter
5. Register middleware and routers

Shutdown order:
1. Close the backend connection pool
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cachelayer.api.router import api_v1_router
from cachelayer.cache.backend import BackendConfig, select_backend
from cachelayer.cache.read_through import ReadThroughCache
from cachelayer.cache.stats import CacheStats
from cachelayer.config import Settings, get_settings
from cachelayer.infra.rate_limiter import RateLimiter
from cachelayer.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


def init_cache_layer(app: FastAPI, settings: Settings) -> None:
    """Build the process-wide cache components and attach them to app.state."""
    backend = select_backend(BackendConfig.from_settings(settings))
    stats = CacheStats()

    app.state.cache_backend = backend
    app.state.cache_stats = stats
    app.state.read_through_cache = ReadThroughCache(
        backend,
        stats,
        default_ttl=settings.cache_default_ttl_seconds,
        compute_timeout=settings.cache_compute_timeout_seconds,
        coalesce=settings.cache_coalesce_misses,
    )
    app.state.rate_limiter = RateLimiter(
        backend,
        on_store_error=settings.rate_limit_on_store_error,
        stats=stats,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.is_prod,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    log.info("app.starting", environment=str(settings.environment))

    init_cache_layer(app, settings)

    log.info("app.ready", cache_backend=app.state.cache_backend.name)
    yield

    await app.state.cache_backend.close()
    log.info("app.shutdown")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory."""
    settings = settings or get_settings()

    app = FastAPI(
        title="cachelayer",
        description="Read-through cache administration and rate limiting.",
        version="0.1.0",
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    # Unique request ID for log correlation
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_v1_router)

    # ------------------------------------------------------------------ #
    # Global exception handlers
    # ------------------------------------------------------------------ #

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


# Module-level app instance for uvicorn
app = create_app()
