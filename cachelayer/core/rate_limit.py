"""Per-client rate limiting for FastAPI routes.

Glue between HTTP requests and cachelayer.infra.rate_limiter.RateLimiter:
derives the client identifier, runs the check before the route handler,
and turns the decision into X-RateLimit-* headers or a 429.

Usage:
    @router.get("/posts", dependencies=[Depends(rate_limit("api:posts"))])
    async def list_posts(): ...

Dependencies listed on the route decorator are resolved before the
handler's own parameters, so excess traffic is rejected before auth or
any database work.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog
from fastapi import Depends, HTTPException, Request, Response, status

from cachelayer.config import Settings, StoreErrorPolicy, get_settings
from cachelayer.infra.rate_limiter import RateLimiter, RateLimitRule
from cachelayer.telemetry.logging import bind_client_context

log = structlog.get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


def get_client_identifier(request: Request, *, trust_proxy_headers: bool = True) -> str:
    """Return the best available client IP for rate limiting.

    With trust_proxy_headers:
        1. X-Forwarded-For (first entry, the original client)
        2. X-Real-IP
    Then the direct peer address, then "unknown". Every request that lands
    on "unknown" shares a single budget.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first

        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_CLIENT


def get_rate_limiter(request: Request) -> RateLimiter:
    """FastAPI dependency - return the limiter built at startup."""
    return request.app.state.rate_limiter  # type: ignore[no-any-return]


def rate_limit(
    route_tag: str,
    rule: RateLimitRule | None = None,
    *,
    on_store_error: StoreErrorPolicy | None = None,
) -> Callable[..., Awaitable[None]]:
    """Dependency factory enforcing a request budget on one route.

    Args:
        route_tag: Budget identifier, e.g. "admin:cache:get"
        rule: Budget; defaults to RATE_LIMIT_MAX per RATE_LIMIT_WINDOW_MS
        on_store_error: Overrides RATE_LIMIT_ON_STORE_ERROR for this route
    """

    async def _check(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
        settings: Settings = Depends(get_settings),
    ) -> None:
        identifier = get_client_identifier(
            request, trust_proxy_headers=settings.trust_proxy_headers
        )
        bind_client_context(identifier, route_tag)
        if identifier == UNKNOWN_CLIENT and settings.rate_limit_reject_unidentified:
            log.warning("rate_limit.unidentified_client", route=route_tag)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Unable to identify client",
            )

        effective = rule or RateLimitRule(
            max_requests=settings.rate_limit_max,
            window_ms=settings.rate_limit_window_ms,
        )
        decision = await limiter.check(
            identifier,
            route_tag,
            effective.max_requests,
            effective.window_ms,
            on_store_error=on_store_error,
        )

        if not decision.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
                headers=decision.headers(),
            )

        response.headers.update(decision.headers())

    return _check
