"""FastAPI dependencies for authentication and authorization.

These dependencies are injected into route handlers via Depends().

Key dependencies:
- get_current_user: Resolve a Bearer JWT -> AuthenticatedUser
- require_role: Assert user has one of the allowed roles
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from fastapi import Depends, HTTPException, Request, status

from cachelayer.auth.tokens import TokenValidationError, validate_token
from cachelayer.config import Settings, get_settings
from cachelayer.telemetry.logging import bind_user_context

log = structlog.get_logger(__name__)


class AuthenticatedUser:
    """Lightweight container passed to route handlers."""

    def __init__(self, sub: str, role: str, claims: dict[str, Any]) -> None:
        self.sub = sub
        self.role = role
        self.claims = claims

    @property
    def id(self) -> str:
        return self.sub


async def get_current_user(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Extract the Bearer token and validate it.

    Raises HTTP 401 on a missing, malformed, expired or forged token.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = auth_header.removeprefix("Bearer ").strip()
    try:
        claims = validate_token(token, settings)
    except TokenValidationError as exc:
        log.info("auth.token_rejected", reason=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    bind_user_context(claims["sub"])
    return AuthenticatedUser(sub=claims["sub"], role=claims["role"], claims=claims)


def require_role(*allowed_roles: str) -> Callable:
    """Dependency factory that asserts the current user has one of the allowed roles.

    Usage:
        @router.post("/admin/cache")
        async def control(
            current_user: AuthenticatedUser = Depends(require_role("admin"))
        ):
            ...
    """

    async def _check_role(
        current_user: AuthenticatedUser = Depends(get_current_user),
    ) -> AuthenticatedUser:
        if current_user.role not in allowed_roles:
            # Security: Don't reveal specific role requirements in error messages
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this action",
            )
        return current_user

    return _check_role
