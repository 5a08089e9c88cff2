"""Bearer token validation for the admin surface.

Admin callers present an HS256 JWT signed with AUTH_JWT_SECRET.

Required JWT claims:
  - sub: string - caller identity
  - role: string - "admin" for the cache admin endpoints
  - exp: int - expiration timestamp
  - aud: string|list - must include AUTH_AUDIENCE
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import jwt
import structlog
from jwt.exceptions import InvalidTokenError

from cachelayer.config import Settings

log = structlog.get_logger(__name__)


class TokenValidationError(Exception):
    """Raised when a JWT cannot be validated."""


def validate_token(token: str, settings: Settings) -> dict[str, Any]:
    """Validate a JWT and return its claims.

    Raises TokenValidationError if the token is invalid, expired, or
    has an incorrect audience.
    """
    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.auth_jwt_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            options={"verify_exp": True, "verify_aud": True},
        )
    except InvalidTokenError as exc:
        raise TokenValidationError(f"Token validation failed: {exc}") from exc

    _assert_required_claims(claims)
    return claims


def _assert_required_claims(claims: dict[str, Any]) -> None:
    """Raise TokenValidationError if required claims are missing."""
    required = ("sub", "role")
    missing = [c for c in required if not claims.get(c)]
    if missing:
        raise TokenValidationError(f"Missing required JWT claims: {missing}")


def create_dev_token(
    *,
    sub: str,
    role: str = "admin",
    secret: str,
    audience: str = "cachelayer-admin",
    expires_in: int = 3600,
) -> str:
    """Create a signed token for local use and tests.

    Never call this in production code.
    """
    now = int(datetime.now(UTC).timestamp())
    payload = {
        "sub": sub,
        "role": role,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, secret, algorithm="HS256")
