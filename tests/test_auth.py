"""
Authentication and RBAC tests for the admin surface.

Tests:
- Requests without a token are rejected (401)
- Tokens with wrong signature / expired / wrong audience are rejected (401)
- Non-admin roles are rejected (403)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from httpx import AsyncClient

from cachelayer.auth.tokens import TokenValidationError, create_dev_token, validate_token

TEST_JWT_SECRET = "unit-test-jwt-signing-key"

ADMIN_CACHE = "/api/v1/admin/cache"


def _encode(claims: dict, secret: str = TEST_JWT_SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def _future() -> int:
    return int((datetime.now(UTC) + timedelta(hours=1)).timestamp())


class TestMissingAuth:
    """Requests without any authentication."""

    @pytest.mark.asyncio
    async def test_no_auth_returns_401(self, client: AsyncClient) -> None:
        response = await client.get(ADMIN_CACHE)
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_missing_bearer_prefix_returns_401(self, client: AsyncClient) -> None:
        """Token without 'Bearer ' prefix is rejected."""
        token = create_dev_token(sub="x", secret=TEST_JWT_SECRET)
        response = await client.get(ADMIN_CACHE, headers={"Authorization": token})
        assert response.status_code == 401


class TestInvalidTokens:
    """Requests with malformed or invalid tokens."""

    @pytest.mark.asyncio
    async def test_wrong_signature_returns_401(self, client: AsyncClient) -> None:
        token = _encode(
            {"sub": "a", "role": "admin", "aud": "cachelayer-admin", "exp": _future()},
            secret="WRONG_SECRET",
        )
        response = await client.get(ADMIN_CACHE, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token_returns_401(self, client: AsyncClient) -> None:
        token = _encode(
            {
                "sub": "a",
                "role": "admin",
                "aud": "cachelayer-admin",
                "exp": int((datetime.now(UTC) - timedelta(hours=1)).timestamp()),  # Past!
            }
        )
        response = await client.get(ADMIN_CACHE, headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_malformed_token_returns_401(self, client: AsyncClient) -> None:
        response = await client.get(ADMIN_CACHE, headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestRBACEnforcement:

    @pytest.mark.asyncio
    async def test_viewer_cannot_read_cache_stats(
        self, client: AsyncClient, viewer_headers
    ) -> None:
        response = await client.get(ADMIN_CACHE, headers=viewer_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_viewer_cannot_reset_stats(self, client: AsyncClient, viewer_headers) -> None:
        response = await client.post(ADMIN_CACHE, json={"action": "reset"}, headers=viewer_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_can_read_cache_stats(self, client: AsyncClient, admin_headers) -> None:
        response = await client.get(ADMIN_CACHE, headers=admin_headers)
        assert response.status_code == 200


class TestValidateToken:

    def test_valid_token_returns_claims(self, fake_settings):
        token = create_dev_token(sub="ops-1", role="admin", secret=TEST_JWT_SECRET)
        claims = validate_token(token, fake_settings)
        assert claims["sub"] == "ops-1"
        assert claims["role"] == "admin"

    def test_wrong_audience_rejected(self, fake_settings):
        token = create_dev_token(
            sub="ops-1", secret=TEST_JWT_SECRET, audience="some-other-service"
        )
        with pytest.raises(TokenValidationError):
            validate_token(token, fake_settings)

    def test_missing_role_claim_rejected(self, fake_settings):
        token = _encode({"sub": "ops-1", "aud": "cachelayer-admin", "exp": _future()})
        with pytest.raises(TokenValidationError, match="role"):
            validate_token(token, fake_settings)
