"""Tests for logging configuration and request id propagation."""

from __future__ import annotations

import pytest
import structlog
from httpx import AsyncClient

from cachelayer.telemetry.logging import (
    bind_client_context,
    bind_user_context,
    configure_logging,
)


class TestRequestId:

    @pytest.mark.asyncio
    async def test_response_carries_request_id(self, client: AsyncClient):
        resp = await client.get("/api/v1/admin/cache")
        assert resp.headers["x-request-id"].startswith("req_")

    @pytest.mark.asyncio
    async def test_request_ids_are_unique(self, client: AsyncClient):
        first = await client.get("/api/v1/admin/cache")
        second = await client.get("/api/v1/admin/cache")
        assert first.headers["x-request-id"] != second.headers["x-request-id"]


class TestContextBinding:

    def test_bind_user_context(self):
        structlog.contextvars.clear_contextvars()
        bind_user_context("admin-sub")
        assert structlog.contextvars.get_contextvars() == {"user_id": "admin-sub"}
        structlog.contextvars.clear_contextvars()

    def test_bind_client_context(self):
        """Rate-limited requests carry the client and route in every log line."""
        structlog.contextvars.clear_contextvars()
        bind_client_context("1.2.3.4", "admin:cache:get")
        assert structlog.contextvars.get_contextvars() == {
            "client_id": "1.2.3.4",
            "rate_limit_route": "admin:cache:get",
        }
        structlog.contextvars.clear_contextvars()

    @pytest.mark.parametrize("json_logs", [True, False])
    def test_configure_logging_accepts_both_renderers(self, json_logs):
        configure_logging(json_logs=json_logs, log_level="DEBUG")
        structlog.get_logger("test").info("logging.configured", json_logs=json_logs)
