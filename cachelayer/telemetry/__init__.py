"""Telemetry package for observability.

Structured logging with request id correlation.
"""

from __future__ import annotations

from cachelayer.telemetry.logging import (
    RequestIdMiddleware,
    bind_client_context,
    bind_user_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_client_context",
    "bind_user_context",
    "configure_logging",
]
