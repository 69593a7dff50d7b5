"""Telemetry package for observability.

This package contains structured logging with request-id correlation.
"""

from __future__ import annotations

from consenthub.telemetry.logging import (
    RequestIdMiddleware,
    bind_user_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_user_context",
    "clear_context",
    "configure_logging",
]
