"""
Nexus Community Watch - Monitoring Module

Structured logging and request context propagation.
"""

from .logging import (
    LoggingContextMiddleware,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LoggingContextMiddleware",
]
