"""Logging helpers for revision tracking.

Wraps Python's ``logging`` module with structured context propagation so every
revision open/close line carries the entity, identifier and attribution.
"""

from .config import configure_from_settings, configure_logging, get_logger
from .context import bind_context, clear_context, get_context, log_context, revision_context

__all__ = [
    "bind_context",
    "clear_context",
    "configure_from_settings",
    "configure_logging",
    "get_context",
    "get_logger",
    "log_context",
    "revision_context",
]
