"""Task-local structured logging context for revision bookkeeping.

Flush hooks run on whatever thread or task owns the session, so fields such
as the entity name and revision id live in a ``contextvars`` variable and are
copied onto every record by :class:`~.config.ContextFilter`.
"""

from __future__ import annotations

from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Mapping

from . import fields

_LOG_CONTEXT: ContextVar[dict[str, str]] = ContextVar(
    "revision_trail_log_context", default={}
)


def _merged(values: Mapping[str, object]) -> dict[str, str]:
    """Current context overlaid with stringified non-``None`` ``values``."""
    merged = dict(_LOG_CONTEXT.get())
    merged.update((str(key), str(value)) for key, value in values.items() if value is not None)
    return merged


def get_context() -> dict[str, str]:
    """Return a shallow copy of the current logging context."""
    return dict(_LOG_CONTEXT.get())


def bind_context(**values: object) -> None:
    """Bind values for the rest of the current task; ``None`` is skipped."""
    _LOG_CONTEXT.set(_merged(values))


def clear_context(*keys: str) -> None:
    """Drop ``keys`` from the context, or every key when none are named."""
    current = _LOG_CONTEXT.get()
    _LOG_CONTEXT.set({key: current[key] for key in current if keys and key not in keys})


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Bind ``values`` inside the block; the previous context is restored on exit."""
    token = _LOG_CONTEXT.set(_merged(values))
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def revision_context(
    entity: str,
    *,
    entity_id: Any = None,
    revision_id: Any = None,
    event: str | None = None,
    **extra: object,
) -> AbstractContextManager[None]:
    """Shorthand for :func:`log_context` with the revision field names."""
    values: dict[str, object] = {
        fields.ENTITY: entity,
        fields.ENTITY_ID: entity_id,
        fields.REVISION_ID: revision_id,
        fields.EVENT: event,
    }
    values.update(extra)
    return log_context(values)
