"""Resolve the ``who_dunnit`` attribution recorded on each revision.

Attribution is read from an explicit provider, never from process globals.
The default provider looks at the ``info`` dictionary of the active
``Session`` and then of the flush ``Connection``; hosts usually set it once per
request with :func:`set_who_dunnit` or :func:`attributed`.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Protocol

from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from packages.revision_trail.config import RevisionTrailSettings

DEFAULT_SESSION_KEY = "who_dunnit"
_UNSET = object()


class AttributionProvider(Protocol):
    """Callable returning the acting user for a write, or ``None``."""

    def __call__(
        self,
        session: Session | None,
        connection: Connection,
        settings: RevisionTrailSettings,
    ) -> str | None: ...


def session_attribution(
    session: Session | None,
    connection: Connection,
    settings: RevisionTrailSettings,
) -> str | None:
    """Read attribution from ``session.info`` and then ``connection.info``."""
    key = settings.attribution.session_key
    if session is not None and session.info.get(key) is not None:
        return str(session.info[key])
    value = connection.info.get(key)
    return None if value is None else str(value)


def fallback_who_dunnit(settings: RevisionTrailSettings) -> str:
    """Return the attribution used when no actor is available."""
    if settings.attribution.fallback:
        return settings.attribution.fallback
    return f"{settings.attribution.unknown_marker}: {settings.environment}"


def resolve_who_dunnit(
    provider: AttributionProvider,
    session: Session | None,
    connection: Connection,
    settings: RevisionTrailSettings,
) -> str:
    """Resolve attribution: provider value first, then the fallback."""
    value = provider(session, connection, settings)
    text = None if value is None else str(value)
    if text is not None and text.strip() != "":
        return text
    return fallback_who_dunnit(settings)


def set_who_dunnit(
    session: Session,
    value: str | None,
    *,
    key: str = DEFAULT_SESSION_KEY,
) -> None:
    """Set (or with ``None`` clear) the session-scoped attribution."""
    if value is None:
        session.info.pop(key, None)
        return
    session.info[key] = value


def clear_who_dunnit(session: Session, *, key: str = DEFAULT_SESSION_KEY) -> None:
    session.info.pop(key, None)


@contextmanager
def attributed(
    session: Session,
    value: str,
    *,
    key: str = DEFAULT_SESSION_KEY,
) -> Iterator[Session]:
    """Attribute every revision written by ``session`` inside the block to ``value``."""
    previous = session.info.get(key, _UNSET)
    session.info[key] = value
    try:
        yield session
    finally:
        if previous is _UNSET:
            session.info.pop(key, None)
        else:
            session.info[key] = previous
