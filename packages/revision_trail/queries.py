"""Read helpers over shadow revision tables."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from packages.revision_trail.clock import ensure_aware
from packages.revision_trail.logging import get_logger, revision_context
from packages.revision_trail.tracking import get_tracker

logger = get_logger(__name__)


def revision_history(session: Session, entity_cls: type, entity_id: Any) -> list[Any]:
    """Return every revision of one entity, oldest first."""
    tracker = get_tracker(entity_cls)
    shadow = tracker.shadow_cls
    statement = (
        select(shadow)
        .where(getattr(shadow, tracker.foreign_key) == entity_id)
        .order_by(shadow.revision_valid_from, shadow.revision_id)
    )
    return list(session.scalars(statement))


def current_revision(session: Session, entity_cls: type, entity_id: Any) -> Any | None:
    """Return the open revision of one entity, or ``None`` once it was deleted."""
    tracker = get_tracker(entity_cls)
    shadow = tracker.shadow_cls
    statement = (
        select(shadow)
        .where(getattr(shadow, tracker.foreign_key) == entity_id)
        .where(shadow.revision_valid_to.is_(None))
        .order_by(shadow.revision_id.desc())
        .limit(1)
    )
    return session.scalars(statement).first()


def revision_as_of(
    session: Session,
    entity_cls: type,
    entity_id: Any,
    at: datetime,
) -> Any | None:
    """Return the revision valid at ``at``; naive values are read as UTC.

    Validity intervals are half-open: a revision closed at ``t`` is no longer
    valid at ``t``, its successor is.
    """
    tracker = get_tracker(entity_cls)
    shadow = tracker.shadow_cls
    instant = ensure_aware(at)
    statement = (
        select(shadow)
        .where(getattr(shadow, tracker.foreign_key) == entity_id)
        .where(shadow.revision_valid_from <= instant)
        .where(or_(shadow.revision_valid_to.is_(None), shadow.revision_valid_to > instant))
        .order_by(shadow.revision_valid_from.desc(), shadow.revision_id.desc())
        .limit(1)
    )
    return session.scalars(statement).first()


def backfill_revisions(session: Session, entity_cls: type) -> int:
    """Open an initial revision for every row that has no current revision.

    Rows written before tracking was installed (or by bulk statements) have no
    history. Each backfilled revision goes through the regular create path and
    is attributed like any other write on ``session``. Returns the number of
    revisions opened; the caller commits.
    """
    tracker = get_tracker(entity_cls)
    session.flush()
    connection = session.connection()

    entity_pk = tracker.descriptor.mapper.columns[tracker.foreign_key]
    shadow_fk = tracker.table.c[tracker.foreign_key]
    open_ids = select(shadow_fk).where(tracker.table.c.revision_valid_to.is_(None))
    statement = select(entity_pk).where(entity_pk.not_in(open_ids)).order_by(entity_pk)

    opened = 0
    for entity_id in connection.execute(statement).scalars().all():
        tracker.bookkeeping.open_for(connection, entity_id, session=session)
        opened += 1

    with revision_context(tracker.descriptor.name):
        logger.info("Backfilled %d revisions for %s", opened, tracker.descriptor.name)
    return opened
