"""Validity-interval rules enforced on shadow revision rows.

A revision is ``current`` while ``revision_valid_to`` is ``NULL`` and
``closed`` afterwards; nothing leaves ``closed``. All writes go through the
flush ``Connection`` handed to mapper events, so opening a revision and closing
its predecessor always share the transaction of the write that caused them.

The machine guards both paths that create revisions: the lifecycle
interceptor calls :meth:`TemporalStateMachine.open_revision` directly, and
host code that adds revision objects to a session is checked by the mapper
hooks (:meth:`before_insert`, :meth:`before_update`, :meth:`before_delete`).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, NoReturn

from sqlalchemy import Table, insert, inspect, select, update
from sqlalchemy.engine import Connection, Row
from sqlalchemy.orm import Mapper, Session, object_session
from sqlalchemy.orm.attributes import set_committed_value

from packages.revision_trail.clock import Clock, ensure_aware, read_clock
from packages.revision_trail.errors import (
    DuplicateCurrentRevision,
    ManualTimestampNotAllowed,
    RevisionAlreadyClosed,
    RevisionDeletionForbidden,
    RevisionImmutable,
    RevisionTrailError,
)
from packages.revision_trail.logging import fields, get_logger, revision_context
from packages.revision_trail.schema import (
    REVISION_ID,
    REVISION_VALID_FROM,
    REVISION_VALID_TO,
    WHO_DUNNIT,
)

logger = get_logger(__name__)


class TemporalStateMachine:
    """Open, close and guard revisions of one shadow table."""

    def __init__(
        self,
        *,
        entity_name: str,
        table: Table,
        foreign_key: str,
        clock: Clock,
    ) -> None:
        self.entity_name = entity_name
        self.table = table
        self.foreign_key = foreign_key
        self.clock = clock
        self.shadow_mapper: Mapper[Any] | None = None

    def bind_mapper(self, mapper: Mapper[Any]) -> None:
        """Remember the shadow mapper so in-session copies can be kept in sync."""
        self.shadow_mapper = mapper

    # -- queries -----------------------------------------------------------

    def find_current(self, connection: Connection, entity_id: Any) -> Row[Any] | None:
        """Return ``(revision_id, revision_valid_from)`` of the open revision."""
        columns = self.table.c
        statement = (
            select(columns[REVISION_ID], columns[REVISION_VALID_FROM])
            .where(columns[self.foreign_key] == entity_id)
            .where(columns[REVISION_VALID_TO].is_(None))
            .order_by(columns[REVISION_ID].desc())
            .limit(1)
        )
        return connection.execute(statement).first()

    # -- transitions -------------------------------------------------------

    def open_revision(
        self,
        connection: Connection,
        values: dict[str, Any],
        *,
        session: Session | None = None,
    ) -> int:
        """Insert a new current revision, closing the previous one.

        ``values`` maps shadow column keys to values; validity timestamps must
        be absent or ``None``.
        """
        values = dict(values)
        self.prepare_create(connection, values, session=session)
        result = connection.execute(insert(self.table).values(**values))
        revision_id = result.inserted_primary_key[0]
        with revision_context(
            self.entity_name,
            entity_id=values.get(self.foreign_key),
            revision_id=revision_id,
            event=fields.REVISION_OPENED_EVENT,
            who_dunnit=values.get(WHO_DUNNIT),
        ):
            logger.debug("Revision opened for %s", self.entity_name)
        return revision_id

    def prepare_create(
        self,
        connection: Connection,
        values: dict[str, Any],
        *,
        session: Session | None = None,
    ) -> datetime:
        """Stamp ``values`` with ``revision_valid_from`` and close the predecessor.

        The predecessor's ``revision_valid_to`` and the new
        ``revision_valid_from`` are the same instant, so consecutive intervals
        neither overlap nor leave a gap.
        """
        for key in (REVISION_VALID_FROM, REVISION_VALID_TO):
            if values.get(key) is not None:
                self._reject(
                    ManualTimestampNotAllowed(
                        message=f"{key} cannot be set manually",
                        field=key,
                    )
                )

        entity_id = values.get(self.foreign_key)
        timestamp = read_clock(self.clock)
        current = self.find_current(connection, entity_id)
        if current is not None:
            opened_at = ensure_aware(current.revision_valid_from)
            # A clock that moved backwards must not produce a negative interval.
            if opened_at is not None and timestamp < opened_at:
                timestamp = opened_at
            self._close(connection, current.revision_id, entity_id, timestamp, session)
        values[REVISION_VALID_FROM] = timestamp
        return timestamp

    def close_current(
        self,
        connection: Connection,
        entity_id: Any,
        *,
        at: datetime | None = None,
        session: Session | None = None,
    ) -> int | None:
        """Close the open revision of ``entity_id``; return its id, if any."""
        current = self.find_current(connection, entity_id)
        if current is None:
            return None
        timestamp = ensure_aware(at) if at is not None else read_clock(self.clock)
        self._close(connection, current.revision_id, entity_id, timestamp, session)
        return current.revision_id

    def _close(
        self,
        connection: Connection,
        revision_id: int,
        entity_id: Any,
        timestamp: datetime,
        session: Session | None,
    ) -> None:
        columns = self.table.c
        result = connection.execute(
            update(self.table)
            .where(columns[REVISION_ID] == revision_id)
            .where(columns[REVISION_VALID_TO].is_(None))
            .values({REVISION_VALID_TO: timestamp})
        )
        if result.rowcount != 1:
            self._reject(
                RevisionAlreadyClosed(
                    message=f"{REVISION_VALID_TO} already set",
                    revision_id=revision_id,
                )
            )
        self._sync_session_copy(session, revision_id, timestamp)
        with revision_context(
            self.entity_name,
            entity_id=entity_id,
            revision_id=revision_id,
            event=fields.REVISION_CLOSED_EVENT,
        ):
            logger.debug("Revision closed for %s", self.entity_name)

    def _sync_session_copy(
        self,
        session: Session | None,
        revision_id: int,
        timestamp: datetime,
    ) -> None:
        """Reflect a Core-level close on a revision already loaded in ``session``."""
        if session is None or self.shadow_mapper is None:
            return
        key = self.shadow_mapper.identity_key_from_primary_key((revision_id,))
        loaded = session.identity_map.get(key)
        if loaded is not None:
            set_committed_value(loaded, REVISION_VALID_TO, timestamp)

    # -- mapper hooks on the shadow type ----------------------------------

    def before_insert(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        session = object_session(target)
        entity_id = getattr(target, self.foreign_key)
        self._reject_pending_duplicate(session, target, entity_id)
        values = {
            REVISION_VALID_FROM: target.revision_valid_from,
            REVISION_VALID_TO: target.revision_valid_to,
            self.foreign_key: entity_id,
        }
        target.revision_valid_from = self.prepare_create(connection, values, session=session)

    def before_update(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        """Allow exactly one change: ``revision_valid_to`` from ``NULL`` to a timestamp."""
        state = inspect(target)
        changed = [
            attr.key
            for attr in state.attrs
            if attr.key in self.table.c and attr.history.has_changes()
        ]
        immutable = tuple(key for key in changed if key != REVISION_VALID_TO)
        if immutable:
            self._reject(
                RevisionImmutable(
                    message="cannot update revision",
                    revision_id=target.revision_id,
                    fields=immutable,
                )
            )
        if REVISION_VALID_TO not in changed:
            return

        history = state.attrs[REVISION_VALID_TO].history
        persisted = connection.execute(
            select(self.table.c[REVISION_VALID_TO]).where(
                self.table.c[REVISION_ID] == target.revision_id
            )
        ).scalar_one_or_none()
        if persisted is not None or any(value is not None for value in history.deleted):
            self._reject(
                RevisionAlreadyClosed(
                    message=f"{REVISION_VALID_TO} already set",
                    revision_id=target.revision_id,
                )
            )

    def before_delete(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        self._reject(
            RevisionDeletionForbidden(
                message="cannot delete revision",
                revision_id=target.revision_id,
            )
        )

    def _reject_pending_duplicate(
        self,
        session: Session | None,
        target: Any,
        entity_id: Any,
    ) -> None:
        """Refuse two new revisions of one entity inside a single flush.

        Mapper ``before_insert`` hooks all run before any row of the batch is
        inserted, so the second revision could not see the first one.
        """
        if session is None:
            return
        for pending in session.new:
            if (
                pending is not target
                and type(pending) is type(target)
                and getattr(pending, self.foreign_key) == entity_id
            ):
                self._reject(
                    DuplicateCurrentRevision(
                        message=(
                            f"multiple new revisions for {self.entity_name} "
                            f"{entity_id!r} in one flush"
                        ),
                        entity=self.entity_name,
                        entity_id=entity_id,
                    )
                )

    def _reject(self, error: RevisionTrailError) -> NoReturn:
        with revision_context(
            self.entity_name,
            event=fields.GUARD_REJECTED_EVENT,
            error_code=error.code,
        ):
            logger.warning("Revision guard rejected write: %s", error)
        raise error
