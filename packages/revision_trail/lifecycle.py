"""Revision bookkeeping bound to a tracked entity's flush lifecycle.

Each action runs inside the flush that wrote the entity row and emits its SQL on
that flush's connection, so a failed guard aborts the entity write as well.
Revisions are built from the row as persisted (re-read by primary key), which
includes server-side defaults and whatever the database did to the values.
"""

from __future__ import annotations

from typing import Any, NoReturn

from sqlalchemy import inspect, select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Mapper, Session, object_session

from packages.revision_trail.attribution import AttributionProvider, resolve_who_dunnit
from packages.revision_trail.config import RevisionTrailSettings
from packages.revision_trail.errors import (
    DuplicateCurrentRevision,
    MissingCurrentRevision,
    RevisionTrailError,
)
from packages.revision_trail.interceptors import Phase, register_bookkeeping
from packages.revision_trail.logging import fields, get_logger, revision_context
from packages.revision_trail.schema import WHO_DUNNIT, EntityDescriptor
from packages.revision_trail.state_machine import TemporalStateMachine

logger = get_logger(__name__)


class RevisionBookkeeping:
    """Guarded after-create/update/delete actions for one tracked entity."""

    def __init__(
        self,
        *,
        descriptor: EntityDescriptor,
        machine: TemporalStateMachine,
        attribution: AttributionProvider,
        settings: RevisionTrailSettings,
    ) -> None:
        self.descriptor = descriptor
        self.machine = machine
        self.attribution = attribution
        self.settings = settings

    def install(self) -> None:
        """Register the actions at the reserved bookkeeping priority."""
        entity_cls = self.descriptor.entity_cls
        register_bookkeeping(
            entity_cls, Phase.AFTER_CREATE, self.after_create, name="revision_trail.after_create"
        )
        register_bookkeeping(
            entity_cls, Phase.AFTER_UPDATE, self.after_update, name="revision_trail.after_update"
        )
        register_bookkeeping(
            entity_cls, Phase.AFTER_DELETE, self.after_delete, name="revision_trail.after_delete"
        )

    def after_create(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        entity_id = self._entity_id(target)
        with self._context(entity_id, Phase.AFTER_CREATE):
            if self.machine.find_current(connection, entity_id) is not None:
                self._reject(
                    DuplicateCurrentRevision(
                        message="previous revision on create",
                        entity=self.descriptor.name,
                        entity_id=entity_id,
                    )
                )
            self.open_for(connection, entity_id, session=object_session(target), target=target)

    def after_update(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        entity_id = self._entity_id(target)
        with self._context(entity_id, Phase.AFTER_UPDATE):
            # after_update fires for every dirty instance, including ones whose
            # UPDATE was skipped because nothing actually changed.
            if not self.has_trackable_changes(target):
                logger.debug("No tracked changes on %s; revision skipped", self.descriptor.name)
                return
            self._require_current(connection, entity_id)
            self.open_for(connection, entity_id, session=object_session(target), target=target)

    def after_delete(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        entity_id = self._entity_id(target)
        with self._context(entity_id, Phase.AFTER_DELETE):
            self._require_current(connection, entity_id)
            self.machine.close_current(connection, entity_id, session=object_session(target))

    def has_trackable_changes(self, target: Any) -> bool:
        """Whether any trackable attribute has a net change pending in this flush."""
        attrs = inspect(target).attrs
        return any(
            attrs[field.key].history.has_changes() for field in self.descriptor.trackable_fields
        )

    def open_for(
        self,
        connection: Connection,
        entity_id: Any,
        *,
        session: Session | None,
        target: Any = None,
    ) -> int:
        """Open a revision holding the persisted state of ``entity_id``."""
        values = self._persisted_values(connection, entity_id, target)
        values[WHO_DUNNIT] = resolve_who_dunnit(
            self.attribution, session, connection, self.settings
        )
        return self.machine.open_revision(connection, values, session=session)

    def _persisted_values(
        self,
        connection: Connection,
        entity_id: Any,
        target: Any,
    ) -> dict[str, Any]:
        mapper_columns = self.descriptor.mapper.columns
        trackable = self.descriptor.trackable_fields
        primary_key = mapper_columns[self.descriptor.primary_key.key]
        statement = select(
            *(mapper_columns[field.key].label(field.key) for field in trackable)
        ).where(primary_key == entity_id)
        row = connection.execute(statement).first()
        if row is not None:
            return dict(row._mapping)
        if target is None:
            self._reject(
                MissingCurrentRevision(
                    message=f"{self.descriptor.name} {entity_id!r} does not exist",
                    entity=self.descriptor.name,
                    entity_id=entity_id,
                )
            )
        # Row not visible on this connection; fall back to the loaded state.
        loaded = inspect(target).dict
        return {field.key: loaded.get(field.key) for field in trackable}

    def _require_current(self, connection: Connection, entity_id: Any) -> None:
        if self.machine.find_current(connection, entity_id) is None:
            self._reject(
                MissingCurrentRevision(
                    message="no previous revision exists",
                    entity=self.descriptor.name,
                    entity_id=entity_id,
                )
            )

    def _entity_id(self, target: Any) -> Any:
        state = inspect(target)
        value = state.dict.get(self.descriptor.primary_key.key)
        if value is None and state.identity is not None:
            value = state.identity[0]
        return value

    def _context(self, entity_id: Any, phase: Phase):
        return revision_context(
            self.descriptor.name, entity_id=entity_id, phase=phase.name.lower()
        )

    def _reject(self, error: RevisionTrailError) -> NoReturn:
        with revision_context(
            self.descriptor.name, event=fields.GUARD_REJECTED_EVENT, error_code=error.code
        ):
            logger.warning(
                "Revision bookkeeping rejected %s write: %s", self.descriptor.name, error
            )
        raise error
