"""Install revision tracking on a mapped entity class.

:func:`install_revision_tracking` derives the shadow table, maps a
``<Entity>Revision`` class on the entity's own registry and metadata, and
wires the two halves together:

* the shadow class defends its own invariants through mapper hooks,
* the entity's after-create/update/delete flush events open and close
  revisions through the same state machine.

Bulk ORM statements never fire per-row mapper events. Against a shadow class
they are rejected, inserts included. Against a tracked entity they are allowed
but logged, because the affected rows get no history.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, ClassVar

from sqlalchemy import Table, event, inspect
from sqlalchemy.orm import ORMExecuteState, Session
from sqlalchemy.orm.attributes import set_committed_value

from packages.revision_trail.attribution import AttributionProvider, session_attribution
from packages.revision_trail.clock import Clock, ensure_aware, utc_now
from packages.revision_trail.config import RevisionTrailSettings, load_settings
from packages.revision_trail.errors import (
    InvalidEntityType,
    ManualTimestampNotAllowed,
    RevisionDeletionForbidden,
    RevisionImmutable,
)
from packages.revision_trail.interceptors import Phase, register_bookkeeping
from packages.revision_trail.lifecycle import RevisionBookkeeping
from packages.revision_trail.logging import fields, get_logger, revision_context
from packages.revision_trail.schema import (
    REVISION_VALID_FROM,
    REVISION_VALID_TO,
    EntityDescriptor,
    derive_shadow_table,
    describe_entity,
)
from packages.revision_trail.state_machine import TemporalStateMachine

logger = get_logger(__name__)


class ShadowRevision:
    """Base class of every generated ``<Entity>Revision`` class."""

    __revision_tracker__: ClassVar["RevisionTracker"]

    def __init__(self, **values: Any) -> None:
        cls = type(self)
        for key, value in values.items():
            if not hasattr(cls, key):
                raise TypeError(f"{key!r} is an invalid keyword argument for {cls.__name__}")
            setattr(self, key, value)

    @property
    def is_current(self) -> bool:
        return self.revision_valid_to is None

    def __repr__(self) -> str:
        tracker = type(self).__revision_tracker__
        entity_id = getattr(self, tracker.foreign_key, None)
        return (
            f"<{type(self).__name__} revision_id={self.revision_id!r} "
            f"{tracker.foreign_key}={entity_id!r} "
            f"valid_from={self.revision_valid_from!r} valid_to={self.revision_valid_to!r}>"
        )


@dataclass(frozen=True, slots=True)
class RevisionTracker:
    """Everything installed for one tracked entity class."""

    entity_cls: type
    shadow_cls: type
    table: Table
    descriptor: EntityDescriptor
    machine: TemporalStateMachine
    bookkeeping: RevisionBookkeeping
    settings: RevisionTrailSettings

    @property
    def foreign_key(self) -> str:
        return self.descriptor.primary_key.key


_TRACKERS: dict[type, RevisionTracker] = {}
_INSTALL_LOCK = threading.RLock()


def install_revision_tracking(
    entity_cls: Any,
    *,
    settings: RevisionTrailSettings | None = None,
    attribution: AttributionProvider | None = None,
    clock: Clock | None = None,
) -> type:
    """Track revisions of ``entity_cls`` and return its shadow revision class.

    Installing twice on the same class returns the existing shadow class.

    Raises:
        InvalidEntityType: ``entity_cls`` is not a mapped class with a single
            primary-key column, or is itself a shadow revision class.
    """
    with _INSTALL_LOCK:
        existing = _TRACKERS.get(entity_cls) if isinstance(entity_cls, type) else None
        if existing is not None:
            if existing.shadow_cls is entity_cls:
                raise InvalidEntityType(
                    message=f"{entity_cls.__name__} is a revision class and cannot be tracked"
                )
            return existing.shadow_cls

        resolved = settings if settings is not None else load_settings()
        descriptor = describe_entity(entity_cls, resolved)
        table = derive_shadow_table(descriptor, descriptor.table.metadata, resolved)
        shadow_cls = _map_shadow_class(descriptor, table, resolved)

        machine = TemporalStateMachine(
            entity_name=descriptor.name,
            table=table,
            foreign_key=descriptor.primary_key.key,
            clock=clock or utc_now,
        )
        machine.bind_mapper(inspect(shadow_cls))
        _install_shadow_guards(shadow_cls, machine)

        bookkeeping = RevisionBookkeeping(
            descriptor=descriptor,
            machine=machine,
            attribution=attribution or session_attribution,
            settings=resolved,
        )
        bookkeeping.install()

        tracker = RevisionTracker(
            entity_cls=entity_cls,
            shadow_cls=shadow_cls,
            table=table,
            descriptor=descriptor,
            machine=machine,
            bookkeeping=bookkeeping,
            settings=resolved,
        )
        shadow_cls.__revision_tracker__ = tracker
        _TRACKERS[entity_cls] = tracker
        _TRACKERS[shadow_cls] = tracker

    with revision_context(descriptor.name):
        logger.info(
            "Revision tracking installed: %s -> %s (%d tracked fields)",
            descriptor.table.name,
            table.name,
            len(descriptor.trackable_fields),
        )
    return shadow_cls


def get_tracker(cls: type) -> RevisionTracker:
    """Return the tracker for a tracked entity class or its shadow class."""
    tracker = _TRACKERS.get(cls)
    if tracker is None:
        name = getattr(cls, "__name__", cls)
        raise InvalidEntityType(message=f"{name!r} is not revision tracked")
    return tracker


def is_tracked(cls: type) -> bool:
    tracker = _TRACKERS.get(cls)
    return tracker is not None and tracker.entity_cls is cls


def shadow_class_for(entity_cls: type) -> type:
    return get_tracker(entity_cls).shadow_cls


def _map_shadow_class(
    descriptor: EntityDescriptor,
    table: Table,
    settings: RevisionTrailSettings,
) -> type:
    name = f"{descriptor.name}{settings.shadow.class_suffix}"
    shadow_cls = type(
        name,
        (ShadowRevision,),
        {"__module__": descriptor.entity_cls.__module__, "__qualname__": name},
    )
    descriptor.mapper.registry.map_imperatively(shadow_cls, table)
    return shadow_cls


def _install_shadow_guards(shadow_cls: type, machine: TemporalStateMachine) -> None:
    register_bookkeeping(
        shadow_cls, Phase.BEFORE_CREATE, machine.before_insert, name="revision_trail.before_create"
    )
    register_bookkeeping(
        shadow_cls, Phase.BEFORE_UPDATE, machine.before_update, name="revision_trail.before_update"
    )
    register_bookkeeping(
        shadow_cls, Phase.BEFORE_DELETE, machine.before_delete, name="revision_trail.before_delete"
    )
    event.listen(shadow_cls, "load", _normalize_loaded_timestamps)
    event.listen(shadow_cls, "refresh", _normalize_loaded_timestamps)


def _normalize_loaded_timestamps(target: Any, *_: object) -> None:
    """Give loaded validity timestamps UTC tzinfo without marking them changed."""
    loaded = target.__dict__
    for key in (REVISION_VALID_FROM, REVISION_VALID_TO):
        value = loaded.get(key)
        if value is not None and value.tzinfo is None:
            set_committed_value(target, key, ensure_aware(value))


@event.listens_for(Session, "do_orm_execute")
def _guard_bulk_statements(orm_execute_state: ORMExecuteState) -> None:
    """Reject bulk writes to revisions; warn about untracked bulk entity writes."""
    if orm_execute_state.is_select:
        return
    mapper = orm_execute_state.bind_mapper
    tracker = _TRACKERS.get(mapper.class_) if mapper is not None else None
    if tracker is None:
        return

    if mapper.class_ is tracker.shadow_cls:
        if orm_execute_state.is_delete:
            raise RevisionDeletionForbidden(message="cannot delete revision")
        if orm_execute_state.is_update:
            raise RevisionImmutable(message="cannot update revision")
        if orm_execute_state.is_insert:
            # Statement inserts carry caller-supplied validity columns.
            raise ManualTimestampNotAllowed(
                message="revisions must be added to the session, not bulk inserted",
                field=REVISION_VALID_FROM,
            )
        return

    with revision_context(tracker.descriptor.name, event=fields.BULK_WRITE_UNTRACKED_EVENT):
        logger.warning(
            "Bulk statement on %s bypasses per-row flush events; affected rows get no revisions",
            tracker.descriptor.name,
        )
