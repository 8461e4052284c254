"""Derive shadow revision tables from tracked entity mappings.

The field list is decided once, at install time, from the entity's SQLAlchemy
mapper. Each mapped column becomes a :class:`FieldDescriptor`; only trackable
descriptors (materialized and not bookkeeping) are copied into the shadow table,
and the copies keep nothing but the value type, nullability and comment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Column, DateTime, Index, Integer, MetaData, String, Table, inspect
from sqlalchemy.orm import Mapper
from sqlalchemy.types import TypeEngine

from packages.revision_trail.config import RevisionTrailSettings
from packages.revision_trail.errors import InvalidEntityType

REVISION_ID = "revision_id"
REVISION_VALID_FROM = "revision_valid_from"
REVISION_VALID_TO = "revision_valid_to"
WHO_DUNNIT = "who_dunnit"

REVISION_FIELDS: tuple[str, ...] = (
    REVISION_ID,
    REVISION_VALID_FROM,
    REVISION_VALID_TO,
    WHO_DUNNIT,
)


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One mapped column of a tracked entity."""

    key: str
    column_name: str
    type: TypeEngine[Any]
    nullable: bool
    materialized: bool
    bookkeeping: bool
    primary_key: bool = False
    comment: str | None = None

    @property
    def trackable(self) -> bool:
        """Whether the value is copied into shadow revisions."""
        return self.materialized and not self.bookkeeping


@dataclass(frozen=True, slots=True)
class EntityDescriptor:
    """Validated description of a tracked entity type."""

    entity_cls: type
    mapper: Mapper[Any]
    table: Table
    primary_key: FieldDescriptor
    fields: tuple[FieldDescriptor, ...]

    @property
    def name(self) -> str:
        return self.entity_cls.__name__

    @property
    def trackable_fields(self) -> tuple[FieldDescriptor, ...]:
        return tuple(field for field in self.fields if field.trackable)


def describe_entity(entity_cls: object, settings: RevisionTrailSettings) -> EntityDescriptor:
    """Validate ``entity_cls`` and describe its fields.

    Raises:
        InvalidEntityType: ``entity_cls`` is not a mapped class backed by a
            single table with exactly one primary-key column, or one of its
            fields collides with a revision column.
    """
    if entity_cls is None or not isinstance(entity_cls, type):
        raise InvalidEntityType(
            message=f"cannot track revisions of {entity_cls!r}: expected a mapped class"
        )
    mapper = inspect(entity_cls, raiseerr=False)
    if not isinstance(mapper, Mapper):
        raise InvalidEntityType(
            message=f"cannot track revisions of {entity_cls.__name__}: class is not mapped"
        )
    if mapper.inherits is not None:
        raise InvalidEntityType(
            message=(
                f"cannot track revisions of {entity_cls.__name__}: "
                "install tracking on the base of the inheritance hierarchy"
            )
        )
    table = mapper.local_table
    if not isinstance(table, Table) or mapper.persist_selectable is not table:
        raise InvalidEntityType(
            message=f"cannot track revisions of {entity_cls.__name__}: not mapped to a single table"
        )

    bookkeeping = set(settings.shadow.bookkeeping_fields)
    fields = tuple(_describe_property(prop, table, bookkeeping) for prop in mapper.column_attrs)

    primary_keys = [field for field in fields if field.primary_key]
    if len(primary_keys) != 1:
        raise InvalidEntityType(
            message=(
                f"cannot track revisions of {entity_cls.__name__}: "
                f"expected exactly one primary-key column, found {len(primary_keys)}"
            )
        )
    if not primary_keys[0].trackable:
        raise InvalidEntityType(
            message=(
                f"cannot track revisions of {entity_cls.__name__}: "
                f"primary key {primary_keys[0].key!r} is excluded from revisions"
            )
        )

    taken = {field.key for field in fields if field.trackable}
    taken |= {field.column_name for field in fields if field.trackable}
    collisions = sorted(taken & set(REVISION_FIELDS))
    if collisions:
        raise InvalidEntityType(
            message=(
                f"cannot track revisions of {entity_cls.__name__}: "
                f"fields {collisions} collide with revision columns"
            )
        )

    return EntityDescriptor(
        entity_cls=entity_cls,
        mapper=mapper,
        table=table,
        primary_key=primary_keys[0],
        fields=fields,
    )


def _describe_property(prop, table: Table, bookkeeping: set[str]) -> FieldDescriptor:
    """Build a descriptor for one ``ColumnProperty``."""
    column = prop.columns[0]
    is_table_column = isinstance(column, Column) and column.table is table
    materialized = is_table_column and column.computed is None
    name = column.name if is_table_column else prop.key
    return FieldDescriptor(
        key=prop.key,
        column_name=name,
        type=column.type,
        nullable=bool(getattr(column, "nullable", True)),
        materialized=materialized,
        bookkeeping=prop.key in bookkeeping or name in bookkeeping,
        primary_key=is_table_column and column.primary_key,
        comment=getattr(column, "comment", None),
    )


def shadow_table_name(descriptor: EntityDescriptor, settings: RevisionTrailSettings) -> str:
    return f"{descriptor.table.name}{settings.shadow.table_suffix}"


def derive_shadow_table(
    descriptor: EntityDescriptor,
    metadata: MetaData,
    settings: RevisionTrailSettings,
) -> Table:
    """Create the shadow table for ``descriptor`` on ``metadata``."""
    name = shadow_table_name(descriptor, settings)
    key = f"{descriptor.table.schema}.{name}" if descriptor.table.schema else name
    if key in metadata.tables:
        raise InvalidEntityType(
            message=f"cannot track revisions of {descriptor.name}: table {key!r} already exists"
        )

    foreign_key = descriptor.primary_key
    columns: list[Column[Any]] = [
        Column(REVISION_ID, Integer, primary_key=True, autoincrement=True),
        Column(REVISION_VALID_FROM, DateTime(timezone=True), nullable=False),
        Column(REVISION_VALID_TO, DateTime(timezone=True), nullable=True),
        Column(WHO_DUNNIT, String(settings.shadow.who_dunnit_length), nullable=True),
    ]
    for field in descriptor.trackable_fields:
        columns.append(
            Column(
                field.column_name,
                field.type.copy(),
                key=field.key,
                # The entity identifier is always present on a revision.
                nullable=False if field is foreign_key else field.nullable,
                comment=field.comment,
            )
        )

    indexes = [
        Index(f"ix_{name}_{REVISION_VALID_FROM}", REVISION_VALID_FROM),
        Index(f"ix_{name}_{REVISION_VALID_TO}", REVISION_VALID_TO),
        Index(f"ix_{name}_{foreign_key.column_name}", foreign_key.key),
    ]
    return Table(name, metadata, *columns, *indexes, schema=descriptor.table.schema)
