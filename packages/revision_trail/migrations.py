"""Alembic helpers for shadow revision tables.

Use from a migration script::

    from alembic import op
    from packages.revision_trail.migrations import create_revision_table

    def upgrade() -> None:
        create_revision_table(op, ItemRevision)
"""

from __future__ import annotations

from alembic.operations import Operations
from sqlalchemy import Table

from packages.revision_trail.tracking import get_tracker


def _shadow_table(shadow_or_entity: type) -> Table:
    return get_tracker(shadow_or_entity).table


def create_revision_table(operations: Operations, shadow_or_entity: type) -> None:
    """Create the shadow table and its indexes."""
    table = _shadow_table(shadow_or_entity)
    columns = [column._copy() for column in table.columns]
    operations.create_table(table.name, *columns, schema=table.schema)
    for index in sorted(table.indexes, key=lambda item: item.name or ""):
        operations.create_index(
            index.name,
            table.name,
            [column.name for column in index.columns],
            unique=bool(index.unique),
            schema=table.schema,
        )


def drop_revision_table(operations: Operations, shadow_or_entity: type) -> None:
    """Drop the shadow table's indexes and then the table."""
    table = _shadow_table(shadow_or_entity)
    for index in sorted(table.indexes, key=lambda item: item.name or ""):
        operations.drop_index(index.name, table_name=table.name, schema=table.schema)
    operations.drop_table(table.name, schema=table.schema)


def revision_index_names(shadow_or_entity: type) -> tuple[str, ...]:
    return tuple(sorted(index.name for index in _shadow_table(shadow_or_entity).indexes))
