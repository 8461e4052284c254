"""Tests for Alembic helpers that emit revision tables."""

from __future__ import annotations

from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from packages.revision_trail.migrations import (
    create_revision_table,
    drop_revision_table,
    revision_index_names,
)
from tests.revision_trail.models import Counter, CounterRevision, Item, ItemRevision


def _operations(connection) -> Operations:
    """Return Alembic operations bound to ``connection``."""
    return Operations(MigrationContext.configure(connection))


def test_create_and_drop_revision_table(tmp_path: Path) -> None:
    """The helpers create the table with its indexes and remove both again."""
    engine = create_engine(f"sqlite:///{tmp_path / 'migrations.db'}")
    try:
        with engine.begin() as connection:
            create_revision_table(_operations(connection), ItemRevision)

        inspector = inspect(engine)
        assert "items_revision" in inspector.get_table_names()
        columns = {column["name"]: column for column in inspector.get_columns("items_revision")}
        assert set(columns) == {
            "revision_id",
            "revision_valid_from",
            "revision_valid_to",
            "who_dunnit",
            "id",
            "name",
            "quantity",
            "notes",
            "owner_id",
        }
        assert columns["revision_valid_from"]["nullable"] is False
        assert inspector.get_pk_constraint("items_revision")["constrained_columns"] == [
            "revision_id"
        ]
        assert inspector.get_foreign_keys("items_revision") == []
        indexes = {index["name"]: index for index in inspector.get_indexes("items_revision")}
        assert set(indexes) == set(revision_index_names(Item))
        assert all(not index["unique"] for index in indexes.values())

        with engine.begin() as connection:
            drop_revision_table(_operations(connection), Item)

        assert "items_revision" not in inspect(engine).get_table_names()
    finally:
        engine.dispose()


def test_renamed_columns_use_database_names(tmp_path: Path) -> None:
    """Columns whose attribute key differs from their name keep the database name."""
    engine = create_engine(f"sqlite:///{tmp_path / 'migrations.db'}")
    try:
        with engine.begin() as connection:
            create_revision_table(_operations(connection), Counter)

        inspector = inspect(engine)
        names = {column["name"] for column in inspector.get_columns("counters_revision")}
        assert "counter_label" in names
        assert "label" not in names
        assert revision_index_names(CounterRevision) == (
            "ix_counters_revision_id",
            "ix_counters_revision_revision_valid_from",
            "ix_counters_revision_revision_valid_to",
        )
    finally:
        engine.dispose()
