"""Tests for revision read helpers and backfilling."""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest
from sqlalchemy import insert
from sqlalchemy.orm import sessionmaker

from packages.revision_trail import (
    InvalidEntityType,
    backfill_revisions,
    current_revision,
    revision_as_of,
    revision_history,
    set_who_dunnit,
)
from tests.revision_trail.models import EPOCH, Item, Owner


def _three_versions(factory: sessionmaker) -> None:
    """Create item 123 at EPOCH and update it at +1s and +2s."""
    with factory() as session:
        session.add(Item(id="123", name="v1"))
        session.commit()
        session.get(Item, "123").name = "v2"
        session.commit()
        session.get(Item, "123").name = "v3"
        session.commit()


def test_revision_history_is_ordered_oldest_first(sqlite_session_factory: sessionmaker) -> None:
    """History should follow validity order."""
    _three_versions(sqlite_session_factory)

    with sqlite_session_factory() as session:
        names = [revision.name for revision in revision_history(session, Item, "123")]
        assert revision_history(session, Item, "unknown") == []

    assert names == ["v1", "v2", "v3"]


def test_current_revision_follows_lifecycle(sqlite_session_factory: sessionmaker) -> None:
    """The current revision is the latest one until the entity is deleted."""
    _three_versions(sqlite_session_factory)

    with sqlite_session_factory() as session:
        assert current_revision(session, Item, "123").name == "v3"
        session.delete(session.get(Item, "123"))
        session.commit()
        assert current_revision(session, Item, "123") is None


@pytest.mark.parametrize(
    ("offset", "expected"),
    [
        (timedelta(seconds=-1), None),
        (timedelta(0), "v1"),
        (timedelta(milliseconds=500), "v1"),
        (timedelta(seconds=1), "v2"),
        (timedelta(seconds=2), "v3"),
        (timedelta(days=365), "v3"),
    ],
)
def test_revision_as_of_uses_half_open_intervals(
    sqlite_session_factory: sessionmaker,
    offset: timedelta,
    expected: str | None,
) -> None:
    """A revision is valid from its start up to, but excluding, its close."""
    _three_versions(sqlite_session_factory)

    with sqlite_session_factory() as session:
        revision = revision_as_of(session, Item, "123", EPOCH + offset)

    assert (revision.name if revision is not None else None) == expected


def test_revision_as_of_reads_naive_times_as_utc(sqlite_session_factory: sessionmaker) -> None:
    """Naive instants are interpreted as UTC."""
    _three_versions(sqlite_session_factory)
    naive = (EPOCH + timedelta(seconds=1)).replace(tzinfo=None)

    with sqlite_session_factory() as session:
        assert revision_as_of(session, Item, "123", naive).name == "v2"


def test_revision_as_of_after_delete_returns_nothing(sqlite_session_factory: sessionmaker) -> None:
    """Once deleted, an entity has no revision valid at later instants."""
    _three_versions(sqlite_session_factory)
    with sqlite_session_factory() as session:
        session.delete(session.get(Item, "123"))
        session.commit()

    with sqlite_session_factory() as session:
        assert revision_as_of(session, Item, "123", EPOCH + timedelta(days=1)) is None
        assert revision_as_of(session, Item, "123", EPOCH + timedelta(seconds=2)).name == "v3"


def test_backfill_opens_revisions_for_untracked_rows(
    sqlite_session_factory: sessionmaker,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Rows without an open revision get one; tracked rows are left alone."""
    with sqlite_session_factory() as session:
        session.add(Item(id="tracked", name="tracked"))
        session.commit()
        with caplog.at_level(logging.INFO, logger="packages.revision_trail"):
            session.execute(
                insert(Item),
                [
                    {"id": "legacy-1", "name": "legacy one"},
                    {"id": "legacy-2", "name": "legacy two"},
                ],
            )
            session.commit()

            set_who_dunnit(session, "migration")
            opened = backfill_revisions(session, Item)
            session.commit()

        assert opened == 2
        assert backfill_revisions(session, Item) == 0
        legacy = revision_history(session, Item, "legacy-1")
        assert len(legacy) == 1
        assert legacy[0].who_dunnit == "migration"
        assert legacy[0].name == "legacy one"
        assert len(revision_history(session, Item, "tracked")) == 1

    assert any("Backfilled 2 revisions" in record.message for record in caplog.records)


def test_queries_reject_untracked_classes(sqlite_session_factory: sessionmaker) -> None:
    """Read helpers only accept tracked classes."""
    with sqlite_session_factory() as session:
        with pytest.raises(InvalidEntityType):
            revision_history(session, Owner, 1)
