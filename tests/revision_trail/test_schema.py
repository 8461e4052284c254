"""Tests for shadow table derivation and entity validation."""

from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import (
    Column,
    Computed,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from packages.revision_trail import (
    InvalidEntityType,
    get_tracker,
    install_revision_tracking,
    is_tracked,
    shadow_class_for,
)
from packages.revision_trail.schema import derive_shadow_table, describe_entity
from tests.revision_trail.models import TEST_SETTINGS, Item, ItemRevision


def _fresh_base() -> type[DeclarativeBase]:
    """Return a declarative base with its own registry and metadata."""

    class _Base(DeclarativeBase):
        pass

    return _Base


def test_item_revision_columns_exclude_bookkeeping_and_computed() -> None:
    """Only materialized, non-bookkeeping fields are copied next to revision columns."""
    table = ItemRevision.__revision_tracker__.table

    assert table.name == "items_revision"
    assert list(table.c.keys()) == [
        "revision_id",
        "revision_valid_from",
        "revision_valid_to",
        "who_dunnit",
        "id",
        "name",
        "quantity",
        "notes",
        "owner_id",
    ]


def test_copied_columns_lose_structural_constraints() -> None:
    """Copies keep type, nullability and comment but no keys, uniqueness or defaults."""
    table = ItemRevision.__revision_tracker__.table

    assert [column.name for column in table.primary_key.columns] == ["revision_id"]
    assert not table.c.id.primary_key
    assert table.c.id.nullable is False
    assert not table.c.name.unique
    assert table.c.name.nullable is False
    assert table.c.quantity.default is None
    assert not table.c.owner_id.foreign_keys
    assert table.foreign_key_constraints == set()
    assert table.c.notes.comment == "free text"
    assert isinstance(table.c.name.type, String)
    assert table.c.name.type.length == 100


def test_revision_columns_and_indexes() -> None:
    """Validity columns are timezone-aware and indexed with the entity identifier."""
    table = ItemRevision.__revision_tracker__.table

    assert table.c.revision_valid_from.nullable is False
    assert table.c.revision_valid_to.nullable is True
    assert table.c.revision_valid_from.type.timezone is True
    assert table.c.who_dunnit.type.length == 255
    assert {index.name: [column.name for column in index.columns] for index in table.indexes} == {
        "ix_items_revision_revision_valid_from": ["revision_valid_from"],
        "ix_items_revision_revision_valid_to": ["revision_valid_to"],
        "ix_items_revision_id": ["id"],
    }
    assert all(not index.unique for index in table.indexes)


def test_shadow_class_is_mapped_on_entity_registry() -> None:
    """The revision class shares the entity's metadata and module."""
    assert ItemRevision.__name__ == "ItemRevision"
    assert ItemRevision.__module__ == Item.__module__
    assert ItemRevision.__revision_tracker__.table.metadata is Item.metadata


def test_describe_entity_marks_field_kinds() -> None:
    """Computed and bookkeeping columns are described but not trackable."""
    base = _fresh_base()

    class Invoice(base):
        __tablename__ = "invoices"

        number: Mapped[int] = mapped_column("invoice_number", Integer, primary_key=True)
        net: Mapped[int] = mapped_column(Integer)
        gross: Mapped[int] = mapped_column(Integer, Computed("net * 2"))
        deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    descriptor = describe_entity(Invoice, TEST_SETTINGS)
    by_key = {field.key: field for field in descriptor.fields}

    assert descriptor.primary_key.key == "number"
    assert descriptor.primary_key.column_name == "invoice_number"
    assert by_key["gross"].materialized is False
    assert by_key["deleted_at"].bookkeeping is True
    assert [field.key for field in descriptor.trackable_fields] == ["number", "net"]

    table = derive_shadow_table(descriptor, MetaData(), TEST_SETTINGS)
    assert "gross" not in table.c
    assert table.c.number.name == "invoice_number"
    assert "ix_invoices_revision_invoice_number" in {index.name for index in table.indexes}


def test_bookkeeping_fields_follow_settings() -> None:
    """The excluded timestamp names come from configuration."""
    base = _fresh_base()
    settings = TEST_SETTINGS.model_copy(
        update={
            "shadow": TEST_SETTINGS.shadow.model_copy(
                update={"bookkeeping_fields": ("modified_on",), "table_suffix": "_history"}
            )
        }
    )

    class Page(base):
        __tablename__ = "pages"

        id: Mapped[int] = mapped_column(Integer, primary_key=True)
        modified_on: Mapped[datetime | None] = mapped_column(DateTime)
        created_at: Mapped[datetime | None] = mapped_column(DateTime)

    table = derive_shadow_table(describe_entity(Page, settings), MetaData(), settings)

    assert table.name == "pages_history"
    assert "modified_on" not in table.c
    assert "created_at" in table.c


@pytest.mark.parametrize("candidate", [None, 42, "Item", object()])
def test_non_class_is_rejected(candidate: object) -> None:
    """Installation requires a class."""
    with pytest.raises(InvalidEntityType):
        install_revision_tracking(candidate, settings=TEST_SETTINGS)


def test_unmapped_class_is_rejected() -> None:
    """Plain classes have no mapper to derive from."""

    class Plain:
        id = 1

    with pytest.raises(InvalidEntityType) as excinfo:
        install_revision_tracking(Plain, settings=TEST_SETTINGS)

    assert "not mapped" in str(excinfo.value)


def test_composite_primary_key_is_rejected() -> None:
    """Exactly one primary-key column is required."""
    base = _fresh_base()

    class Membership(base):
        __tablename__ = "memberships"

        group_id: Mapped[int] = mapped_column(Integer, primary_key=True)
        user_id: Mapped[int] = mapped_column(Integer, primary_key=True)

    with pytest.raises(InvalidEntityType) as excinfo:
        install_revision_tracking(Membership, settings=TEST_SETTINGS)

    assert "found 2" in str(excinfo.value)


def test_inherited_mapping_is_rejected() -> None:
    """Subclasses in an inheritance hierarchy cannot be tracked on their own."""
    base = _fresh_base()

    class Vehicle(base):
        __tablename__ = "vehicles"

        id: Mapped[int] = mapped_column(Integer, primary_key=True)
        kind: Mapped[str] = mapped_column(String(20))
        __mapper_args__ = {"polymorphic_on": "kind", "polymorphic_identity": "vehicle"}

    class Truck(Vehicle):
        __tablename__ = "trucks"

        id: Mapped[int] = mapped_column(ForeignKey("vehicles.id"), primary_key=True)
        __mapper_args__ = {"polymorphic_identity": "truck"}

    with pytest.raises(InvalidEntityType):
        install_revision_tracking(Truck, settings=TEST_SETTINGS)


def test_colliding_field_name_is_rejected() -> None:
    """Entity fields may not reuse revision column names."""
    base = _fresh_base()

    class Legacy(base):
        __tablename__ = "legacy"

        id: Mapped[int] = mapped_column(Integer, primary_key=True)
        who_dunnit: Mapped[str] = mapped_column(String(50))

    with pytest.raises(InvalidEntityType) as excinfo:
        describe_entity(Legacy, TEST_SETTINGS)

    assert "who_dunnit" in str(excinfo.value)


def test_existing_shadow_table_is_rejected() -> None:
    """A table already using the revision name blocks derivation."""
    base = _fresh_base()

    class Widget(base):
        __tablename__ = "widgets"

        id: Mapped[int] = mapped_column(Integer, primary_key=True)

    Table("widgets_revision", base.metadata, Column("id", Integer, primary_key=True))

    with pytest.raises(InvalidEntityType):
        install_revision_tracking(Widget, settings=TEST_SETTINGS)


def test_revision_class_cannot_be_tracked() -> None:
    """Revisions of revisions are refused."""
    with pytest.raises(InvalidEntityType):
        install_revision_tracking(ItemRevision, settings=TEST_SETTINGS)


def test_install_is_idempotent() -> None:
    """Installing again returns the existing revision class."""
    assert install_revision_tracking(Item, settings=TEST_SETTINGS) is ItemRevision
    assert shadow_class_for(Item) is ItemRevision
    assert get_tracker(ItemRevision).entity_cls is Item
    assert is_tracked(Item)
    assert not is_tracked(ItemRevision)
