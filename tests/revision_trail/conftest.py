"""Fixtures for revision tracking tests."""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from tests.revision_trail.models import CLOCK, Base, SteppingClock


@pytest.fixture(autouse=True)
def clock() -> SteppingClock:
    """Restart the shared clock so every test sees the same timestamps."""
    CLOCK.reset()
    return CLOCK


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """Provide a sqlite engine with entity and revision tables created."""
    db_path = tmp_path / "revisions.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def sqlite_session_factory(engine: Engine) -> sessionmaker:
    """Provide a session factory bound to the temp sqlite engine."""
    return sessionmaker(bind=engine)
