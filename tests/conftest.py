"""Shared test fixtures."""
from datetime import datetime
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from adsync.models.project import Project
from adsync.models.sync import MonthlyImportRecord, SyncLogEntry, SyncProgressRecord  # noqa: F401

NOW = datetime(2025, 3, 15, 12, 0)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


def add_project(session: Session, name: str, **kwargs) -> Project:
    project = Project(name=name, ad_account_id=kwargs.pop("ad_account_id", f"act_{name.lower()}"), **kwargs)
    session.add(project)
    session.commit()
    session.refresh(project)
    return project


@pytest.fixture(name="seeded_project")
def seeded_project_fixture(test_session: Session) -> Project:
    """A persisted Project that has never synced."""
    return add_project(test_session, "Acme")


@pytest.fixture(name="make_project")
def make_project_fixture(test_session: Session):
    """Factory: make_project("Name", last_sync_at=..., archived=...) → persisted Project."""
    def _make(name: str, **kwargs) -> Project:
        return add_project(test_session, name, **kwargs)
    return _make
