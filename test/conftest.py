"""Shared pytest fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from arca_indexer.config import IndexerSettings
from arca_indexer.storage.db import Database

from chain_fixtures import FakeRpc


@pytest.fixture
def database():
    """Fresh in-memory SQLite database with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine=engine)
    db.init_db()
    yield db
    engine.dispose()


@pytest.fixture
def rpc():
    return FakeRpc(head=200)


@pytest.fixture
def settings():
    return IndexerSettings(
        confirmation_depth=12,
        start_block=90,
        polling_interval=1,
    )
