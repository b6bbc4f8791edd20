"""Database utilities for the Arca indexer."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .tables import Base

logger = logging.getLogger(__name__)


class Database:
    """Configure a SQLAlchemy engine and session factory."""

    def __init__(self, url: str | None = None, engine: Engine | None = None):
        if engine is None:
            if not url:
                raise ValueError("A database URL or engine is required")
            engine = create_engine(url, **_engine_options(url))
        self._engine = engine
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        return self._engine

    def init_db(self) -> None:
        """Create all tables defined on the declarative metadata."""
        Base.metadata.create_all(self._engine)
        logger.info(f"Database schema ready ({self._engine.dialect.name})")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Plain session; the caller decides when to commit."""
        with self._session_factory() as session:
            yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session wrapped in one transaction, committed on success and rolled back on error."""
        with self._session_factory() as session:
            with session.begin():
                yield session


def _engine_options(url: str) -> dict[str, Any]:
    if not url.startswith("sqlite"):
        return {"pool_pre_ping": True}

    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
        # One shared connection so every session sees the same in-memory database
        options["poolclass"] = StaticPool
    return options


__all__ = ["Database"]
