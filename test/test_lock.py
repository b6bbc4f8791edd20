"""Tests for the poller advisory lock."""

import logging
from unittest.mock import MagicMock

import pytest

from arca_indexer.storage.lock import LOCK_ID_MASK, AdvisoryLock, derive_lock_id

from chain_fixtures import CONTRACT


def postgres_engine(acquired: bool) -> tuple[MagicMock, MagicMock]:
    engine = MagicMock()
    engine.dialect.name = "postgresql"
    connection = engine.connect.return_value
    connection.execute.return_value.scalar.return_value = acquired
    return engine, connection


class TestDeriveLockId:
    """Tests for derive_lock_id."""

    def test_deterministic(self):
        assert derive_lock_id(CONTRACT) == derive_lock_id(CONTRACT)

    def test_case_insensitive(self):
        assert derive_lock_id(CONTRACT.lower()) == derive_lock_id(CONTRACT.upper().replace("0X", "0x"))

    def test_fits_signed_bigint(self):
        lock_id = derive_lock_id(CONTRACT)
        assert 0 <= lock_id <= LOCK_ID_MASK

    def test_differs_per_contract(self):
        assert derive_lock_id(CONTRACT) != derive_lock_id("0x" + "12" * 20)


class TestAdvisoryLock:
    """Tests for AdvisoryLock."""

    def test_for_contract_uses_derived_id(self):
        lock = AdvisoryLock.for_contract(MagicMock(), CONTRACT)
        assert lock.lock_id == derive_lock_id(CONTRACT)

    def test_for_contract_uses_override(self):
        lock = AdvisoryLock.for_contract(MagicMock(), CONTRACT, lock_id=42)
        assert lock.lock_id == 42

    def test_sqlite_grants_locally(self, database, caplog):
        lock = AdvisoryLock(database.engine, 7)

        with caplog.at_level(logging.WARNING):
            assert lock.try_acquire() is True

        assert lock.held
        assert "granting lock 7 locally" in caplog.text
        lock.release()
        assert not lock.held

    def test_postgres_acquire_and_release(self):
        engine, connection = postgres_engine(acquired=True)
        lock = AdvisoryLock(engine, 99)

        assert lock.try_acquire() is True
        assert lock.held
        sql, params = connection.execute.call_args.args
        assert "pg_try_advisory_lock" in str(sql)
        assert params == {"lock_id": 99}
        connection.close.assert_not_called()

        lock.release()

        sql, params = connection.execute.call_args.args
        assert "pg_advisory_unlock" in str(sql)
        connection.close.assert_called_once()
        assert not lock.held

    def test_postgres_lock_held_elsewhere(self):
        engine, connection = postgres_engine(acquired=False)
        lock = AdvisoryLock(engine, 99)

        assert lock.try_acquire() is False
        assert not lock.held
        connection.close.assert_called_once()

        lock.release()  # no-op
        assert connection.execute.call_count == 1

    def test_postgres_error_closes_connection(self):
        engine, connection = postgres_engine(acquired=True)
        connection.execute.side_effect = RuntimeError("connection reset")
        lock = AdvisoryLock(engine, 99)

        with pytest.raises(RuntimeError):
            lock.try_acquire()

        connection.close.assert_called_once()
        assert not lock.held

    def test_acquire_is_idempotent(self):
        engine, _ = postgres_engine(acquired=True)
        lock = AdvisoryLock(engine, 99)
        lock.try_acquire()
        lock.try_acquire()
        assert engine.connect.call_count == 1
