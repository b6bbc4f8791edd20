"""
Cross-replica poller lock.

Only one replica may run the chain poller for a given contract. The lock is a
PostgreSQL session-level advisory lock held on a dedicated connection for the
life of the process. It is taken once at startup: if the holder dies, the lock
is freed with its connection but standby replicas do not retry, so another
replica only takes over after it is restarted.
"""

import logging

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from web3 import Web3

logger = logging.getLogger(__name__)

# Postgres advisory lock keys are signed bigint
LOCK_ID_MASK = 0x7FFF_FFFF_FFFF_FFFF


def derive_lock_id(contract_address: str) -> int:
    """Deterministic 63-bit lock key from keccak256 of the lower-cased address."""
    digest = Web3.keccak(text=contract_address.lower())
    return int.from_bytes(digest[:8], byteorder='big') & LOCK_ID_MASK


class AdvisoryLock:
    """Session-scoped advisory lock keyed by a 63-bit id."""

    def __init__(self, engine: Engine, lock_id: int):
        self.engine = engine
        self.lock_id = lock_id
        self.held = False
        self._connection: Connection | None = None

    @classmethod
    def for_contract(cls, engine: Engine, contract_address: str, lock_id: int = 0) -> "AdvisoryLock":
        """Build the lock for a contract, using lock_id when it is non-zero."""
        return cls(engine, lock_id or derive_lock_id(contract_address))

    def try_acquire(self) -> bool:
        """
        Try to take the lock without blocking.

        Returns:
            True if this process now holds the lock
        """
        if self.held:
            return True

        if self.engine.dialect.name != "postgresql":
            logger.warning(
                f"Advisory locks need PostgreSQL ({self.engine.dialect.name} in use); "
                f"granting lock {self.lock_id} locally"
            )
            self.held = True
            return True

        connection = self.engine.connect()
        try:
            acquired = bool(
                connection.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"), {"lock_id": self.lock_id}
                ).scalar()
            )
            # Session-level lock outlives the transaction; don't sit idle in one
            connection.commit()
        except Exception:
            connection.close()
            raise

        if not acquired:
            connection.close()
            logger.info(f"Advisory lock {self.lock_id} is held by another replica")
            return False

        self._connection = connection
        self.held = True
        logger.info(f"Acquired advisory lock {self.lock_id}")
        return True

    def release(self) -> None:
        """Release the lock if held."""
        if not self.held:
            return
        self.held = False

        if self._connection is None:
            return
        try:
            self._connection.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": self.lock_id}
            )
            self._connection.commit()
            logger.info(f"Released advisory lock {self.lock_id}")
        finally:
            self._connection.close()
            self._connection = None
