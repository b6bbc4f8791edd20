"""
Append-only, idempotent event persistence.

Every record is unique per (tx_hash, log_index). Records are never updated;
they are only deleted by a reorg rewind.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..models import DecodedEvent
from .tables import EventRecord

logger = logging.getLogger(__name__)


class EventStore:
    """Event records of one (chain, contract) scope."""

    def __init__(self, chain_id: int, contract_address: str):
        self.chain_id = chain_id
        self.contract_address = contract_address

    def _scope(self):
        return (
            EventRecord.chain_id == self.chain_id,
            EventRecord.contract_address == self.contract_address,
        )

    def exists(self, session: Session, tx_hash: str, log_index: int) -> bool:
        """Check the idempotency key (tx_hash, log_index)."""
        found = session.scalar(
            select(EventRecord.id).where(
                EventRecord.tx_hash == tx_hash.lower(),
                EventRecord.log_index == log_index,
            )
        )
        return found is not None

    def append(self, session: Session, event: DecodedEvent, block_timestamp: datetime) -> EventRecord:
        """
        Insert a decoded event.

        The insert is flushed immediately so a unique-key violation surfaces
        here as sqlalchemy.exc.IntegrityError rather than at commit time.

        Args:
            session: Database session (the caller owns the transaction)
            event: Decoded event to persist
            block_timestamp: Timestamp of the source block

        Returns:
            The persisted EventRecord
        """
        record = EventRecord(
            chain_id=self.chain_id,
            contract_address=self.contract_address,
            package_key=event.package_key,
            event_type=event.event_type.value,
            emitting_address=event.emitting_address,
            block_number=event.block_number,
            block_hash=event.block_hash,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            block_timestamp=block_timestamp,
            payload=dict(event.data),
        )
        session.add(record)
        session.flush()
        return record

    def rewind_from(self, session: Session, block_number: int) -> int:
        """Delete every record at or above block_number. Returns rows removed."""
        result = session.execute(
            delete(EventRecord).where(*self._scope(), EventRecord.block_number >= block_number)
        )
        return result.rowcount or 0

    def page(
        self,
        session: Session,
        package_key: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[EventRecord], int]:
        """
        One page of records in chain order.

        Args:
            session: Database session
            package_key: Optional package filter
            offset: Rows to skip
            limit: Maximum rows to return

        Returns:
            (records ordered by block_number, log_index; total matching count)
        """
        conditions = list(self._scope())
        if package_key is not None:
            conditions.append(EventRecord.package_key == package_key.lower())

        total = session.scalar(select(func.count(EventRecord.id)).where(*conditions)) or 0
        rows = session.scalars(
            select(EventRecord)
            .where(*conditions)
            .order_by(EventRecord.block_number, EventRecord.log_index)
            .offset(offset)
            .limit(limit)
        ).all()
        return list(rows), total
