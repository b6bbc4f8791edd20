"""
Processed-range ledger.

Tracks, per (chain, contract), which blocks have been fully scanned and the
canonical hash each had when it was scanned. The maximum recorded block drives
the next poll range; the stored hashes drive reorg detection.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from .tables import ProcessedBlock, utcnow

logger = logging.getLogger(__name__)


class ProcessedRangeLedger:
    """Ledger of scanned blocks for one (chain, contract) scope."""

    def __init__(self, chain_id: int, contract_address: str):
        self.chain_id = chain_id
        self.contract_address = contract_address

    def _scope(self):
        return (
            ProcessedBlock.chain_id == self.chain_id,
            ProcessedBlock.contract_address == self.contract_address,
        )

    def max_block(self, session: Session) -> int | None:
        """Highest block number recorded, or None for an empty ledger."""
        return session.scalar(select(func.max(ProcessedBlock.block_number)).where(*self._scope()))

    def next_from_block(self, session: Session, start_block: int) -> int:
        """
        First block of the next poll range.

        Args:
            session: Database session
            start_block: Configured start block, used when nothing was recorded

        Returns:
            The block after the highest recorded one, or start_block
        """
        highest = self.max_block(session)
        return start_block if highest is None else highest + 1

    def latest(self, session: Session) -> ProcessedBlock | None:
        return session.scalars(
            select(ProcessedBlock)
            .where(*self._scope())
            .order_by(ProcessedBlock.block_number.desc())
            .limit(1)
        ).first()

    def get_hash(self, session: Session, block_number: int) -> str | None:
        return session.scalar(
            select(ProcessedBlock.block_hash).where(
                *self._scope(), ProcessedBlock.block_number == block_number
            )
        )

    def mark_processed(self, session: Session, blocks: Iterable[tuple[int, str]]) -> int:
        """
        Record blocks as scanned with their canonical hashes.

        Existing rows for the same block number get their hash refreshed.

        Args:
            session: Database session (the caller owns the transaction)
            blocks: (block_number, block_hash) pairs

        Returns:
            Number of blocks recorded
        """
        pending = {number: block_hash.lower() for number, block_hash in blocks}
        if not pending:
            return 0

        now = utcnow()
        existing = session.scalars(
            select(ProcessedBlock).where(
                *self._scope(), ProcessedBlock.block_number.in_(list(pending))
            )
        ).all()
        for row in existing:
            row.block_hash = pending.pop(row.block_number)
            row.processed_at = now

        session.add_all(
            ProcessedBlock(
                chain_id=self.chain_id,
                contract_address=self.contract_address,
                block_number=number,
                block_hash=block_hash,
                processed_at=now,
            )
            for number, block_hash in sorted(pending.items())
        )
        session.flush()
        return len(existing) + len(pending)

    def rewind_from(self, session: Session, block_number: int) -> int:
        """Delete every ledger row at or above block_number. Returns rows removed."""
        result = session.execute(
            delete(ProcessedBlock).where(
                *self._scope(), ProcessedBlock.block_number >= block_number
            )
        )
        return result.rowcount or 0

    def last_processed_at(self, session: Session) -> datetime | None:
        """Wall-clock time of the most recent successful scan."""
        return session.scalar(select(func.max(ProcessedBlock.processed_at)).where(*self._scope()))
