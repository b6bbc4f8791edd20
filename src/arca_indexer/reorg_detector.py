"""
Reorg detection and rewind.

Compares a freshly observed block hash against the processed-range ledger.
On a mismatch the divergent block itself is taken as the fork point and every
event record and ledger row at or above it is deleted, so the next poll range
starts again from the fork point.

Only divergence at the observed block is detected. A deeper reorg whose true
fork point lies below the observed block leaves stale rows between the two.
"""

import logging

from sqlalchemy.orm import Session

from .storage.event_store import EventStore
from .storage.ledger import ProcessedRangeLedger

logger = logging.getLogger(__name__)


class ReorgDetector:
    """Single-block reorg check for one (chain, contract) scope."""

    def __init__(self, ledger: ProcessedRangeLedger, event_store: EventStore):
        self.ledger = ledger
        self.event_store = event_store
        self.reorgs_detected = 0

    def check(self, session: Session, block_number: int, observed_hash: str) -> int | None:
        """
        Check one block against the ledger and rewind on divergence.

        Both deletions run in the caller's session, so they commit or roll
        back together with the caller's transaction.

        Args:
            session: Database session (the caller owns the transaction)
            block_number: Block being observed
            observed_hash: Hash of that block as seen now

        Returns:
            The fork point if a rewind happened, otherwise None
        """
        stored_hash = self.ledger.get_hash(session, block_number)
        if stored_hash is None:
            return None
        if stored_hash.lower() == observed_hash.lower():
            return None

        fork_point = block_number
        events_removed = self.event_store.rewind_from(session, fork_point)
        blocks_removed = self.ledger.rewind_from(session, fork_point)
        self.reorgs_detected += 1

        logger.warning(
            f"Reorg detected at block {block_number}: stored {stored_hash}, observed {observed_hash}. "
            f"Rewound {events_removed} events and {blocks_removed} ledger blocks from {fork_point}"
        )
        return fork_point
