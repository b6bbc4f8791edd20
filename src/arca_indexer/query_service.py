"""
Read-side query surface over indexed events and the package projection.

Everything here reads the database, so any replica can serve it whether or not
it holds the poller lock.
"""

import logging
from datetime import datetime

from .models import EventPage, EventRecordView, PackageView
from .projection import PackageProjection
from .storage.db import Database
from .storage.event_store import EventStore
from .storage.ledger import ProcessedRangeLedger
from .storage.tables import EventRecord, PackageCache

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


class EventQueryService:
    """Queries for one (chain, contract) scope."""

    def __init__(self, database: Database, chain_id: int, contract_address: str):
        self.database = database
        self.chain_id = chain_id
        self.contract_address = contract_address
        self.event_store = EventStore(chain_id, contract_address)
        self.projection = PackageProjection(chain_id, contract_address)
        self.ledger = ProcessedRangeLedger(chain_id, contract_address)

    def events(self, package_key: str | None = None, page: int = 0, limit: int = 50) -> EventPage:
        """
        Page through event records ordered by (block_number, log_index).

        Args:
            package_key: Optional package filter
            page: Zero-based page number
            limit: Page size (1..MAX_PAGE_SIZE)

        Returns:
            EventPage; next_cursor is the next page number, or None on the last page

        Raises:
            ValueError: On a negative page or out-of-range limit
        """
        if page < 0:
            raise ValueError(f"page must be non-negative, got {page}")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")

        with self.database.session() as session:
            rows, total = self.event_store.page(session, package_key, offset=page * limit, limit=limit)
            items = [_event_view(row) for row in rows]

        next_cursor = str(page + 1) if (page + 1) * limit < total else None
        return EventPage(items=items, total=total, next_cursor=next_cursor)

    def package(self, package_key: str) -> PackageView | None:
        """Cached (advisory) view of a package, or None if never seen."""
        with self.database.session() as session:
            row = self.projection.get(session, package_key)
            if row is None:
                return None
            return _package_view(row)

    def last_sync_timestamp(self) -> datetime | None:
        """Time of the most recent successful scan, for staleness indicators."""
        with self.database.session() as session:
            return self.ledger.last_processed_at(session)


def _event_view(row: EventRecord) -> EventRecordView:
    return EventRecordView(
        id=row.id,
        chain_id=row.chain_id,
        contract_address=row.contract_address,
        package_key=row.package_key,
        event_type=row.event_type,
        emitting_address=row.emitting_address,
        block_number=row.block_number,
        block_hash=row.block_hash,
        tx_hash=row.tx_hash,
        log_index=row.log_index,
        block_timestamp=row.block_timestamp,
        data=dict(row.payload or {}),
    )


def _package_view(row: PackageCache) -> PackageView:
    return PackageView(
        chain_id=row.chain_id,
        contract_address=row.contract_address,
        package_key=row.package_key,
        owner_address=row.owner_address,
        beneficiary_address=row.beneficiary_address,
        manifest_uri=row.manifest_uri,
        cached_status=row.cached_status,
        pending_since=row.pending_since,
        released_at=row.released_at,
        last_check_in=row.last_check_in,
        paid_until=row.paid_until,
        last_indexed_block=row.last_indexed_block,
        updated_at=row.updated_at,
        guardians=[guardian.guardian_address for guardian in row.guardians],
    )
