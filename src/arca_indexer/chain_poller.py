"""
Chain poller.

Scheduled loop that indexes one contiguous range of confirmed blocks per
cycle. Each log is decoded, checked for a reorg, stored at most once, applied
to the package projection and then published. The ledger only advances after
the whole batch went through, so a failed cycle is retried from the same block.
"""

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError

from .config import IndexerSettings
from .event_decoder import EventDecodeError, UnknownEventError, decode_log
from .models import DecodedEvent, IndexedEvent
from .projection import PackageProjection
from .reorg_detector import ReorgDetector
from .storage.db import Database
from .storage.event_store import EventStore
from .storage.ledger import ProcessedRangeLedger
from .storage.tables import utcnow
from .utils.rpc_client import ChainRpcClient

logger = logging.getLogger(__name__)


class ReorgRewind(Exception):
    """Internal signal: a rewind happened and the current batch must stop."""

    def __init__(self, fork_point: int):
        super().__init__(f"rewound to block {fork_point}")
        self.fork_point = fork_point


class ChainPoller:
    """Indexes policy contract events for one (chain, contract)."""

    def __init__(
        self,
        database: Database,
        rpc: ChainRpcClient,
        chain_id: int,
        contract_address: str,
        settings: IndexerSettings,
        on_event: Callable[[IndexedEvent], Any] | None = None,
    ):
        """
        Initialize the poller.

        Args:
            database: Database holding the ledger, events and projection
            rpc: Chain RPC client
            chain_id: Chain ID of the monitored chain
            contract_address: Checksummed policy contract address
            settings: Poller settings (depth, start block, interval, cap)
            on_event: Publish hook, called once per newly persisted event
        """
        self.database = database
        self.rpc = rpc
        self.chain_id = chain_id
        self.contract_address = contract_address
        self.settings = settings
        self.on_event = on_event

        self.ledger = ProcessedRangeLedger(chain_id, contract_address)
        self.event_store = EventStore(chain_id, contract_address)
        self.projection = PackageProjection(chain_id, contract_address)
        self.reorg_detector = ReorgDetector(self.ledger, self.event_store)

        self.is_running = False
        self._stop_event = asyncio.Event()
        self.last_sync_at: datetime | None = None
        self.last_range: tuple[int, int] | None = None
        self.stats = {
            "cycles": 0,
            "failed_cycles": 0,
            "events_stored": 0,
            "duplicates": 0,
            "unknown": 0,
            "decode_errors": 0,
        }

    def next_range(self, head: int) -> tuple[int, int] | None:
        """
        Compute the block range of the next cycle.

        Args:
            head: Current chain head

        Returns:
            Inclusive (from_block, to_block), or None when nothing is confirmed yet
        """
        confirmed_head = head - self.settings.confirmation_depth
        if confirmed_head < 0:
            return None

        with self.database.session() as session:
            from_block = self.ledger.next_from_block(session, self.settings.start_block)
        if from_block > confirmed_head:
            return None

        to_block = confirmed_head
        if self.settings.max_blocks_per_cycle:
            to_block = min(to_block, from_block + self.settings.max_blocks_per_cycle - 1)
        return from_block, to_block

    def run_cycle(self) -> int:
        """
        Run one poll cycle (blocking).

        RPC and database errors propagate to the caller; the ledger is left
        untouched so the next cycle retries the same range.

        Returns:
            Number of newly persisted events
        """
        self.rpc.clear_cache()
        head = self.rpc.current_block_height()

        fork_point = self._check_tip()
        if fork_point is not None:
            logger.info(f"Resuming from fork point {fork_point}")

        block_range = self.next_range(head)
        if block_range is None:
            logger.debug(f"No new confirmed blocks (head {head})")
            self.stats["cycles"] += 1
            self.last_sync_at = utcnow()
            return 0

        from_block, to_block = block_range
        logs = self.rpc.get_logs(self.contract_address, from_block, to_block)
        ordered = sorted(logs, key=lambda log: (int(log["blockNumber"]), int(log["logIndex"])))
        if ordered:
            logger.info(f"Processing {len(ordered)} logs in blocks {from_block}-{to_block}")

        persisted = 0
        try:
            for log in ordered:
                if self.process_log(log):
                    persisted += 1
        except ReorgRewind as rewind:
            logger.warning(
                f"Batch {from_block}-{to_block} stopped by reorg; "
                f"next cycle resumes from {rewind.fork_point}"
            )
            self.stats["cycles"] += 1
            return persisted

        blocks = [(number, self.rpc.get_block_hash(number)) for number in range(from_block, to_block + 1)]
        with self.database.transaction() as session:
            self.ledger.mark_processed(session, blocks)

        self.last_range = (from_block, to_block)
        self.last_sync_at = utcnow()
        self.stats["cycles"] += 1
        logger.info(f"Indexed blocks {from_block}-{to_block}: {persisted} new events")
        return persisted

    def _check_tip(self) -> int | None:
        """Re-observe the newest ledger block and rewind if its hash changed."""
        with self.database.session() as session:
            latest = self.ledger.latest(session)
            if latest is None:
                return None
            block_number = latest.block_number

        observed_hash = self.rpc.get_block_hash(block_number)
        with self.database.transaction() as session:
            return self.reorg_detector.check(session, block_number, observed_hash)

    def process_log(self, log: Mapping[str, Any]) -> bool:
        """
        Run one raw log through decode, reorg check, store, projection and publish.

        Decode failures and unknown events are logged and skipped. Database and
        RPC errors propagate and abort the cycle.

        Returns:
            True if the log produced a new event record
        """
        try:
            event = decode_log(log)
        except UnknownEventError as e:
            self.stats["unknown"] += 1
            logger.debug(f"Skipping log {log.get('logIndex')} in block {log.get('blockNumber')}: {e}")
            return False
        except EventDecodeError as e:
            self.stats["decode_errors"] += 1
            logger.warning(f"Skipping undecodable log {log.get('logIndex')} in block {log.get('blockNumber')}: {e}")
            return False

        with self.database.transaction() as session:
            fork_point = self.reorg_detector.check(session, event.block_number, event.block_hash)
        if fork_point is not None:
            raise ReorgRewind(fork_point)

        block_timestamp = self.rpc.get_block_timestamp(event.block_number)

        try:
            with self.database.transaction() as session:
                if self.event_store.exists(session, event.tx_hash, event.log_index):
                    self.stats["duplicates"] += 1
                    logger.debug(f"Already stored {event}, skipping")
                    return False
                self.event_store.append(session, event, block_timestamp)
                self.projection.apply(session, event)
        except IntegrityError:
            # Only a lost insert race on (tx_hash, log_index) counts as a duplicate
            with self.database.session() as session:
                if not self.event_store.exists(session, event.tx_hash, event.log_index):
                    raise
            self.stats["duplicates"] += 1
            logger.info(f"Already stored {event} (unique key), skipping")
            return False

        self.stats["events_stored"] += 1
        logger.info(f"Stored {event}")
        self._publish(event, block_timestamp)
        return True

    def _publish(self, event: DecodedEvent, block_timestamp: datetime) -> None:
        if self.on_event is None:
            return
        indexed = IndexedEvent(
            chain_id=self.chain_id,
            contract_address=self.contract_address,
            package_key=event.package_key,
            event_type=event.event_type,
            block_number=event.block_number,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            block_timestamp=block_timestamp,
            data=dict(event.data),
        )
        try:
            self.on_event(indexed)
        except Exception as e:
            logger.error(f"Publish hook failed for {event}: {e}", exc_info=True)

    async def poll_once(self) -> bool:
        """
        Run a single cycle off the event loop, containing any failure.

        Returns:
            True if the cycle completed
        """
        try:
            await asyncio.to_thread(self.run_cycle)
            return True
        except Exception as e:
            self.stats["failed_cycles"] += 1
            logger.error(f"Poll cycle failed: {e}", exc_info=True)
            return False

    async def start_polling(self, interval: int | None = None) -> None:
        """
        Poll with a fixed delay between the end of one cycle and the next.

        Args:
            interval: Delay in seconds (defaults to settings.polling_interval)
        """
        if self.is_running:
            logger.warning("Polling already running")
            return

        interval = interval or self.settings.polling_interval
        self.is_running = True
        self._stop_event.clear()
        logger.info(
            f"Starting poller for {self.contract_address} on chain {self.chain_id} "
            f"every {interval} seconds"
        )

        while self.is_running:
            try:
                await self.poll_once()
                if not self.is_running:
                    break
                # Sleep until the next cycle, waking early on stop()
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                logger.info("Polling cancelled")
                break
        self.is_running = False

    async def stop(self) -> None:
        """Stop the polling loop after the current cycle."""
        logger.info(f"Stopping poller for {self.contract_address}")
        self.is_running = False
        self._stop_event.set()

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the poller.

        Returns:
            Dictionary with status information
        """
        return {
            "is_running": self.is_running,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "last_range": self.last_range,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "reorgs_detected": self.reorg_detector.reorgs_detected,
            **self.stats,
        }
