"""
Arca indexer service.

Wires the poller, notification dispatcher, query service and poller lock
together and manages their lifecycle.
"""

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from .chain_poller import ChainPoller
from .config import IndexerConfig
from .notifications.dispatcher import NotificationDispatcher
from .notifications.subscriptions import SubscriptionStore
from .query_service import EventQueryService
from .storage.db import Database
from .storage.lock import AdvisoryLock
from .utils.rpc_client import ChainRpcClient

logger = logging.getLogger(__name__)


class IndexerService:
    """
    Main service that runs the chain poller and the notification dispatcher.

    Only the replica holding the advisory lock polls. A replica that does not
    get the lock (or runs with the indexer disabled) stays up in standby and
    can still serve queries.
    """

    STATUS_LOG_INTERVAL = 60  # seconds
    SHUTDOWN_TIMEOUT = 120  # seconds to let an in-flight poll cycle finish

    def __init__(
        self,
        config: IndexerConfig,
        rpc: ChainRpcClient | None = None,
        database: Database | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        """
        Initialize the service.

        Args:
            config: Indexer configuration with chain_id resolved
            rpc: Chain RPC client (built from config if omitted)
            database: Database (built from config if omitted)
            dispatcher: Notification dispatcher (built from config if omitted)

        Raises:
            ValueError: If config has no chain_id
        """
        if config.chain_id is None:
            raise ValueError("Chain ID must be resolved before starting the indexer")

        self.config = config
        self.running = False
        self.is_leader = False

        self.rpc = rpc or ChainRpcClient(
            config.chain.rpc_url, request_timeout=config.indexer.request_timeout
        )
        self.database = database or Database(config.database_url)

        self.subscriptions = SubscriptionStore(self.database, config.chain_id, config.contract_address)
        self.dispatcher = dispatcher or NotificationDispatcher.from_settings(
            self.subscriptions, config.notifications
        )
        self.poller = ChainPoller(
            database=self.database,
            rpc=self.rpc,
            chain_id=config.chain_id,
            contract_address=config.contract_address,
            settings=config.indexer,
            on_event=self.dispatcher.publish,
        )
        self.queries = EventQueryService(self.database, config.chain_id, config.contract_address)
        self.lock = AdvisoryLock.for_contract(
            self.database.engine, config.contract_address, config.indexer.lock_id
        )

        # Async coordination
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_env(cls) -> "IndexerService":
        """
        Create an IndexerService from environment variables.

        The chain ID is fetched from the RPC and checked against ARCA_CHAIN_ID
        when that is set.

        Returns:
            Configured IndexerService instance

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        config = IndexerConfig.from_env()
        rpc = ChainRpcClient(config.chain.rpc_url, request_timeout=config.indexer.request_timeout)
        config = config.with_chain_id(rpc.chain_id())
        config.log_config()
        return cls(config, rpc=rpc)

    def _become_leader(self) -> bool:
        if not self.config.indexer.enabled:
            logger.info("Indexer disabled by configuration; running in standby")
            return False
        try:
            acquired = self.lock.try_acquire()
        except SQLAlchemyError as e:
            logger.error(f"Could not acquire poller lock: {e}", exc_info=True)
            return False
        if not acquired:
            logger.warning("Another replica holds the poller lock; running in standby")
        return acquired

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            status = self.poller.get_status()
            notify = self.dispatcher.get_stats()
            logger.info(
                f"Status: last range {status['last_range']}, "
                f"{status['events_stored']} events stored, "
                f"{status['failed_cycles']} failed cycles, "
                f"{notify['delivered']} delivered / {notify['failed']} failed notifications"
            )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """
        Stop the poller, cancel tasks and release resources.

        The in-flight cycle runs in a worker thread that cancellation cannot
        interrupt, so the poller task is awaited first. Queued notifications
        are drained before the lock is released.
        """
        await self.poller.stop()

        cycle_finished = True
        poller_task = tasks.get("poller")
        if poller_task is not None and not poller_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(poller_task), timeout=self.SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                cycle_finished = False
                logger.error(
                    f"Poll cycle still running after {self.SHUTDOWN_TIMEOUT}s; "
                    f"keeping the poller lock until the process exits"
                )
            except Exception as e:
                logger.error(f"poller task failed during shutdown: {e}", exc_info=True)

        for task in tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await asyncio.to_thread(self.dispatcher.shutdown, True)
        if cycle_finished:
            self.lock.release()
        self.is_leader = False

    async def _wait_for_shutdown(self) -> None:
        await self.shutdown_event.wait()

    async def run(self) -> None:
        """Main loop: poll as leader, or idle in standby until stopped."""
        self.running = True
        logger.info("Arca indexer starting...")
        await asyncio.to_thread(self.database.init_db)

        self.is_leader = await asyncio.to_thread(self._become_leader)
        if not self.is_leader:
            try:
                await self._wait_for_shutdown()
            finally:
                self.dispatcher.shutdown(wait=False)
                logger.info("Arca indexer (standby) stopped")
            return

        tasks: dict[str, asyncio.Task] = {}
        try:
            tasks = {
                "poller": asyncio.create_task(self.poller.start_polling()),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }
            logger.info("Poller started, waiting for events...")

            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            await self._cleanup_tasks(tasks)
            logger.info("Arca indexer stopped")

    async def run_once(self) -> bool:
        """
        Run a single poll cycle and wait for its notifications to be delivered.

        Returns:
            True if this replica held the lock and the cycle completed
        """
        await asyncio.to_thread(self.database.init_db)
        if not await asyncio.to_thread(self._become_leader):
            self.dispatcher.shutdown(wait=False)
            return False
        try:
            return await self.poller.poll_once()
        finally:
            await asyncio.to_thread(self.dispatcher.shutdown, True)
            self.lock.release()

    def stop(self) -> None:
        """Stop the indexer service."""
        self.running = False
        self.shutdown_event.set()
