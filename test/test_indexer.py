"""Tests for the indexer service lifecycle."""

import asyncio
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from arca_indexer.config import ChainConfig, IndexerConfig, IndexerSettings
from arca_indexer.indexer import IndexerService
from arca_indexer.notifications.dispatcher import NotificationDispatcher
from arca_indexer.notifications.retry_policy import RetryPolicy
from arca_indexer.notifications.subscriptions import SubscriptionStore

from chain_fixtures import CHAIN_ID, CONTRACT, OWNER, PACKAGE_KEY, FakeRpc, activated_log


def make_config(chain_id: int | None = CHAIN_ID, **indexer) -> IndexerConfig:
    settings = {"confirmation_depth": 12, "start_block": 90, "polling_interval": 1, **indexer}
    return IndexerConfig(
        chain=ChainConfig(rpc_url="http://localhost:8545", contract_address=CONTRACT, chain_id=chain_id),
        database_url="sqlite://",
        indexer=IndexerSettings(**settings),
    )


@pytest.fixture
def make_service(database, rpc):
    services = []

    def _make(**indexer):
        service = IndexerService(make_config(**indexer), rpc=rpc, database=database)
        services.append(service)
        return service

    yield _make
    for service in services:
        service.dispatcher.shutdown(wait=False)


class TestIndexerService:
    """Tests for IndexerService."""

    def test_requires_chain_id(self, database, rpc):
        with pytest.raises(ValueError, match="Chain ID"):
            IndexerService(make_config(chain_id=None), rpc=rpc, database=database)

    @pytest.mark.asyncio
    async def test_run_once_indexes(self, make_service, rpc):
        service = make_service()
        rpc.logs = [activated_log(block_number=100)]

        assert await service.run_once() is True

        assert service.queries.events().total == 1
        assert service.queries.package(PACKAGE_KEY) is not None
        assert not service.lock.held

    @pytest.mark.asyncio
    async def test_disabled_indexer_stays_in_standby(self, make_service, rpc):
        service = make_service(enabled=False)

        task = asyncio.create_task(service.run())
        await asyncio.sleep(0.2)
        assert not service.is_leader
        service.stop()
        await asyncio.wait_for(task, timeout=3)

        assert rpc.get_logs_calls == []

    @pytest.mark.asyncio
    async def test_standby_when_lock_is_held_elsewhere(self, make_service, rpc):
        service = make_service()

        with patch.object(service.lock, "try_acquire", return_value=False):
            task = asyncio.create_task(service.run())
            await asyncio.sleep(0.2)
            service.stop()
            await asyncio.wait_for(task, timeout=3)

        assert not service.is_leader
        assert rpc.get_logs_calls == []

    @pytest.mark.asyncio
    async def test_run_once_without_lock(self, make_service, rpc):
        service = make_service(enabled=False)
        assert await service.run_once() is False
        assert rpc.get_logs_calls == []

    @pytest.mark.asyncio
    async def test_leader_polls_until_stopped(self, make_service, rpc):
        service = make_service()
        rpc.logs = [activated_log(block_number=100)]

        task = asyncio.create_task(service.run())
        await asyncio.sleep(0.5)
        assert service.is_leader
        service.stop()
        await asyncio.wait_for(task, timeout=5)

        assert rpc.get_logs_calls
        assert service.queries.events().total == 1
        assert not service.lock.held
        assert not service.poller.is_running


class SlowRpc(FakeRpc):
    """FakeRpc whose eth_getLogs takes a while, so a cycle can be caught in flight."""

    def __init__(self, delay: float, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.fetch_started = threading.Event()

    def get_logs(self, contract_address, from_block, to_block):
        self.fetch_started.set()
        time.sleep(self.delay)
        return super().get_logs(contract_address, from_block, to_block)


class TestGracefulShutdown:
    """Stopping the service while a poll cycle is running."""

    @pytest.mark.asyncio
    async def test_stop_mid_cycle_finishes_cycle_before_releasing(self, database):
        rpc = SlowRpc(delay=1.0, head=200)
        rpc.logs = [activated_log(block_number=100)]
        store = SubscriptionStore(database, CHAIN_ID, CONTRACT)
        store.add(PACKAGE_KEY, OWNER, "email", "owner@example.com", ["PackageActivated"])
        email = MagicMock()
        dispatcher = NotificationDispatcher(
            store, {"email": email}, RetryPolicy(max_attempts=1, sleep=lambda _: None)
        )
        service = IndexerService(make_config(), rpc=rpc, database=database, dispatcher=dispatcher)

        stored_at_release = []
        original_release = service.lock.release

        def release():
            stored_at_release.append(service.queries.events().total)
            original_release()

        task = asyncio.create_task(service.run())
        assert await asyncio.to_thread(rpc.fetch_started.wait, 5)
        await asyncio.sleep(0.3)

        with patch.object(service.lock, "release", side_effect=release):
            service.stop()
            await asyncio.wait_for(task, timeout=10)

        # The in-flight cycle completed and was notified before the lock went away
        assert stored_at_release == [1]
        email.send.assert_called_once()
        assert email.send.call_args.args[0] == "owner@example.com"
        assert dispatcher.get_stats()["delivered"] == 1
        assert not service.lock.held

    @pytest.mark.asyncio
    async def test_idle_poller_stops_without_waiting_for_interval(self, make_service):
        service = make_service(polling_interval=300)

        task = asyncio.create_task(service.run())
        await asyncio.sleep(0.3)
        service.stop()

        await asyncio.wait_for(task, timeout=5)
        assert not service.poller.is_running
