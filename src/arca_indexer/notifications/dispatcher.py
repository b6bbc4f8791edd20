"""
Notification dispatcher.

Receives each newly persisted event from the poller, resolves the active
subscriptions interested in it and delivers through the channel adapters.
Delivery runs on a dedicated thread pool so slow or failing channels never
stall indexing, and nothing raised during delivery reaches the poller.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from ..config import NotificationSettings
from ..models import DeliveryStatus, IndexedEvent
from ..storage.tables import NotificationTarget
from .channels import Channel, EmailChannel, PushChannel, WebhookChannel
from .retry_policy import RetryPolicy
from .subscriptions import SubscriptionStore

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fans indexed events out to subscribers with bounded retry."""

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        channels: dict[str, Channel],
        retry_policy: RetryPolicy | None = None,
        workers: int = 2,
    ):
        """
        Initialize the dispatcher.

        Args:
            subscriptions: Store used to resolve targets and record outcomes
            channels: Channel adapters by channel type
            retry_policy: Retry policy applied per subscription
            workers: Size of the dispatch thread pool
        """
        self.subscriptions = subscriptions
        self.channels = channels
        self.retry_policy = retry_policy or RetryPolicy()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")
        self.stats = {"published": 0, "delivered": 0, "failed": 0, "skipped": 0}
        self._stats_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, subscriptions: SubscriptionStore, settings: NotificationSettings
    ) -> "NotificationDispatcher":
        """Build a dispatcher with the standard email, webhook and push channels."""
        channels: dict[str, Channel] = {
            "email": EmailChannel(settings),
            "webhook": WebhookChannel(timeout=settings.webhook_timeout),
            "push": PushChannel(),
        }
        retry_policy = RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
        )
        return cls(subscriptions, channels, retry_policy, workers=settings.workers)

    def publish(self, event: IndexedEvent) -> Future | None:
        """
        Queue an event for delivery. Never raises.

        Returns:
            Future of the dispatch job, or None if it could not be queued
        """
        try:
            self._count("published")
            return self._executor.submit(self.dispatch, event)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Dropping notification for {event.event_type.value}: {e}")
            return None

    def dispatch(self, event: IndexedEvent) -> None:
        """Deliver one event to every matching subscription (runs on a worker)."""
        try:
            targets = self.subscriptions.find_active(event.package_key)
        except Exception as e:
            logger.warning(f"Could not resolve subscriptions for {event.package_key[:10]}...: {e}")
            return

        for target in targets:
            if event.event_type.value not in (target.event_types or []):
                continue
            try:
                self._deliver(target, event)
            except Exception as e:
                logger.warning(f"Dispatch to subscription {target.id} failed: {e}", exc_info=True)

    def _deliver(self, target: NotificationTarget, event: IndexedEvent) -> None:
        channel = self.channels.get(target.channel_type)
        if channel is None:
            logger.warning(f"Unknown channel type '{target.channel_type}' on subscription {target.id}")
            self._count("skipped")
            return

        description = f"{target.channel_type}:{target.channel_value} for {event.event_type.value}"
        delivered = self.retry_policy.execute(
            lambda: channel.send(target.channel_value, event),
            description=description,
        )

        status = DeliveryStatus.DELIVERED if delivered else DeliveryStatus.FAILED
        self._count(status.value)
        try:
            self.subscriptions.record_delivery(target.id, status)
        except Exception as e:
            logger.error(f"Failed to record {status.value} for subscription {target.id}: {e}")

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def get_stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self.stats)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events; optionally wait for queued deliveries."""
        self._executor.shutdown(wait=wait)
