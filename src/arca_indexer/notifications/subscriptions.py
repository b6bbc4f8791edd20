"""
Notification subscription store.

Subscriptions live in the notification_targets table. The dispatcher only
reads active subscriptions and writes the two delivery-status fields.
"""

import logging
import re
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import select, update
from web3 import Web3

from ..models import DeliveryStatus, EventType
from ..storage.db import Database
from ..storage.tables import NotificationTarget, utcnow

logger = logging.getLogger(__name__)

VALID_CHANNEL_TYPES = frozenset({"email", "webhook", "push"})
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_PATTERN = re.compile(r"^https?://\S+$")


def validate_channel(channel_type: str, channel_value: str) -> None:
    """
    Check the channel type and apply a format guard on its value.

    Raises:
        ValueError: If the type is unknown or the value is malformed
    """
    if channel_type not in VALID_CHANNEL_TYPES:
        raise ValueError("channel_type must be 'email', 'webhook', or 'push'")
    if not channel_value or not channel_value.strip():
        raise ValueError("channel_value must not be empty")

    match channel_type:
        case "email":
            if not EMAIL_PATTERN.match(channel_value):
                raise ValueError("channel_value must be a valid email address for channel type 'email'")
        case "webhook":
            if not URL_PATTERN.match(channel_value):
                raise ValueError("channel_value must be a valid HTTP(S) URL for channel type 'webhook'")
        case "push":
            pass  # device token, only non-empty


class SubscriptionStore:
    """Subscriptions of one (chain, contract) scope."""

    def __init__(self, database: Database, chain_id: int, contract_address: str):
        self.database = database
        self.chain_id = chain_id
        self.contract_address = contract_address

    def add(
        self,
        package_key: str,
        subscriber_address: str,
        channel_type: str,
        channel_value: str,
        event_types: Iterable[EventType | str],
        active: bool = True,
    ) -> NotificationTarget:
        """
        Create a subscription.

        Args:
            package_key: Package to follow
            subscriber_address: Address of the subscriber
            channel_type: email, webhook or push
            channel_value: Email address, URL or device token
            event_types: Event types to be notified about
            active: Whether the subscription starts active

        Returns:
            The stored subscription

        Raises:
            ValueError: On an invalid channel, address or event type
        """
        validate_channel(channel_type, channel_value)
        if not Web3.is_address(subscriber_address):
            raise ValueError(f"Invalid subscriber address: {subscriber_address}")
        types = [EventType(value).value for value in event_types]

        target = NotificationTarget(
            chain_id=self.chain_id,
            contract_address=self.contract_address,
            package_key=package_key.lower(),
            subscriber_address=Web3.to_checksum_address(subscriber_address),
            channel_type=channel_type,
            channel_value=channel_value,
            active=active,
            event_types=types,
        )
        with self.database.transaction() as session:
            session.add(target)
        logger.info(f"Added {channel_type} subscription {target.id} for package {package_key[:10]}...")
        return target

    def find_active(self, package_key: str) -> list[NotificationTarget]:
        """Active subscriptions for a package, in creation order."""
        with self.database.session() as session:
            rows = session.scalars(
                select(NotificationTarget)
                .where(
                    NotificationTarget.chain_id == self.chain_id,
                    NotificationTarget.contract_address == self.contract_address,
                    NotificationTarget.package_key == package_key.lower(),
                    NotificationTarget.active.is_(True),
                )
                .order_by(NotificationTarget.id)
            ).all()
            return list(rows)

    def record_delivery(
        self,
        target_id: int,
        status: DeliveryStatus,
        attempted_at: datetime | None = None,
    ) -> None:
        """Write the delivery-status fields of one subscription."""
        with self.database.transaction() as session:
            session.execute(
                update(NotificationTarget)
                .where(NotificationTarget.id == target_id)
                .values(
                    last_delivery_status=status.value,
                    last_delivery_attempt=attempted_at or utcnow(),
                )
            )
