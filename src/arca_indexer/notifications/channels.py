"""
Notification channel adapters.

Each adapter delivers one event to one subscriber address and raises
DeliveryError on any failure so the retry policy can handle it uniformly.
"""

import json
import logging
import smtplib
from email.message import EmailMessage
from typing import Callable, Protocol

import httpx

from ..config import NotificationSettings
from ..models import IndexedEvent

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A single delivery attempt failed."""


class Channel(Protocol):
    def send(self, channel_value: str, event: IndexedEvent) -> None: ...


class EmailChannel:
    """Sends a plain-text email over SMTP."""

    def __init__(
        self,
        settings: NotificationSettings,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        self.settings = settings
        self._smtp_factory = smtp_factory

    @staticmethod
    def subject(event: IndexedEvent) -> str:
        return f"[Arca] {event.event_type.value} - Package {event.package_key[:10]}..."

    @staticmethod
    def body(event: IndexedEvent) -> str:
        lines = [
            f"Event: {event.event_type.value}",
            f"Package: {event.package_key}",
            f"Block: {event.block_number}",
            f"Transaction: {event.tx_hash}",
            "",
        ]
        lines.extend(f"{name}: {value}" for name, value in event.data.items())
        return "\n".join(lines)

    def build_message(self, recipient: str, event: IndexedEvent) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.smtp_from
        message["To"] = recipient
        message["Subject"] = self.subject(event)
        message.set_content(self.body(event))
        return message

    def send(self, channel_value: str, event: IndexedEvent) -> None:
        message = self.build_message(channel_value, event)
        try:
            with self._smtp_factory(
                self.settings.smtp_host,
                self.settings.smtp_port,
                timeout=self.settings.smtp_timeout,
            ) as smtp:
                if self.settings.smtp_starttls:
                    smtp.starttls()
                if self.settings.smtp_username and self.settings.smtp_password:
                    smtp.login(self.settings.smtp_username, self.settings.smtp_password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"Email delivery to {channel_value} failed: {e}") from e
        logger.debug(f"Email sent to {channel_value} for {event.event_type.value}")


class WebhookChannel:
    """POSTs the JSON envelope {packageKey, eventType, data} to a URL."""

    def __init__(self, timeout: float = 10.0, transport: httpx.BaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport

    def send(self, channel_value: str, event: IndexedEvent) -> None:
        try:
            with httpx.Client(transport=self._transport, timeout=self.timeout) as client:
                response = client.post(
                    channel_value,
                    content=json.dumps(event.to_envelope()),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Webhook POST to {channel_value} failed: {e}") from e

        if not response.is_success:
            raise DeliveryError(f"Webhook {channel_value} returned HTTP {response.status_code}")
        logger.debug(f"Webhook {channel_value} accepted {event.event_type.value}")


class PushChannel:
    """Push delivery placeholder; always fails so it goes through retry bookkeeping."""

    def send(self, channel_value: str, event: IndexedEvent) -> None:
        raise DeliveryError("Push delivery not implemented")
