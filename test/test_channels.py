"""Tests for notification channel adapters and channel validation."""

import json
import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest

from arca_indexer.config import NotificationSettings
from arca_indexer.models import EventType, IndexedEvent
from arca_indexer.notifications.channels import (
    DeliveryError,
    EmailChannel,
    PushChannel,
    WebhookChannel,
)
from arca_indexer.notifications.subscriptions import validate_channel

from chain_fixtures import CHAIN_ID, CONTRACT, PACKAGE_KEY, TX_HASH


@pytest.fixture
def event():
    return IndexedEvent(
        chain_id=CHAIN_ID,
        contract_address=CONTRACT,
        package_key=PACKAGE_KEY,
        event_type=EventType.REVOKED,
        block_number=150,
        tx_hash=TX_HASH,
        log_index=0,
        block_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        data={"reason": "owner"},
    )


class TestWebhookChannel:
    """Tests for WebhookChannel."""

    def test_posts_json_envelope(self, event):
        captured = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(204)

        channel = WebhookChannel(transport=httpx.MockTransport(handler))
        channel.send("https://hooks.example/arca", event)

        assert len(captured) == 1
        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example/arca"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {
            "packageKey": PACKAGE_KEY,
            "eventType": "Revoked",
            "data": {"reason": "owner"},
        }

    @pytest.mark.parametrize("status", [301, 400, 404, 500, 503])
    def test_non_2xx_is_failure(self, event, status):
        channel = WebhookChannel(transport=httpx.MockTransport(lambda request: httpx.Response(status)))
        with pytest.raises(DeliveryError, match=f"HTTP {status}"):
            channel.send("https://hooks.example/arca", event)

    def test_transport_error_is_failure(self, event):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        channel = WebhookChannel(transport=httpx.MockTransport(handler))
        with pytest.raises(DeliveryError, match="connection refused"):
            channel.send("https://hooks.example/arca", event)


class TestEmailChannel:
    """Tests for EmailChannel."""

    @pytest.fixture
    def smtp(self):
        factory = MagicMock()
        client = factory.return_value.__enter__.return_value
        return factory, client

    def test_subject(self, event):
        assert EmailChannel.subject(event) == "[Arca] Revoked - Package 0xaaaaaaaa..."

    def test_sends_with_starttls_and_login(self, event, smtp):
        factory, client = smtp
        settings = NotificationSettings(
            smtp_host="smtp.example",
            smtp_port=2525,
            smtp_username="arca",
            smtp_password="secret",
            smtp_timeout=5,
        )

        EmailChannel(settings, smtp_factory=factory).send("owner@example.com", event)

        factory.assert_called_once_with("smtp.example", 2525, timeout=5)
        client.starttls.assert_called_once()
        client.login.assert_called_once_with("arca", "secret")
        message = client.send_message.call_args.args[0]
        assert message["To"] == "owner@example.com"
        assert message["Subject"] == "[Arca] Revoked - Package 0xaaaaaaaa..."
        assert PACKAGE_KEY in message.get_content()

    def test_no_login_without_credentials(self, event, smtp):
        factory, client = smtp
        settings = NotificationSettings(smtp_starttls=False)

        EmailChannel(settings, smtp_factory=factory).send("owner@example.com", event)

        client.starttls.assert_not_called()
        client.login.assert_not_called()
        client.send_message.assert_called_once()

    def test_smtp_error_is_failure(self, event, smtp):
        factory, client = smtp
        client.send_message.side_effect = smtplib.SMTPException("relay denied")

        with pytest.raises(DeliveryError, match="relay denied"):
            EmailChannel(NotificationSettings(), smtp_factory=factory).send("owner@example.com", event)

    def test_connection_error_is_failure(self, event):
        factory = MagicMock(side_effect=ConnectionRefusedError("refused"))
        with pytest.raises(DeliveryError):
            EmailChannel(NotificationSettings(), smtp_factory=factory).send("owner@example.com", event)


class TestPushChannel:
    """Tests for PushChannel."""

    def test_always_fails(self, event):
        with pytest.raises(DeliveryError, match="not implemented"):
            PushChannel().send("device-token", event)


class TestValidateChannel:
    """Tests for validate_channel."""

    @pytest.mark.parametrize("channel_type,channel_value", [
        ("email", "owner@example.com"),
        ("webhook", "https://hooks.example/arca"),
        ("webhook", "http://localhost:8080/hook"),
        ("push", "device-token-123"),
    ])
    def test_valid(self, channel_type, channel_value):
        validate_channel(channel_type, channel_value)

    @pytest.mark.parametrize("channel_type,channel_value,message", [
        ("sms", "+15550100", "channel_type must be"),
        ("email", "", "must not be empty"),
        ("push", "   ", "must not be empty"),
        ("email", "not-an-email", "valid email address"),
        ("email", "a b@example.com", "valid email address"),
        ("webhook", "ftp://hooks.example", "valid HTTP"),
        ("webhook", "https://bad url", "valid HTTP"),
    ])
    def test_invalid(self, channel_type, channel_value, message):
        with pytest.raises(ValueError, match=message):
            validate_channel(channel_type, channel_value)
