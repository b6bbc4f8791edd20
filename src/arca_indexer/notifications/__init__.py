"""Notification delivery: subscriptions, channels, retry and dispatch."""

from .channels import DeliveryError, EmailChannel, PushChannel, WebhookChannel
from .dispatcher import NotificationDispatcher
from .retry_policy import RetryPolicy
from .subscriptions import SubscriptionStore, validate_channel

__all__ = [
    "DeliveryError",
    "EmailChannel",
    "NotificationDispatcher",
    "PushChannel",
    "RetryPolicy",
    "SubscriptionStore",
    "WebhookChannel",
    "validate_channel",
]
