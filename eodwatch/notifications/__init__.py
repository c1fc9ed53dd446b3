"""Notification channel abstraction and message rendering."""

from eodwatch.notifications.channels import DeliveryError, NotificationChannel
from eodwatch.notifications.render import RenderedMessage
from eodwatch.notifications.slack_channel import SlackChannel

__all__ = [
    "DeliveryError",
    "NotificationChannel",
    "RenderedMessage",
    "SlackChannel",
]
