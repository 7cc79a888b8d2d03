"""Customer and admin notifications for order events."""

from orderflow.notifications.channels import (
    LoggingChannel,
    NotificationChannel,
    RecordingChannel,
    WebhookChannel,
)
from orderflow.notifications.dispatcher import NotificationDispatcher
from orderflow.notifications.messages import Notification, render

__all__ = [
    "LoggingChannel",
    "Notification",
    "NotificationChannel",
    "NotificationDispatcher",
    "RecordingChannel",
    "WebhookChannel",
    "render",
]
