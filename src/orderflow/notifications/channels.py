"""Delivery channels for notifications."""

import logging
from typing import Protocol, runtime_checkable

import httpx

from orderflow.notifications.messages import Notification

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationChannel(Protocol):
    name: str

    async def send(self, notification: Notification) -> None: ...


class LoggingChannel:
    """Writes notifications to the log. The default when no relay is configured."""

    name = "log"

    async def send(self, notification: Notification) -> None:
        logger.info(
            "Notification %s to %s: %s",
            notification.event_type,
            notification.audience,
            notification.subject,
            extra={
                "order_number": notification.order_number,
                "audience": notification.audience,
                "event_type": notification.event_type,
            },
        )


class RecordingChannel:
    """Keeps sent notifications in memory; can be told to fail."""

    def __init__(self, name: str = "recording", *, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> None:
        if self.fail:
            raise ConnectionError(f"{self.name} channel is down")
        self.sent.append(notification)

    def subjects(self) -> list[str]:
        return [n.subject for n in self.sent]


class WebhookChannel:
    """POSTs each notification as JSON to an email/SMS relay."""

    def __init__(
        self,
        url: str,
        *,
        name: str = "webhook",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self._url = url
        self._timeout = timeout
        self._client = client

    async def send(self, notification: Notification) -> None:
        payload = notification.model_dump(mode="json")
        if self._client is not None:
            resp = await self._client.post(self._url, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload)
        resp.raise_for_status()
