"""
Webhook notification client.

Events such as ``addon_created`` and ``order_status_changed`` are POSTed as
JSON to the configured webhook, where the hosted email/SMS functions pick them
up. Dispatch is fire-and-forget: delivery failures are logged and never reach
the caller. Events raised inside a unit of work wait for its commit and are
dropped if it rolls back.
"""

import asyncio
from typing import Any, Optional

import httpx
from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from orderdesk.core.config import get_settings
from orderdesk.core.logging import get_logger, get_request_id

logger = get_logger(__name__)


class NotificationClient:
    """
    Posts event payloads to the notification webhook.

    An unset webhook URL disables delivery entirely.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize notification client.

        Args:
            webhook_url: Target URL, defaults to ``APP_NOTIFICATION_WEBHOOK_URL``
            timeout_seconds: Request timeout, defaults to configuration
            transport: Optional httpx transport, used to stub delivery in tests
        """
        settings = get_settings()
        self.webhook_url = (
            webhook_url if webhook_url is not None else settings.notification_webhook_url
        )
        self.timeout_seconds = timeout_seconds or settings.notification_timeout_seconds
        self.transport = transport
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, event: str, **payload: Any) -> bool:
        """
        Deliver one event and wait for the response.

        Returns:
            True when the webhook accepted the event
        """
        if not self.enabled:
            logger.debug("Notifications disabled, event dropped", event_name=event)
            return False

        body = {"event": event, **payload}
        headers = {"X-Request-ID": get_request_id()}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self.transport,
            ) as client:
                response = await client.post(self.webhook_url, json=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Notification delivery failed",
                event_name=event,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("Notification delivered", event_name=event, status_code=response.status_code)
        return True

    def dispatch(self, event: str, **payload: Any) -> None:
        """Schedule delivery without waiting for it."""
        if not self.enabled:
            return

        task = asyncio.create_task(self.send(event, **payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def dispatch_on_commit(self, session: AsyncSession, event_name: str, **payload: Any) -> None:
        """
        Queue an event on the session and dispatch it once the session commits.

        Queued events are discarded when the session rolls back.
        """
        sync_session = session.sync_session
        queue = sync_session.info.get(_QUEUE_KEY)
        if queue is None:
            queue = sync_session.info[_QUEUE_KEY] = []
            sa_event.listen(sync_session, "after_commit", _flush_queue)
            sa_event.listen(sync_session, "after_rollback", _discard_queue)

        queue.append((self, event_name, payload))

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


_QUEUE_KEY = "pending_notifications"


def _flush_queue(sync_session: Session) -> None:
    queue = sync_session.info.get(_QUEUE_KEY)
    if not queue:
        return

    committed = list(queue)
    queue.clear()
    for client, event_name, payload in committed:
        client.dispatch(event_name, **payload)


def _discard_queue(sync_session: Session) -> None:
    queue = sync_session.info.get(_QUEUE_KEY)
    if queue:
        logger.debug("Discarding notifications of rolled back session", count=len(queue))
        queue.clear()


_client: Optional[NotificationClient] = None


def get_notification_client() -> NotificationClient:
    """Process-wide client built from configuration."""
    global _client
    if _client is None:
        _client = NotificationClient()
    return _client
