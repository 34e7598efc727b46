"""Notification dispatchers for transition events.

Two implementations of the NotificationDispatcher protocol:
    - LoggingNotificationDispatcher: writes each event to the structured log.
      The default, and what development and tests run with.
    - RedisNotificationDispatcher: publishes each event as JSON on a Redis
      pub/sub channel for the platform's notification senders to consume.

Neither is allowed to break a transition. Services queue events on the
session; the unit of work delivers them after commit and drops them on
rollback, logging dispatcher failures without raising.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from marketplace_exchange.infrastructure.redis_client import publish
from marketplace_exchange.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_exchange.config import Settings
    from marketplace_exchange.domain.notifier_protocol import (
        NotificationDispatcher,
        TransitionEvent,
    )

logger = get_logger(__name__)


class LoggingNotificationDispatcher:
    """Dispatcher that records every transition event in the log."""

    async def dispatch(self, event: TransitionEvent) -> None:
        logger.info(
            "notification.dispatched",
            event_type=event.event_type,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            recipients=list(event.recipients),
        )


class RedisNotificationDispatcher:
    """Dispatcher that publishes transition events on a Redis channel."""

    def __init__(self, channel: str, redis: aioredis.Redis | None = None) -> None:
        """Initialize the dispatcher.

        Args:
            channel: Pub/sub channel name.
            redis: Client to publish with. Defaults to the application
                singleton from infrastructure/redis_client.py.
        """
        self._channel = channel
        self._redis = redis

    @retry(
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _publish(self, message: str) -> int:
        return await publish(self._channel, message, client=self._redis)

    async def dispatch(self, event: TransitionEvent) -> None:
        message = json.dumps(event.to_dict(), default=str)
        receivers = await self._publish(message)
        logger.debug(
            "notification.published",
            channel=self._channel,
            event_type=event.event_type,
            entity_id=event.entity_id,
            receivers=receivers,
        )


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    """Create the dispatcher selected by ``notifications_backend``."""
    if settings.notifications_backend == "redis":
        return RedisNotificationDispatcher(channel=settings.notifications_channel)
    return LoggingNotificationDispatcher()


# ---------------------------------------------------------------------------
# Post-commit delivery
# ---------------------------------------------------------------------------

_PENDING_KEY = "pending_notifications"


def queue_notification(
    session: AsyncSession, notifier: NotificationDispatcher, event: TransitionEvent
) -> None:
    """Hold an event on the session until its unit of work commits."""
    session.info.setdefault(_PENDING_KEY, []).append((notifier, event))


def discard_notifications(session: AsyncSession) -> int:
    """Drop the events of a rolled-back unit of work. Returns how many were dropped."""
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.debug(
            "notification.discarded",
            event_types=[event.event_type for _, event in dropped],
        )
    return len(dropped)


async def deliver_notifications(session: AsyncSession) -> int:
    """Dispatch the events of a committed unit of work, in the order they were queued.

    Dispatcher failures are logged and never raised: the transition is
    already durable by the time subscribers are told about it.
    """
    pending = session.info.pop(_PENDING_KEY, [])
    delivered = 0
    for notifier, event in pending:
        try:
            await notifier.dispatch(event)
            delivered += 1
        except Exception as err:
            logger.warning(
                "notification.dispatch_failed",
                event_type=event.event_type,
                entity_id=event.entity_id,
                error=str(err),
                error_type=type(err).__name__,
            )
    return delivered
