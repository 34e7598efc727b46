"""Tests for the notification dispatchers, post-commit delivery and the Redis channel."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from tenacity import wait_none

from marketplace_exchange.config import Settings
from marketplace_exchange.domain.notifier_protocol import NotificationDispatcher, TransitionEvent
from marketplace_exchange.infrastructure.notifications import (
    LoggingNotificationDispatcher,
    RedisNotificationDispatcher,
    build_dispatcher,
    deliver_notifications,
    discard_notifications,
    queue_notification,
)
from marketplace_exchange.infrastructure.redis_client import channel_status, publish


class _RecordingRedis:
    """Stands in for redis.asyncio.Redis.publish, failing the first N calls."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.failures:
            self.failures -= 1
            raise RedisConnectionError("connection reset")
        self.published.append((channel, message))
        return 1


class _Collector:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.seen: list[str] = []

    async def dispatch(self, event: TransitionEvent) -> None:
        if self.fail:
            raise RuntimeError("subscriber down")
        self.seen.append(event.event_type)


def _event(event_type: str = "OFFER_ACCEPTED") -> TransitionEvent:
    return TransitionEvent(
        event_type=event_type,
        entity_type="offer",
        entity_id="abc",
        recipients=("buyer-1", "seller-1"),
        payload={"amount": "90.00"},
    )


class TestRedisDispatcher:
    @pytest.mark.asyncio
    async def test_publishes_json_event(self) -> None:
        redis = _RecordingRedis()
        dispatcher = RedisNotificationDispatcher(channel="exchange:test", redis=redis)

        await dispatcher.dispatch(_event())

        channel, message = redis.published[0]
        assert channel == "exchange:test"
        body = json.loads(message)
        assert body["event_type"] == "OFFER_ACCEPTED"
        assert body["recipients"] == ["buyer-1", "seller-1"]
        assert body["payload"] == {"amount": "90.00"}

    @pytest.mark.asyncio
    async def test_retries_transient_connection_errors(self) -> None:
        redis = _RecordingRedis(failures=2)
        dispatcher = RedisNotificationDispatcher(channel="exchange:test", redis=redis)
        publish = RedisNotificationDispatcher._publish.retry_with(wait=wait_none())

        assert await publish(dispatcher, "hello") == 1
        assert redis.published == [("exchange:test", "hello")]

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self) -> None:
        redis = _RecordingRedis(failures=5)
        dispatcher = RedisNotificationDispatcher(channel="exchange:test", redis=redis)
        publish = RedisNotificationDispatcher._publish.retry_with(wait=wait_none())

        with pytest.raises(RedisConnectionError):
            await publish(dispatcher, "hello")
        assert redis.failures == 2


class TestBuildDispatcher:
    def test_logging_is_default(self) -> None:
        dispatcher = build_dispatcher(Settings(_env_file=None))
        assert isinstance(dispatcher, LoggingNotificationDispatcher)
        assert isinstance(dispatcher, NotificationDispatcher)

    def test_redis_backend(self) -> None:
        settings = Settings(_env_file=None, notifications_backend="redis")
        assert isinstance(build_dispatcher(settings), RedisNotificationDispatcher)


class TestPendingNotifications:
    @pytest.mark.asyncio
    async def test_delivered_in_queue_order(self) -> None:
        session = SimpleNamespace(info={})
        collector = _Collector()
        queue_notification(session, collector, _event("OFFER_ACCEPTED"))
        queue_notification(session, collector, _event("TRANSACTION_CREATED"))

        assert collector.seen == []
        assert await deliver_notifications(session) == 2
        assert collector.seen == ["OFFER_ACCEPTED", "TRANSACTION_CREATED"]
        assert await deliver_notifications(session) == 0

    @pytest.mark.asyncio
    async def test_discarded_events_are_never_sent(self) -> None:
        session = SimpleNamespace(info={})
        collector = _Collector()
        queue_notification(session, collector, _event())

        assert discard_notifications(session) == 1
        assert await deliver_notifications(session) == 0
        assert collector.seen == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_the_rest(self) -> None:
        session = SimpleNamespace(info={})
        broken, healthy = _Collector(fail=True), _Collector()
        queue_notification(session, broken, _event("OFFER_ACCEPTED"))
        queue_notification(session, healthy, _event("OFFER_REJECTED"))

        assert await deliver_notifications(session) == 1
        assert healthy.seen == ["OFFER_REJECTED"]


class TestRedisChannel:
    @pytest.mark.asyncio
    async def test_disabled_with_logging_backend(self) -> None:
        assert await channel_status(Settings(_env_file=None)) == "disabled"

    @pytest.mark.asyncio
    async def test_unhealthy_when_not_connected(self) -> None:
        settings = Settings(_env_file=None, notifications_backend="redis")
        assert (await channel_status(settings)).startswith("unhealthy")

    @pytest.mark.asyncio
    async def test_publish_uses_given_client(self) -> None:
        redis = _RecordingRedis()
        assert await publish("exchange:test", "hello", client=redis) == 1
        assert redis.published == [("exchange:test", "hello")]
