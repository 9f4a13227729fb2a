"""
Tests for the Notification Dispatcher and push channels.

Covers:
  - Durable emit + newest-first feed
  - Idempotent read transitions (mark_read, mark_all_read)
  - emit_once deduplication
  - Live push delivery, unsubscribe and push failures
"""

from datetime import datetime, timedelta

import pytest

from core.errors import ValidationError
from notifications.channel import InMemoryPushChannel, PushChannel, channel_name
from notifications.dispatcher import NotificationDispatcher, serialize_notification, unread_count

USER = "auth0|feed-user"


class BrokenChannel(PushChannel):
    async def publish(self, user_id, payload):
        raise ConnectionError("redis down")

    def subscribe(self, user_id, callback):
        raise NotImplementedError


async def _emit_series(dispatcher, count=3):
    base = datetime(2026, 5, 1, 12, 0)
    created = []
    for i in range(count):
        n = await dispatcher.emit(USER, None, "system_alert", f"Alert {i}", f"Message {i}")
        n.created_at = base + timedelta(minutes=i)
        created.append(n)
    await dispatcher.db.commit()
    return created


@pytest.mark.asyncio
class TestNotificationFeed:
    async def test_emit_persists_and_lists_newest_first(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        await _emit_series(dispatcher)

        feed = await dispatcher.list(USER)
        assert [n.title for n in feed] == ["Alert 2", "Alert 1", "Alert 0"]
        assert unread_count(feed) == 3

    async def test_feed_is_per_user(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        await dispatcher.emit(USER, None, "system_alert", "Mine", "m")
        await dispatcher.emit("someone-else", None, "system_alert", "Theirs", "t")

        assert [n.title for n in await dispatcher.list(USER)] == ["Mine"]

    async def test_unknown_type_rejected(self, test_db):
        with pytest.raises(ValidationError):
            await NotificationDispatcher(test_db).emit(USER, None, "party_time", "t", "m")

    async def test_missing_user_rejected(self, test_db):
        with pytest.raises(ValidationError):
            await NotificationDispatcher(test_db).emit("", None, "system_alert", "t", "m")

    async def test_unread_only_filter(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        first, *_ = await _emit_series(dispatcher)
        await dispatcher.mark_read(first.notification_id)

        unread = await dispatcher.list(USER, unread_only=True)
        assert len(unread) == 2
        assert all(not n.is_read for n in unread)


@pytest.mark.asyncio
class TestReadState:
    async def test_mark_read_is_idempotent(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        n = await dispatcher.emit(USER, None, "system_alert", "t", "m")

        assert (await dispatcher.mark_read(n.notification_id, USER)).is_read is True
        assert (await dispatcher.mark_read(n.notification_id, USER)).is_read is True

    async def test_mark_read_other_users_notification(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        n = await dispatcher.emit(USER, None, "system_alert", "t", "m")
        assert await dispatcher.mark_read(n.notification_id, "intruder") is None

    async def test_mark_all_read_then_list_has_no_unread(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        await _emit_series(dispatcher)

        assert await dispatcher.mark_all_read(USER) == 3
        assert unread_count(await dispatcher.list(USER)) == 0

    async def test_mark_all_read_twice_is_noop(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        await _emit_series(dispatcher)

        await dispatcher.mark_all_read(USER)
        assert await dispatcher.mark_all_read(USER) == 0

    async def test_delete(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        n = await dispatcher.emit(USER, None, "system_alert", "t", "m")

        assert await dispatcher.delete(n.notification_id, USER) is True
        assert await dispatcher.delete(n.notification_id, USER) is False
        assert await dispatcher.list(USER) == []


@pytest.mark.asyncio
class TestEmitOnce:
    async def test_duplicate_suppressed_while_unread(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        first = await dispatcher.emit_once(USER, None, "quota_warning", "Near", "m", dedupe_key="t1:near_limit:2026-05")
        second = await dispatcher.emit_once(USER, None, "quota_warning", "Near", "m", dedupe_key="t1:near_limit:2026-05")

        assert first is not None
        assert second is None
        assert len(await dispatcher.list(USER)) == 1

    async def test_reemitted_after_read(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        first = await dispatcher.emit_once(USER, None, "quota_warning", "Near", "m", dedupe_key="k")
        await dispatcher.mark_read(first.notification_id)

        assert await dispatcher.emit_once(USER, None, "quota_warning", "Near", "m", dedupe_key="k") is not None

    async def test_different_key_not_suppressed(self, test_db):
        dispatcher = NotificationDispatcher(test_db)
        await dispatcher.emit_once(USER, None, "quota_warning", "Near", "m", dedupe_key="k1")
        assert await dispatcher.emit_once(USER, None, "quota_warning", "Over", "m", dedupe_key="k2") is not None


@pytest.mark.asyncio
class TestLivePush:
    async def test_subscriber_receives_payload(self, test_db):
        channel = InMemoryPushChannel()
        received = []
        channel.subscribe(USER, received.append)

        n = await NotificationDispatcher(test_db, channel).emit(
            USER, None, "processing_complete", "Done", "1 of 1 SKUs detected", {"detection_id": "d-1"}
        )

        assert len(received) == 1
        assert received[0] == serialize_notification(n)
        assert received[0]["metadata"] == {"detection_id": "d-1"}

    async def test_unsubscribed_listener_gets_nothing(self, test_db):
        channel = InMemoryPushChannel()
        received = []
        unsubscribe = channel.subscribe(USER, received.append)
        unsubscribe()

        await NotificationDispatcher(test_db, channel).emit(USER, None, "system_alert", "t", "m")
        assert received == []

    async def test_push_failure_keeps_notification(self, test_db):
        dispatcher = NotificationDispatcher(test_db, BrokenChannel())
        n = await dispatcher.emit(USER, None, "system_alert", "t", "m")

        assert n.notification_id is not None
        assert len(await dispatcher.list(USER)) == 1

    async def test_publish_without_listeners(self):
        assert await InMemoryPushChannel().publish(USER, {"x": 1}) == 0


def test_channel_name():
    assert channel_name("abc") == "notifications:abc"
