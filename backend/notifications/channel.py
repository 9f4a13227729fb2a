"""
Push channels for live notification delivery.

The dispatcher depends only on ``PushChannel``; the transport behind it is
interchangeable. Delivery is best effort: a failed publish never fails the
request that produced the notification, because the notification row is
already durable.

  - InMemoryPushChannel: per-user Observables, single process (tests, CLI)
  - RedisPushChannel:    Redis pub/sub on ``notifications:{user_id}``,
                         consumed by the /ws/notifications WebSocket
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import redis.asyncio as aioredis

from core.config import get_settings
from core.observable import Observable


def channel_name(user_id: str) -> str:
    return f"notifications:{user_id}"


class PushChannel(ABC):
    @abstractmethod
    async def publish(self, user_id: str, payload: dict[str, Any]) -> int:
        """Push ``payload`` to the user's live listeners. Returns listeners reached."""
        ...

    @abstractmethod
    def subscribe(self, user_id: str, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        """Listen for the user's payloads. Returns an unsubscribe function."""
        ...


class InMemoryPushChannel(PushChannel):
    def __init__(self) -> None:
        self._topics: dict[str, Observable[dict[str, Any]]] = {}

    async def publish(self, user_id: str, payload: dict[str, Any]) -> int:
        topic = self._topics.get(str(user_id))
        if topic is None:
            return 0
        return topic.notify(payload)

    def subscribe(self, user_id: str, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        topic = self._topics.setdefault(str(user_id), Observable())
        return topic.subscribe(callback)


class RedisPushChannel(PushChannel):
    """
    Publishes JSON envelopes to Redis. Subscriptions are held by the
    WebSocket endpoint through Redis directly, so ``subscribe`` is not
    offered in-process.
    """

    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or get_settings().redis_url

    async def publish(self, user_id: str, payload: dict[str, Any]) -> int:
        redis = aioredis.from_url(self.redis_url)
        try:
            message = json.dumps({"type": "notification", "payload": payload}, default=str)
            return await redis.publish(channel_name(user_id), message)
        finally:
            await redis.aclose()

    def subscribe(self, user_id: str, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        raise NotImplementedError("Subscribe through the /ws/notifications WebSocket")
