"""
Observable — explicit subscribe/notify fan-out.

Holders keep the returned unsubscribe handle; there is no shared listener
registry at module level.
"""

from collections.abc import Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class Observable(Generic[T]):
    """Fan a value out to every currently-subscribed callback."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass  # already removed

        return unsubscribe

    def notify(self, value: T) -> int:
        """
        Deliver ``value`` to all subscribers. Returns the number of callbacks
        that received it. A failing subscriber is logged and does not stop
        delivery to the rest.
        """
        delivered = 0
        for callback in list(self._subscribers):
            try:
                callback(value)
                delivered += 1
            except Exception as exc:
                logger.warning("observable.subscriber_failed", error=str(exc))
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
