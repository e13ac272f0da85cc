"""Fan-out of committed scheduling changes to notification subscribers."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]


class EventBus:
    """Routes each domain event to the subscribers registered for its class.

    Commands publish only once their transaction is committed, so nothing a
    subscriber does can undo or fail the booking. An exception from one
    subscriber is logged and delivery continues with the next.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: type, subscriber: Subscriber) -> None:
        self._subscribers[event_type].append(subscriber)

    def publish(self, event: Any) -> None:
        event_name = type(event).__name__
        for subscriber in self._subscribers.get(type(event), []):
            try:
                subscriber(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s", subscriber, event_name)
