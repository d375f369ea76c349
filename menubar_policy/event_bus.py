"""Change event bus.

Multiplexes the signals that invalidate cached policy state into
independent, multi-consumer async streams, one per ChangeEventType.

Each subscription owns its own queue, so a slow consumer never blocks a
producer or another consumer. Streams are not restartable: a subscription only
sees events posted after it was created.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from .models.events import ChangeEvent, ChangeEventType

logger = logging.getLogger(__name__)

# Queue sentinel that ends a subscription
_CLOSED = object()


class EventSubscription:
    """Async iterator over events of a single kind.

    Example:
        async with bus.subscribe(ChangeEventType.APP_ACTIVATED) as events:
            async for event in events:
                ...
    """

    def __init__(self, bus: "ChangeEventBus", event_type: ChangeEventType) -> None:
        self.bus = bus
        self.event_type = event_type
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        """End the stream and release the registration on the bus."""
        if self._closed:
            return
        self._closed = True
        self.bus._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        """Number of events delivered but not yet consumed."""
        return self._queue.qsize()

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "EventSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class ChangeEventBus:
    """In-process publisher for the five change event streams."""

    def __init__(self) -> None:
        self._subscribers: Dict[ChangeEventType, List[EventSubscription]] = {
            event_type: [] for event_type in ChangeEventType
        }
        # Monotonic time of the last post made by a local actor, per kind
        self._last_local_post: Dict[ChangeEventType, float] = {}
        self._closed = False
        self.post_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, event_type: ChangeEventType) -> EventSubscription:
        """Create a subscription for future events of one kind.

        Raises:
            RuntimeError: If the bus has been closed
        """
        if self._closed:
            raise RuntimeError("Cannot subscribe to a closed event bus")

        subscription = EventSubscription(self, event_type)
        self._subscribers[event_type].append(subscription)
        logger.debug(
            f"Subscribed to {event_type.value} "
            f"({len(self._subscribers[event_type])} subscriber(s))"
        )
        return subscription

    def _unsubscribe(self, subscription: EventSubscription) -> None:
        subscribers = self._subscribers[subscription.event_type]
        if subscription in subscribers:
            subscribers.remove(subscription)
            logger.debug(f"Unsubscribed from {subscription.event_type.value}")

    def subscriber_count(self, event_type: ChangeEventType) -> int:
        return len(self._subscribers[event_type])

    def post(
        self,
        event_type: ChangeEventType,
        scope: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> Optional[ChangeEvent]:
        """Deliver an event to every current subscriber of its kind.

        Never blocks. Posts to a closed bus are dropped.

        Args:
            event_type: Kind of event
            scope: Application bundle identifier (required for app events)
            origin: Identity of the posting actor, None for external sources

        Returns:
            The delivered event, or None if the bus is closed
        """
        if self._closed:
            logger.warning(f"Dropped {event_type.value} posted after bus close")
            return None

        event = ChangeEvent(event_type=event_type, scope=scope, origin=origin)
        if origin is not None:
            self._last_local_post[event_type] = time.monotonic()

        subscribers = list(self._subscribers[event_type])
        for subscription in subscribers:
            subscription._deliver(event)

        self.post_count += 1
        logger.debug(
            f"Posted {event_type.value} (scope={scope}, origin={origin}) "
            f"to {len(subscribers)} subscriber(s)"
        )
        return event

    def posted_within(self, event_type: ChangeEventType, seconds: float) -> bool:
        """Check whether a local actor posted this kind in the last `seconds`."""
        last = self._last_local_post.get(event_type)
        return last is not None and (time.monotonic() - last) <= seconds

    def close(self) -> None:
        """End every subscription. Further posts are dropped."""
        if self._closed:
            return
        self._closed = True
        count = 0
        for subscribers in self._subscribers.values():
            for subscription in list(subscribers):
                subscription.close()
                count += 1
        logger.info(f"Event bus closed ({count} subscription(s) ended)")
