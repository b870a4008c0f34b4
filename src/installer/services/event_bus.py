"""Event bus with per-subscriber buffers.

Emission appends to the in-memory log and hands the event to every live
subscription while holding the events lock, so all subscribers see the same
total order. Handing off never waits: each subscription buffers into its own
bounded queue and drops its oldest event when a slow consumer falls behind.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from shared.models import Event
from shared.observability import get_logger

logger = get_logger(__name__)

_CLOSED = object()


class Subscription:
    """Delivery sink for installer events."""

    def __init__(self, buffer_size: int = 1000):
        self.buffer_size = max(1, buffer_size)
        self._queue: asyncio.Queue[Event | object] = asyncio.Queue()
        self._buffered = 0
        self._closed = False
        self._error: BaseException | None = None
        self._dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> BaseException | None:
        """Error the subscription was closed with, if any."""
        return self._error

    @property
    def dropped(self) -> int:
        """Number of events discarded because the buffer was full."""
        return self._dropped

    def pending(self) -> int:
        """Number of buffered events not yet consumed."""
        return self._buffered

    def deliver(self, event: Event) -> bool:
        """Buffer ``event`` without waiting.

        Returns:
            False if the subscription is closed or an older event was dropped
        """
        if self._closed:
            return False
        dropped = False
        if self._buffered >= self.buffer_size:
            self._queue.get_nowait()
            self._buffered -= 1
            self._dropped += 1
            dropped = True
            logger.debug("Event dropped (oldest policy)", dropped_total=self._dropped)
        self._queue.put_nowait(event)
        self._buffered += 1
        return not dropped

    def close(self, error: BaseException | None = None) -> None:
        """Stop delivery. Idempotent; buffered events stay readable."""
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Event | None:
        """Wait for the next event; ``None`` once closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # keep the marker so later readers also see end of stream
            self._queue.put_nowait(_CLOSED)
            return None
        self._buffered -= 1
        return item

    def get_nowait(self) -> Event | None:
        """Return the next buffered event or ``None`` if there is none."""
        # events always sit ahead of the close marker
        if self._buffered == 0:
            return None
        self._buffered -= 1
        return self._queue.get_nowait()

    def drain(self) -> list[Event]:
        """Consume and return every buffered event."""
        events = []
        while (event := self.get_nowait()) is not None:
            events.append(event)
        return events

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        while (event := await self.get()) is not None:
            yield event


class EventBus:
    """Append-only event log plus fan-out to subscriptions."""

    def __init__(self, default_buffer_size: int = 1000):
        self.default_buffer_size = default_buffer_size
        self._events: list[Event] = []
        self._subscriptions: tuple[Subscription, ...] = ()
        self._events_lock = asyncio.Lock()
        self._subscriptions_lock = asyncio.Lock()

    async def emit(self, event: Event) -> None:
        """Append ``event`` to the log and deliver it to every subscriber."""
        async with self._events_lock:
            self._events.append(event)
            # copy-on-write tuple, read without the subscriptions lock
            for subscription in self._subscriptions:
                subscription.deliver(event)
        logger.debug(
            "Event emitted",
            event_type=event.type,
            cluster_id=event.cluster_id,
            subscribers=len(self._subscriptions),
        )

    async def subscribe(self, buffer_size: int | None = None) -> Subscription:
        """Register a new sink for events emitted from now on."""
        subscription = Subscription(buffer_size or self.default_buffer_size)
        async with self._subscriptions_lock:
            self._subscriptions = self._subscriptions + (subscription,)
        logger.info("Subscriber added", total_subscribers=len(self._subscriptions))
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Retire ``subscription``. Other subscribers and the log are untouched."""
        async with self._subscriptions_lock:
            self._subscriptions = tuple(s for s in self._subscriptions if s is not subscription)
        subscription.close()
        logger.info("Subscriber removed", total_subscribers=len(self._subscriptions))

    async def history(self, since: str | None = None) -> list[Event]:
        """Events in emission order, optionally only those after event ``since``.

        An unknown ``since`` id yields the whole log.
        """
        async with self._events_lock:
            events = list(self._events)
        if since is None:
            return events
        for index, event in enumerate(events):
            if event.id == since:
                return events[index + 1:]
        return events

    async def close(self) -> None:
        """Close every subscription."""
        async with self._subscriptions_lock:
            subscriptions, self._subscriptions = self._subscriptions, ()
        for subscription in subscriptions:
            subscription.close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def __len__(self) -> int:
        return len(self._events)
