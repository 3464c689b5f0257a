"""Event channel: the ordered, typed stream from the bridge to its front end."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from switchboard.session.models import BridgeEvent
from switchboard.storage import iso_now

logger = logging.getLogger(__name__)

Subscriber = Callable[[BridgeEvent], None]


class EventChannel:
    """Delivers bridge events in publish order.

    Every event is stamped with ``seq`` and ``ts``, handed to the
    synchronous subscribers, and queued for async consumers.  Events
    published after ``close()`` are dropped.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[BridgeEvent | None] = asyncio.Queue()
        self._subscribers: list[Subscriber] = []
        self._seq = 0
        self._closed = False

    @property
    def published(self) -> int:
        """Number of events published so far."""
        return self._seq

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register *callback* for every future event.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: BridgeEvent) -> None:
        if self._closed:
            logger.debug("Channel closed, dropping %s event", event.type)
            return
        event.seq = self._seq
        event.ts = iso_now()
        self._seq += 1
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed on %s", event.type)
        self._queue.put_nowait(event)

    async def get(self) -> BridgeEvent | None:
        """Wait for the next event; ``None`` once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def drain(self) -> list[BridgeEvent]:
        """Return every queued event without waiting."""
        events: list[BridgeEvent] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    async def stream(self) -> AsyncIterator[BridgeEvent]:
        """Iterate over events until the channel is closed."""
        while True:
            event = await self.get()
            if event is None:
                return
            yield event

    def close(self) -> None:
        """Stop accepting events and wake any waiting consumer."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
