"""Append-only event stream for one turn, readable while it is produced."""

import asyncio
from collections.abc import AsyncIterator

from repochat.models.events import StreamEvent
from repochat.models.messages import new_id


class StreamClosedError(Exception):
    """Raised when publishing to a stream whose turn has completed."""


class StreamPublisher:
    """Ordered event log with any number of independent subscribers.

    Publishing never waits on consumers: events are appended to the log and
    waiting subscribers are woken. A subscriber that falls behind or
    disconnects simply reads from its own offset, and a new subscriber can
    replay from any sequence number.
    """

    def __init__(self, turn_id: str | None = None):
        self.turn_id = turn_id or new_id()
        self._events: list[StreamEvent] = []
        self._closed = False
        self._wakeup = asyncio.Event()

    @property
    def events(self) -> list[StreamEvent]:
        return list(self._events)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._events)

    def publish(self, event: StreamEvent) -> StreamEvent:
        """Append an event, stamping its sequence number."""
        if self._closed:
            raise StreamClosedError(f"Turn {self.turn_id} has already completed")

        event.seq = len(self._events)
        self._events.append(event)
        self._notify()
        return event

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._notify()

    def _notify(self) -> None:
        self._wakeup.set()
        self._wakeup = asyncio.Event()

    async def subscribe(self, start: int = 0) -> AsyncIterator[StreamEvent]:
        """Yield events from ``start`` onward until the stream is closed."""
        index = max(start, 0)
        while True:
            while index < len(self._events):
                yield self._events[index]
                index += 1

            if self._closed:
                return

            await self._wakeup.wait()
