"""
Latest-Value Slot

Single-slot inbound event channel. A newer event replaces one that has not
been consumed yet: intensity freshness matters more than completeness.
"""

import asyncio
from dataclasses import dataclass


@dataclass(frozen=True)
class EventMessage:
    """A named numeric event from the event source"""
    name: str
    value: object


class LatestValueSlot:
    """Holds at most one pending event; put() never blocks"""

    def __init__(self):
        self._queue: asyncio.Queue[EventMessage] = asyncio.Queue(maxsize=1)
        self.dropped = 0

    def put(self, event: EventMessage) -> bool:
        """
        Offer an event, discarding the pending one if present.

        Must be called on the event loop thread.

        Returns:
            True if a pending event was replaced
        """
        replaced = False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            try:
                self._queue.get_nowait()
                replaced = True
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
            self._queue.put_nowait(event)
        return replaced

    async def get(self) -> EventMessage:
        return await self._queue.get()

    def pending(self) -> EventMessage | None:
        """Peek at the pending event without consuming it"""
        if self._queue.empty():
            return None
        event = self._queue.get_nowait()
        self._queue.put_nowait(event)
        return event

    def empty(self) -> bool:
        return self._queue.empty()
