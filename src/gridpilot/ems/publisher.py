"""Latest-value state publisher with any number of subscribers."""

import asyncio
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

T = TypeVar("T")


class StatePublisher(Generic[T]):
    """
    Holds the most recent value and fans it out to subscribers.

    Each subscriber gets a one-slot queue: a subscriber that falls behind only
    ever sees the newest value, and ``publish()`` never waits for anyone.
    """

    def __init__(self, initial: T):
        self._value = initial
        self._queues: set[asyncio.Queue[T]] = set()

    @property
    def value(self) -> T:
        return self._value

    @property
    def subscriber_count(self) -> int:
        return len(self._queues)

    def publish(self, value: T) -> None:
        self._value = value
        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(value)

    async def subscribe(self) -> AsyncIterator[T]:
        """Yield the current value, then every later one (conflated)."""
        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=1)
        queue.put_nowait(self._value)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
