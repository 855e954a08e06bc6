# pvc_autoscaler/event_queue.py
"""
Bounded hand-off queue between the periodic runner and reconciler workers.

`close()` marks end-of-stream: producers get QueueClosed on `put()`,
consumers drain what is left and then get QueueClosed from `get()`.
"""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from pvc_autoscaler.exceptions import QueueClosed

T = TypeVar("T")


class EventQueue(Generic[T]):
    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def close(self):
        self._closed.set()

    async def _race(self, op):
        """Await `op` unless the queue gets closed first."""
        task = asyncio.ensure_future(op)
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            done, _ = await asyncio.wait({task, closer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            closer.cancel()
        if task in done:
            return task.result()
        task.cancel()
        raise QueueClosed("event queue is closed")

    async def put(self, item: T) -> None:
        """Blocks while the queue is full."""
        if self.closed:
            raise QueueClosed("event queue is closed")
        if not self._queue.full():
            self._queue.put_nowait(item)
            return
        await self._race(self._queue.put(item))

    async def get(self) -> T:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        if self.closed:
            raise QueueClosed("event queue is closed")
        return await self._race(self._queue.get())

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except QueueClosed:
            raise StopAsyncIteration from None
