# tests/test_event_queue.py
import asyncio

import pytest

from pvc_autoscaler.event_queue import EventQueue
from pvc_autoscaler.exceptions import QueueClosed


@pytest.mark.asyncio
async def test_fifo_order():
    q = EventQueue(maxsize=5)
    for i in range(3):
        await q.put(i)
    assert [await q.get() for _ in range(3)] == [0, 1, 2]


@pytest.mark.asyncio
async def test_close_drains_then_raises():
    q = EventQueue()
    await q.put("a")
    q.close()
    assert await q.get() == "a"
    with pytest.raises(QueueClosed):
        await q.get()


@pytest.mark.asyncio
async def test_put_after_close_raises():
    q = EventQueue()
    q.close()
    with pytest.raises(QueueClosed):
        await q.put("a")


@pytest.mark.asyncio
async def test_blocked_get_is_released_by_close():
    q = EventQueue()
    getter = asyncio.create_task(q.get())
    await asyncio.sleep(0.01)
    q.close()
    with pytest.raises(QueueClosed):
        await asyncio.wait_for(getter, timeout=1.0)


@pytest.mark.asyncio
async def test_put_blocks_while_full():
    q = EventQueue(maxsize=1)
    await q.put(1)
    putter = asyncio.create_task(q.put(2))
    await asyncio.sleep(0.01)
    assert not putter.done()
    assert await q.get() == 1
    await asyncio.wait_for(putter, timeout=1.0)
    assert await q.get() == 2


@pytest.mark.asyncio
async def test_async_iteration_stops_when_closed():
    q = EventQueue()
    for i in range(3):
        await q.put(i)
    q.close()
    assert [item async for item in q] == [0, 1, 2]
