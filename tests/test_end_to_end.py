# tests/test_end_to_end.py
"""
Scan -> decide -> reconcile loop against the in-memory store and the fake
metrics source, with a simulated storage driver finishing every resize.
"""

import pytest

from pvc_autoscaler import reconciler as rc
from pvc_autoscaler.event_queue import EventQueue
from pvc_autoscaler.events import MAX_CAPACITY_REACHED, RESIZING_STORAGE
from pvc_autoscaler.models import KIND_PVC, VolumeKey
from pvc_autoscaler.periodic import PeriodicRunner
from pvc_autoscaler.sources.fake import FakeItem, FakeSource
from pvc_autoscaler.utils.common import GiB, parse_quantity_bytes

MAX_CAPACITY = 100 * GiB


def _finish_resize(store, source):
    """What the storage driver does once a new request lands."""
    requested = store.peek(KIND_PVC, "default", "pvc-1")["spec"]["resources"]["requests"]["storage"]
    store.mutate(KIND_PVC, "default", "pvc-1", lambda o: o["status"]["capacity"].update(storage=requested))
    item = source.item("default", "pvc-1")
    item.capacity_bytes = parse_quantity_bytes(requested)
    item.available_bytes = item.capacity_bytes // 20


@pytest.mark.asyncio
async def test_grows_until_max_capacity(expandable_store, recorder, metrics, make_pvc):
    store = expandable_store
    store.add(make_pvc(requested="1Gi", max_capacity="100Gi"))
    source = FakeSource()
    source.register(
        FakeItem(
            key=VolumeKey("default", "pvc-1"),
            capacity_bytes=GiB,
            available_bytes=GiB // 20,
            capacity_inodes=1000,
            available_inodes=1000,
        )
    )
    queue = EventQueue(maxsize=10)
    runner = PeriodicRunner(30.0, store, source, queue, recorder, metrics)
    reconciler = rc.Reconciler(store, recorder, metrics, interval=30.0)

    sizes = [GiB]
    outcome = None
    for _ in range(100):
        queued = await runner.enqueue_objects()
        assert len(queued) == 1
        outcome = await reconciler.reconcile(await queue.get())
        if outcome == rc.MAX_CAPACITY:
            break
        assert outcome == rc.RESIZED
        _finish_resize(store, source)
        sizes.append(parse_quantity_bytes(store.peek(KIND_PVC, "default", "pvc-1")["spec"]["resources"]["requests"]["storage"]))

    assert outcome == rc.MAX_CAPACITY
    assert sizes[:4] == [GiB, 2 * GiB, 3 * GiB, 4 * GiB]
    assert sizes == sorted(set(sizes))
    assert max(sizes) == MAX_CAPACITY
    assert all(s % GiB == 0 for s in sizes)
    resizes = len(sizes) - 1
    assert metrics.value("resized_total", namespace="default", persistentvolumeclaim="pvc-1") == resizes
    assert recorder.reasons().count(RESIZING_STORAGE) == resizes

    # further ticks only report max capacity
    recorder.clear()
    for _ in range(3):
        await runner.enqueue_objects()
        assert await reconciler.reconcile(await queue.get()) == rc.MAX_CAPACITY
    assert RESIZING_STORAGE not in recorder.reasons()
    assert recorder.reasons().count(MAX_CAPACITY_REACHED) == 3
    assert metrics.value("max_capacity_reached_total", namespace="default", persistentvolumeclaim="pvc-1") == 4
    assert len(store.spec_patches()) == resizes
