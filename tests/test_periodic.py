# tests/test_periodic.py
"""
Periodic runner: construction checks, one scan pass, skip accounting,
failure tolerance and shutdown behaviour.
"""

import asyncio

import pytest

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.event_queue import EventQueue
from pvc_autoscaler.exceptions import ConfigurationError, NoMetrics
from pvc_autoscaler.models import KIND_AUTOSCALER, KIND_PVC, ReconcileRequest, VolumeKey
from pvc_autoscaler.periodic import PeriodicRunner
from pvc_autoscaler.sources.fake import AlwaysFailingSource, FakeItem, FakeSource
from pvc_autoscaler.utils.common import GiB


def _item(name="pvc-1", capacity=GiB, free_pct=50.0):
    return FakeItem(
        key=VolumeKey("default", name),
        capacity_bytes=capacity,
        available_bytes=int(capacity * free_pct / 100),
        capacity_inodes=1000,
        available_inodes=900,
    )


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def queue():
    return EventQueue(maxsize=10)


@pytest.fixture
def runner(expandable_store, source, queue, recorder, metrics):
    return PeriodicRunner(30.0, expandable_store, source, queue, recorder, metrics)


@pytest.mark.parametrize("missing", ["store", "metrics_source", "queue", "recorder", "metrics"])
def test_runner_requires_collaborators(missing, store, recorder, metrics):
    kwargs = dict(
        interval=30.0,
        store=store,
        metrics_source=FakeSource(),
        queue=EventQueue(),
        recorder=recorder,
        metrics=metrics,
    )
    kwargs[missing] = None
    with pytest.raises(ConfigurationError):
        PeriodicRunner(**kwargs)


def test_runner_requires_positive_interval(store, recorder, metrics):
    with pytest.raises(ConfigurationError):
        PeriodicRunner(0, store, FakeSource(), EventQueue(), recorder, metrics)


@pytest.mark.asyncio
async def test_enqueues_only_eligible_claims(runner, expandable_store, source, queue, make_pvc):
    expandable_store.add(make_pvc(name="full"))
    expandable_store.add(make_pvc(name="roomy"))
    source.register(_item("full", free_pct=3.0), _item("roomy", free_pct=80.0))

    queued = await runner.enqueue_objects()

    assert queued == [ReconcileRequest(KIND_PVC, "default", "full")]
    assert queue.qsize() == 1
    assert await queue.get() == ReconcileRequest(KIND_PVC, "default", "full")
    # both were stamped
    for name in ("full", "roomy"):
        annotations = expandable_store.peek(KIND_PVC, "default", name)["metadata"]["annotations"]
        assert ann.LAST_CHECK in annotations


@pytest.mark.asyncio
async def test_disabled_claims_are_not_scanned(runner, expandable_store, source, make_pvc):
    expandable_store.add(make_pvc(enabled=False))
    source.register(_item(free_pct=1.0))
    assert await runner.enqueue_objects() == []
    assert ann.LAST_CHECK not in expandable_store.peek(KIND_PVC, "default", "pvc-1")["metadata"]["annotations"]


@pytest.mark.asyncio
async def test_skips_are_counted(runner, expandable_store, source, metrics, make_pvc):
    expandable_store.add(make_pvc(storage_class=None))
    expandable_store.add(make_pvc(name="no-metrics"))
    source.register(_item(free_pct=1.0))

    assert await runner.enqueue_objects() == []
    assert metrics.value("skipped_total", namespace="default", persistentvolumeclaim="pvc-1", reason="StorageClassNotFound") == 1
    assert metrics.value("skipped_total", namespace="default", persistentvolumeclaim="no-metrics", reason="NoMetrics") == 1


@pytest.mark.asyncio
async def test_autoscaler_object_wins_over_annotations(runner, expandable_store, source, make_pvc, make_autoscaler):
    expandable_store.add(make_pvc())
    expandable_store.add(make_autoscaler(max_capacity="10Gi"))
    source.register(_item(free_pct=1.0))

    queued = await runner.enqueue_objects()
    assert queued == [ReconcileRequest(KIND_AUTOSCALER, "default", "pvca-1")]
    status = expandable_store.peek(KIND_AUTOSCALER, "default", "pvca-1")["status"]
    assert status["freeSpacePercentage"] == "1.00%"
    assert status["lastCheck"].endswith("Z")


@pytest.mark.asyncio
async def test_autoscaler_with_missing_target_is_counted(runner, expandable_store, metrics, make_autoscaler):
    expandable_store.add(make_autoscaler(target="gone"))
    assert await runner.enqueue_objects() == []
    assert metrics.value("skipped_total", namespace="default", persistentvolumeclaim="pvca-1", reason="TargetNotFound") == 1


@pytest.mark.asyncio
async def test_metrics_source_is_not_queried_without_targets(expandable_store, queue, recorder, metrics):
    runner = PeriodicRunner(30.0, expandable_store, AlwaysFailingSource(), queue, recorder, metrics)
    assert await runner.enqueue_objects() == []


@pytest.mark.asyncio
async def test_metrics_failure_fails_the_pass(expandable_store, queue, recorder, metrics, make_pvc):
    expandable_store.add(make_pvc())
    runner = PeriodicRunner(30.0, expandable_store, AlwaysFailingSource(), queue, recorder, metrics)
    with pytest.raises(NoMetrics):
        await runner.enqueue_objects()


@pytest.mark.asyncio
async def test_run_survives_failing_ticks_and_closes_queue(expandable_store, queue, recorder, metrics, make_pvc):
    expandable_store.add(make_pvc())
    runner = PeriodicRunner(0.01, expandable_store, AlwaysFailingSource(), queue, recorder, metrics)
    stop = asyncio.Event()
    task = asyncio.create_task(runner.run(stop))
    for _ in range(200):
        if runner.ticks >= 3:
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=2.0)

    assert runner.ticks >= 3
    assert queue.closed


@pytest.mark.asyncio
async def test_cancellation_closes_queue(runner, queue):
    task = asyncio.create_task(runner.run(asyncio.Event()))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert queue.closed


@pytest.mark.asyncio
async def test_full_queue_blocks_scanner(expandable_store, source, recorder, metrics, make_pvc):
    queue = EventQueue(maxsize=1)
    runner = PeriodicRunner(30.0, expandable_store, source, queue, recorder, metrics)
    for name in ("a", "b"):
        expandable_store.add(make_pvc(name=name))
        source.register(_item(name, free_pct=1.0))

    scan = asyncio.create_task(runner.enqueue_objects())
    await asyncio.sleep(0.05)
    assert not scan.done()
    assert queue.qsize() == 1

    await queue.get()
    queued = await asyncio.wait_for(scan, timeout=1.0)
    assert [r.name for r in queued] == ["a", "b"]
