# tests/test_sources.py
"""
VolumeInfo accessors and the synthetic metrics sources.
"""

import asyncio

import pytest

from pvc_autoscaler.exceptions import CapacityIsZero, NoMetrics
from pvc_autoscaler.models import VolumeKey
from pvc_autoscaler.sources import AlwaysFailingSource, FakeItem, FakeSource, VolumeInfo

KEY = VolumeKey("default", "pvc-1")


def test_volume_info_percentages():
    info = VolumeInfo(capacity_bytes=200, available_bytes=50, capacity_inodes=1000, available_inodes=900)
    assert info.free_space_percentage() == pytest.approx(25.0)
    assert info.used_space_percentage() == pytest.approx(75.0)
    assert info.free_inodes_percentage() == pytest.approx(90.0)
    assert info.used_inodes_percentage() == pytest.approx(10.0)


@pytest.mark.parametrize(
    "accessor",
    ["free_space_percentage", "used_space_percentage", "free_inodes_percentage", "used_inodes_percentage"],
)
def test_volume_info_zero_capacity(accessor):
    with pytest.raises(CapacityIsZero):
        getattr(VolumeInfo(), accessor)()


def test_capacity_is_zero_is_a_zero_division():
    with pytest.raises(ZeroDivisionError):
        VolumeInfo().free_space_percentage()


def test_fake_item_consume_floors_at_zero():
    item = FakeItem(KEY, capacity_bytes=100, available_bytes=15, capacity_inodes=10, available_inodes=3,
                    consume_bytes_increment=10, consume_inodes_increment=2)
    item.consume()
    assert (item.available_bytes, item.available_inodes) == (5, 1)
    item.consume()
    assert (item.available_bytes, item.available_inodes) == (0, 0)


@pytest.mark.asyncio
async def test_fake_source_snapshot():
    source = FakeSource()
    source.register(FakeItem(KEY, capacity_bytes=100, available_bytes=40, consume_bytes_increment=10))
    source.consume()
    snapshot = await source.get()
    assert snapshot[KEY].available_bytes == 30
    # snapshot is a copy
    snapshot[KEY].available_bytes = 0
    assert source.item("default", "pvc-1").available_bytes == 30


@pytest.mark.asyncio
async def test_fake_source_consumer_loop():
    source = FakeSource(interval=0.01)
    source.register(FakeItem(KEY, capacity_bytes=100, available_bytes=100, consume_bytes_increment=1))
    stop = asyncio.Event()
    task = asyncio.create_task(source.start(stop))
    await asyncio.sleep(0.1)
    stop.set()
    await asyncio.wait_for(task, timeout=1.0)
    assert source.item("default", "pvc-1").available_bytes < 100


@pytest.mark.asyncio
async def test_always_failing_source():
    with pytest.raises(NoMetrics):
        await AlwaysFailingSource().get()
