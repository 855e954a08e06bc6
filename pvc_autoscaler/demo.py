# pvc_autoscaler/demo.py
"""
Demo objects for `fake` mode.

`seed()` puts an expandable storage class and one opted-in claim into an
InMemoryStore and registers a draining FakeItem for it. `settle_resizes()`
plays the storage driver: once the claim's request grows it reports the new
capacity, both on the claim status and in the fake metrics.
"""

from __future__ import annotations

import asyncio

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.exceptions import NotFound
from pvc_autoscaler.models import KIND_PVC, PersistentVolumeClaim, VolumeKey
from pvc_autoscaler.sources.fake import FakeItem, FakeSource
from pvc_autoscaler.store import KIND_STORAGE_CLASS, InMemoryStore
from pvc_autoscaler.utils.common import GiB, format_quantity
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger
from pvc_autoscaler.utils.time_utils import PeriodicTicker

LOG = get_logger("pvc_autoscaler.demo")
LAD = StructuredLoggerAdapter(LOG, {"component": "demo"})

DEMO_NAMESPACE = "default"
DEMO_CLAIM = "demo-data"
DEMO_STORAGE_CLASS = "demo-expandable"
DEMO_MAX_CAPACITY = "10Gi"

MiB = 1024 ** 2


def seed(store: InMemoryStore, source: FakeSource, consume_bytes: int = 16 * MiB) -> VolumeKey:
    """Add the demo storage class, claim and metrics item. Returns the claim key."""
    size = format_quantity(GiB)
    store.add({
        "apiVersion": "storage.k8s.io/v1",
        "kind": KIND_STORAGE_CLASS,
        "metadata": {"name": DEMO_STORAGE_CLASS},
        "provisioner": "demo.pvc.autoscaling.io",
        "allowVolumeExpansion": True,
    })
    store.add({
        "apiVersion": "v1",
        "kind": KIND_PVC,
        "metadata": {
            "name": DEMO_CLAIM,
            "namespace": DEMO_NAMESPACE,
            "annotations": {
                ann.IS_ENABLED: "true",
                ann.MAX_CAPACITY: DEMO_MAX_CAPACITY,
            },
        },
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "storageClassName": DEMO_STORAGE_CLASS,
            "volumeMode": "Filesystem",
            "resources": {"requests": {"storage": size}},
        },
        "status": {"phase": "Bound", "capacity": {"storage": size}, "conditions": []},
    })
    key = VolumeKey(DEMO_NAMESPACE, DEMO_CLAIM)
    source.register(FakeItem(key=key, capacity_bytes=GiB, available_bytes=GiB // 2, consume_bytes_increment=consume_bytes))
    LAD.info("seeded demo persistentvolumeclaim", extra={"namespace": key.namespace, "pvc": key.name})
    return key


def settle_once(store: InMemoryStore, source: FakeSource, key: VolumeKey) -> bool:
    """Report the requested size as provisioned. Returns True if anything changed."""
    raw = store.peek(KIND_PVC, key.namespace, key.name)
    item = source.item(key.namespace, key.name)
    if raw is None or item is None:
        return False
    pvc = PersistentVolumeClaim(raw)
    requested, capacity = pvc.requested_bytes, pvc.capacity_bytes
    if not requested or requested == capacity:
        return False
    new_size = format_quantity(requested)
    try:
        store.mutate(KIND_PVC, key.namespace, key.name, lambda o: o["status"]["capacity"].update(storage=new_size))
    except NotFound:
        return False
    grown = requested - item.capacity_bytes
    item.capacity_bytes = requested
    item.available_bytes = max(0, item.available_bytes + grown)
    LAD.info("demo volume resized", extra={"namespace": key.namespace, "pvc": key.name, "capacity": new_size})
    return True


async def settle_resizes(store: InMemoryStore, source: FakeSource, key: VolumeKey, stop_event: asyncio.Event, interval: float = 1.0):
    async for _ in PeriodicTicker(interval, stop_event):
        settle_once(store, source, key)
