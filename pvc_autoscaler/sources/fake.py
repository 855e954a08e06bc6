# pvc_autoscaler/sources/fake.py
"""
Synthetic metrics sources for tests and local development.

 - FakeSource: registered items whose available bytes/inodes shrink by a
   fixed increment on every consume step (driven by `start()` or called
   directly), floored at zero.
 - AlwaysFailingSource: every `get()` raises NoMetrics.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from pvc_autoscaler.exceptions import NoMetrics
from pvc_autoscaler.models import VolumeKey
from pvc_autoscaler.sources.base import Metrics, MetricsSource, VolumeInfo
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger
from pvc_autoscaler.utils.time_utils import PeriodicTicker

LOG = get_logger("pvc_autoscaler.sources.fake")
LAD = StructuredLoggerAdapter(LOG, {"component": "fake-source"})


@dataclass
class FakeItem:
    key: VolumeKey
    capacity_bytes: int = 0
    available_bytes: int = 0
    capacity_inodes: int = 0
    available_inodes: int = 0
    consume_bytes_increment: int = 0
    consume_inodes_increment: int = 0

    def consume(self):
        self.available_bytes = max(0, self.available_bytes - self.consume_bytes_increment)
        self.available_inodes = max(0, self.available_inodes - self.consume_inodes_increment)


class FakeSource(MetricsSource):
    def __init__(self, interval: float = 1.0):
        self.interval = interval
        self._items: Dict[VolumeKey, FakeItem] = {}
        self._lock = threading.Lock()

    def register(self, *items: FakeItem):
        with self._lock:
            for item in items:
                self._items[VolumeKey(*item.key)] = item

    def item(self, namespace: str, name: str) -> Optional[FakeItem]:
        with self._lock:
            return self._items.get(VolumeKey(namespace, name))

    def consume(self):
        """Run one consume step on every registered item."""
        with self._lock:
            for item in self._items.values():
                item.consume()

    async def start(self, stop_event: asyncio.Event):
        LAD.info("fake metrics source consuming every %.2fs", self.interval)
        async for _ in PeriodicTicker(self.interval, stop_event):
            self.consume()

    async def get(self) -> Metrics:
        with self._lock:
            return {
                key: VolumeInfo(
                    capacity_bytes=item.capacity_bytes,
                    available_bytes=item.available_bytes,
                    capacity_inodes=item.capacity_inodes,
                    available_inodes=item.available_inodes,
                )
                for key, item in self._items.items()
            }


class AlwaysFailingSource(MetricsSource):
    async def get(self) -> Metrics:
        raise NoMetrics("no metrics found")
