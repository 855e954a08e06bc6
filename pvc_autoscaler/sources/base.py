# pvc_autoscaler/sources/base.py
"""
Metrics source contract.

A source returns one consistent batch of utilization snapshots per call,
keyed by (namespace, persistentvolumeclaim). Any failure fails the whole
call; callers never merge partial results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict

from pvc_autoscaler.exceptions import CapacityIsZero
from pvc_autoscaler.models import VolumeKey

KUBELET_VOLUME_STATS_AVAILABLE_BYTES = "kubelet_volume_stats_available_bytes"
KUBELET_VOLUME_STATS_CAPACITY_BYTES = "kubelet_volume_stats_capacity_bytes"
KUBELET_VOLUME_STATS_INODES_FREE = "kubelet_volume_stats_inodes_free"
KUBELET_VOLUME_STATS_INODES = "kubelet_volume_stats_inodes"


@dataclass
class VolumeInfo:
    """Utilization snapshot of one volume."""
    capacity_bytes: int = 0
    available_bytes: int = 0
    capacity_inodes: int = 0
    available_inodes: int = 0

    def free_space_percentage(self) -> float:
        if self.capacity_bytes == 0:
            raise CapacityIsZero("capacity is zero")
        return self.available_bytes / self.capacity_bytes * 100.0

    def used_space_percentage(self) -> float:
        return 100.0 - self.free_space_percentage()

    def free_inodes_percentage(self) -> float:
        if self.capacity_inodes == 0:
            raise CapacityIsZero("inode capacity is zero")
        return self.available_inodes / self.capacity_inodes * 100.0

    def used_inodes_percentage(self) -> float:
        return 100.0 - self.free_inodes_percentage()


Metrics = Dict[VolumeKey, VolumeInfo]


class MetricsSource(ABC):
    @abstractmethod
    async def get(self) -> Metrics:
        """Return the current batch of snapshots or raise."""
