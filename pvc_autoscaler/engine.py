# pvc_autoscaler/engine.py
"""
PVC Autoscaler decision engine
------------------------------

Provides:
 - ScanCandidate: target + latest snapshot (+ resolved policy), one tick only
 - DecisionEngine.should_reconcile(): the eligibility predicate
 - min_increment() / compute_new_size(): resize step computation

Eligibility is evaluated in a fixed order; each failing stage raises the
matching SkipReason so the caller can log and count it:

  1. stamp last/next check and observed percentages (always)
  2. no snapshot                              -> NoMetrics
  3. no storage class                         -> StorageClassNotFound
  4. expansion not allowed                    -> StorageClassDoesNotSupportExpansion
  5. capacity zero                            -> NoMetrics
  6. request and reported capacity disagree   -> StaleMetrics
  7. threshold resolution                     -> InvalidPolicy
  8. max capacity missing or zero             -> NoMaxCapacity
  9. volume mode not Filesystem               -> VolumeModeIsNotFilesystem
     (unset volume mode: not eligible, no error)
 10. claim not Bound                          -> not eligible, no error
 11. free space % <= threshold, free bytes < min step absolute, or
     free inodes % <= threshold
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Optional

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.events import (
    FREE_INODES_THRESHOLD_REACHED,
    FREE_SPACE_THRESHOLD_REACHED,
    EventRecorder,
)
from pvc_autoscaler.exceptions import (
    CapacityIsZero,
    ConfigurationError,
    NoMetrics,
    NotFound,
    StaleMetrics,
    StorageClassDoesNotSupportExpansion,
    StorageClassNotFound,
    VolumeModeIsNotFilesystem,
)
from pvc_autoscaler.metrics import AutoscalerMetrics
from pvc_autoscaler.models import AutoscalerStatus, AutoscalingPolicy, StorageClass
from pvc_autoscaler.policy import Target
from pvc_autoscaler.sources.base import VolumeInfo
from pvc_autoscaler.store import KIND_STORAGE_CLASS, ObjectStore
from pvc_autoscaler.utils.common import GiB, format_percentage, format_quantity, round_up
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger
from pvc_autoscaler.utils.time_utils import utc_now

LOG = get_logger("pvc_autoscaler.engine")
LAD = StructuredLoggerAdapter(LOG, {"component": "engine"})

VOLUME_MODE_FILESYSTEM = "Filesystem"
CLAIM_BOUND = "Bound"

# upper bound for step% / threshold% when scaling the absolute minimum step
MAX_STEP_RATIO = 20.0

STAMP_FIELDS = (
    "last_check",
    "next_check",
    "used_space_percentage",
    "free_space_percentage",
    "used_inodes_percentage",
    "free_inodes_percentage",
)


@dataclass
class ScanCandidate:
    target: Target
    info: Optional[VolumeInfo]
    policy: Optional[AutoscalingPolicy] = None


# ---------------------------
# Resize step
# ---------------------------
def min_increment(step_percent: float, threshold_percent: float, min_step_absolute: Optional[int]) -> float:
    """
    Absolute floor of one resize step: `min_step_absolute` scaled by
    step%/threshold%, the ratio capped at MAX_STEP_RATIO. 0 when unset.
    """
    if not min_step_absolute:
        return 0.0
    ratio = min(step_percent / threshold_percent, MAX_STEP_RATIO)
    return min_step_absolute * ratio


def compute_new_size(current: int, policy: AutoscalingPolicy, resolution: int = GiB) -> int:
    """
    current + max(floor, current * step%), rounded up to `resolution`, raised
    to min capacity when set, never above max capacity.
    """
    floor = min_increment(policy.step_percent, policy.threshold_percent, policy.min_step_absolute)
    percent = current * policy.step_percent / 100.0
    new_size = round_up(current + max(floor, percent), resolution)
    if policy.min_capacity is not None:
        new_size = max(new_size, policy.min_capacity)
    return min(new_size, policy.max_capacity)


def _pct(fn) -> str:
    try:
        return format_percentage(fn())
    except CapacityIsZero:
        return ann.UNKNOWN_UTILIZATION_VALUE


# ---------------------------
# Eligibility
# ---------------------------
class DecisionEngine:
    def __init__(
        self,
        store: ObjectStore,
        recorder: EventRecorder,
        metrics: AutoscalerMetrics,
        interval: float,
        stale_tolerance: int = GiB // 2,
    ):
        if store is None:
            raise ConfigurationError("no object store provided")
        if recorder is None:
            raise ConfigurationError("no event recorder provided")
        if metrics is None:
            raise ConfigurationError("no metrics provided")
        if interval <= 0:
            raise ConfigurationError("interval must be positive")
        self.store = store
        self.recorder = recorder
        self.metrics = metrics
        self.interval = interval
        self.stale_tolerance = stale_tolerance

    async def stamp(self, candidate: ScanCandidate, now: Optional[datetime.datetime] = None) -> None:
        """Record that the candidate was scanned, with whatever the snapshot tells."""
        now = now or utc_now()
        info = candidate.info
        status = AutoscalerStatus(
            last_check=now,
            next_check=now + datetime.timedelta(seconds=self.interval),
            used_space_percentage=_pct(info.used_space_percentage) if info else ann.UNKNOWN_UTILIZATION_VALUE,
            free_space_percentage=_pct(info.free_space_percentage) if info else ann.UNKNOWN_UTILIZATION_VALUE,
            used_inodes_percentage=_pct(info.used_inodes_percentage) if info else ann.UNKNOWN_UTILIZATION_VALUE,
            free_inodes_percentage=_pct(info.free_inodes_percentage) if info else ann.UNKNOWN_UTILIZATION_VALUE,
        )
        await candidate.target.update_status(self.store, status, STAMP_FIELDS)

    async def _storage_class(self, name: str) -> StorageClass:
        if not name:
            raise StorageClassNotFound("no storage class found")
        try:
            return StorageClass(await self.store.get(KIND_STORAGE_CLASS, "", name))
        except NotFound as e:
            raise StorageClassNotFound(f"storage class {name} not found") from e

    async def should_reconcile(self, candidate: ScanCandidate) -> bool:
        await self.stamp(candidate)

        info = candidate.info
        if info is None:
            raise NoMetrics("no metrics found")

        pvc = candidate.target.pvc
        sc = await self._storage_class(pvc.storage_class_name)
        if not sc.allow_volume_expansion:
            raise StorageClassDoesNotSupportExpansion("storage class does not support expansion")

        try:
            free_space = info.free_space_percentage()
        except CapacityIsZero as e:
            raise NoMetrics("no metrics found: capacity is zero") from e

        requested = pvc.requested_bytes
        if requested is not None and abs(requested - info.capacity_bytes) > self.stale_tolerance:
            raise StaleMetrics(
                f"metrics data not up to date: requested {requested} bytes, reported capacity {info.capacity_bytes} bytes"
            )

        threshold = candidate.target.resolve_threshold()
        candidate.policy = candidate.target.resolve_policy()

        if pvc.volume_mode is None:
            return False
        if pvc.volume_mode != VOLUME_MODE_FILESYSTEM:
            raise VolumeModeIsNotFilesystem("volume mode is not filesystem")

        if pvc.phase != CLAIM_BOUND:
            LAD.debug("persistentvolumeclaim is not bound yet", extra={"namespace": pvc.namespace, "pvc": pvc.name})
            return False

        owner = candidate.target.owner
        if free_space <= threshold:
            await self.recorder.warning(
                owner,
                FREE_SPACE_THRESHOLD_REACHED,
                f"free space ({free_space:.2f}%) is less than the configured threshold ({threshold:.2f}%)",
            )
            self.metrics.threshold_reached(pvc.namespace, pvc.name, "space")
            return True

        min_free = candidate.policy.min_step_absolute
        if min_free and info.available_bytes < min_free:
            await self.recorder.warning(
                owner,
                FREE_SPACE_THRESHOLD_REACHED,
                f"free space ({info.available_bytes} bytes) is less than the configured threshold "
                f"({format_quantity(min_free)} = {min_free} bytes)",
            )
            self.metrics.threshold_reached(pvc.namespace, pvc.name, "space")
            return True

        if info.capacity_inodes > 0:
            free_inodes = info.free_inodes_percentage()
            if free_inodes <= threshold:
                await self.recorder.warning(
                    owner,
                    FREE_INODES_THRESHOLD_REACHED,
                    f"free inodes ({free_inodes:.2f}%) are less than the configured threshold ({threshold:.2f}%)",
                )
                self.metrics.threshold_reached(pvc.namespace, pvc.name, "inodes")
                return True

        return False
