# pvc_autoscaler/reconciler.py
"""
PVC Autoscaler reconciler
-------------------------

Consumes ReconcileRequests from the event queue. Each request is handled
against a fresh read of the claim (and autoscaler object, if any); the queued
payload is only an identifier.

Guards, in order, before any write:
 - Resizing condition true                -> skip (ResizeInProgress)
 - FileSystemResizePending condition true -> skip (FileSystemResizePending)
 - ModifyingVolume condition true         -> skip (VolumeBeingModified)
 - prev-size equals observed capacity     -> skip (StillBeingResized)
 - requested above observed capacity      -> skip (StillBeingResized)
 - requested capacity >= max capacity     -> max capacity reached, no write

Then one conditional patch of spec.resources.requests.storage, followed by
status (prev/new size, last check, Healthy=False/Reconciling condition), a
ResizingStorage event and `pvc_autoscaler_resized_total`.
"""

from __future__ import annotations

import asyncio
import datetime
from typing import Optional

from pydantic import ValidationError

from pvc_autoscaler.engine import compute_new_size
from pvc_autoscaler.event_queue import EventQueue
from pvc_autoscaler.events import MAX_CAPACITY_REACHED, RESIZING_STORAGE, EventRecorder
from pvc_autoscaler.exceptions import (
    AutoscalerError,
    ConfigurationError,
    Conflict,
    InvalidQuantity,
    NotFound,
    ReconcileError,
    SkipReason,
)
from pvc_autoscaler.metrics import AutoscalerMetrics
from pvc_autoscaler.models import (
    CONDITION_FALSE,
    CONDITION_HEALTHY,
    PVC_FILESYSTEM_RESIZE_PENDING,
    PVC_MODIFYING_VOLUME,
    PVC_RESIZING,
    REASON_RECONCILING,
    Condition,
    ReconcileRequest,
    set_status_condition,
)
from pvc_autoscaler.policy import Target, load_target
from pvc_autoscaler.store import ObjectStore
from pvc_autoscaler.utils.common import GiB, format_quantity, parse_quantity_bytes
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger
from pvc_autoscaler.utils.time_utils import utc_now

LOG = get_logger("pvc_autoscaler.reconciler")
LAD = StructuredLoggerAdapter(LOG, {"component": "reconciler"})

# outcomes
RESIZED = "Resized"
MAX_CAPACITY = "MaxCapacityReached"
RESIZE_IN_PROGRESS = "ResizeInProgress"
FILESYSTEM_RESIZE_PENDING = "FileSystemResizePending"
VOLUME_BEING_MODIFIED = "VolumeBeingModified"
STILL_BEING_RESIZED = "StillBeingResized"
NO_SIZE_CHANGE = "NoSizeChange"
CONFLICT = "Conflict"
GONE = "Gone"
DISABLED = "Disabled"
RECONCILE_ERROR = "ReconcileError"

_CONDITION_GUARDS = (
    (PVC_RESIZING, RESIZE_IN_PROGRESS, "resize has been started"),
    (PVC_FILESYSTEM_RESIZE_PENDING, FILESYSTEM_RESIZE_PENDING, "filesystem resize is pending"),
    (PVC_MODIFYING_VOLUME, VOLUME_BEING_MODIFIED, "volume is being modified"),
)

RESIZE_STATUS_FIELDS = ("last_check", "next_check", "prev_size", "new_size", "conditions")


class Reconciler:
    def __init__(
        self,
        store: ObjectStore,
        recorder: EventRecorder,
        metrics: AutoscalerMetrics,
        resolution: int = GiB,
        interval: Optional[float] = None,
    ):
        if store is None:
            raise ConfigurationError("no object store provided")
        if recorder is None:
            raise ConfigurationError("no event recorder provided")
        if metrics is None:
            raise ConfigurationError("no metrics provided")
        if resolution <= 0:
            raise ConfigurationError("scaling resolution must be positive")
        self.store = store
        self.recorder = recorder
        self.metrics = metrics
        self.resolution = resolution
        self.interval = interval

    def _skip(self, target: Target, reason: str, message: str) -> str:
        namespace, name = target.key
        LAD.info(message, extra={"namespace": namespace, "pvc": name, "reason": reason})
        self.metrics.skipped(namespace, name, reason)
        return reason

    async def reconcile(self, request: ReconcileRequest) -> str:
        """Handle one request. Returns the outcome; raises ReconcileError on bad stored state."""
        try:
            return await self._reconcile(request)
        except ReconcileError:
            self.metrics.skipped(request.namespace, request.name, RECONCILE_ERROR)
            raise

    async def _reconcile(self, request: ReconcileRequest) -> str:
        try:
            target = await load_target(self.store, request)
        except NotFound:
            LAD.info("object no longer exists", extra={"namespace": request.namespace, "pvc": request.name, "kind": request.kind})
            self.metrics.skipped(request.namespace, request.name, GONE)
            return GONE
        except SkipReason as e:
            LAD.info("refusing to proceed with reconciling: %s", e, extra={"namespace": request.namespace, "pvc": request.name})
            self.metrics.skipped(request.namespace, request.name, e.reason)
            return e.reason
        if target is None:
            LAD.info("autoscaling is not enabled", extra={"namespace": request.namespace, "pvc": request.name})
            self.metrics.skipped(request.namespace, request.name, DISABLED)
            return DISABLED

        pvc = target.pvc
        for condition_type, reason, message in _CONDITION_GUARDS:
            if pvc.condition_true(condition_type):
                return self._skip(target, reason, message)

        try:
            policy = target.resolve_policy()
        except SkipReason as e:
            return self._skip(target, e.reason, f"refusing to proceed with reconciling: {e}")

        try:
            status = target.status()
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise ReconcileError(f"cannot read status of {target.owner.kind} {target.owner.namespace}/{target.owner.name}: {e}") from e
        try:
            prev_size = parse_quantity_bytes(status.prev_size) if status.prev_size else None
        except InvalidQuantity as e:
            raise ReconcileError(f"cannot parse prev-size: {e}") from e
        try:
            requested = pvc.requested_bytes
            capacity = pvc.capacity_bytes
        except InvalidQuantity as e:
            raise ReconcileError(f"cannot parse storage size of {pvc.namespace}/{pvc.name}: {e}") from e
        if not requested:
            raise ReconcileError("no .spec.resources.requests.storage field")
        if not capacity:
            raise ReconcileError("no .status.capacity.storage field")

        if prev_size is not None and prev_size == capacity:
            return self._skip(target, STILL_BEING_RESIZED, "persistent volume claim is still being resized")
        if requested > capacity:
            return self._skip(target, STILL_BEING_RESIZED, "requested storage has not been provisioned yet")

        if requested >= policy.max_capacity:
            max_str = format_quantity(policy.max_capacity)
            LAD.info("max capacity reached", extra={"namespace": pvc.namespace, "pvc": pvc.name, "max_capacity": max_str})
            self.metrics.max_capacity_reached(pvc.namespace, pvc.name)
            await self.recorder.warning(
                target.owner, MAX_CAPACITY_REACHED, f"max capacity ({max_str}) has been reached, will not resize"
            )
            return MAX_CAPACITY

        new_size = compute_new_size(requested, policy, self.resolution)
        if new_size <= requested:
            return self._skip(target, NO_SIZE_CHANGE, "new size is not greater than current")

        old_str, new_str = format_quantity(requested), format_quantity(new_size)
        now = utc_now()
        status.prev_size = format_quantity(capacity)
        status.new_size = new_str
        status.last_check = now
        if self.interval:
            status.next_check = now + datetime.timedelta(seconds=self.interval)
        set_status_condition(
            status.conditions,
            Condition(
                type=CONDITION_HEALTHY,
                status=CONDITION_FALSE,
                reason=REASON_RECONCILING,
                message=f"Resizing from {old_str} to {new_str}",
                observed_generation=target.owner.generation,
            ),
            now=now,
        )
        fields = RESIZE_STATUS_FIELDS if self.interval else tuple(f for f in RESIZE_STATUS_FIELDS if f != "next_check")

        try:
            await target.apply_resize(self.store, new_str, status, fields)
        except Conflict as e:
            return self._skip(target, CONFLICT, f"persistent volume claim changed while resizing, will retry: {e}")

        LAD.info("resizing persistent volume claim", extra={"namespace": pvc.namespace, "pvc": pvc.name, "from": old_str, "to": new_str})
        self.metrics.resized(pvc.namespace, pvc.name)
        await self.recorder.normal(target.owner, RESIZING_STORAGE, f"resizing storage from {old_str} to {new_str}")
        return RESIZED

    # ---------------------------
    # Workers
    # ---------------------------
    async def _worker(self, queue: EventQueue, worker_id: int):
        log = LAD.bind(worker=worker_id)
        async for request in queue:
            try:
                await self.reconcile(request)
            except AutoscalerError as e:
                log.error("reconcile failed: %s", e, extra={"namespace": request.namespace, "pvc": request.name})
            except Exception:
                log.exception("unexpected error while reconciling", extra={"namespace": request.namespace, "pvc": request.name})
        log.debug("worker finished, event queue closed")

    async def run(self, queue: EventQueue, workers: int = 1):
        """Consume `queue` with `workers` concurrent workers until it is closed."""
        if workers < 1:
            raise ConfigurationError("at least one reconcile worker is required")
        tasks = [asyncio.create_task(self._worker(queue, i)) for i in range(workers)]
        try:
            await asyncio.gather(*tasks)
        finally:
            for t in tasks:
                t.cancel()
