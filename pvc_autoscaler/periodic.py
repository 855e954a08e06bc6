# pvc_autoscaler/periodic.py
"""
PVC Autoscaler periodic runner
------------------------------

Every `interval` seconds:
 - list enabled targets (annotated claims and autoscaler objects)
 - fetch one metrics batch for all of them
 - evaluate each candidate, one at a time, with the decision engine
 - push eligible ones onto the event queue (blocking while it is full)

A failed tick is logged and the next tick starts from scratch. When the stop
event is set or the task is cancelled the runner closes the event queue so
reconciler workers finish instead of waiting forever.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

from pvc_autoscaler.engine import DecisionEngine, ScanCandidate
from pvc_autoscaler.event_queue import EventQueue
from pvc_autoscaler.events import EventRecorder
from pvc_autoscaler.exceptions import AutoscalerError, ConfigurationError
from pvc_autoscaler.metrics import AutoscalerMetrics
from pvc_autoscaler.models import ObjectView, ReconcileRequest
from pvc_autoscaler.policy import list_targets
from pvc_autoscaler.sources.base import MetricsSource
from pvc_autoscaler.store import ObjectStore
from pvc_autoscaler.utils.common import GiB
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger
from pvc_autoscaler.utils.time_utils import PeriodicTicker, format_duration

LOG = get_logger("pvc_autoscaler.periodic")
LAD = StructuredLoggerAdapter(LOG, {"component": "periodic"})


def skip_reason(err: AutoscalerError) -> str:
    return getattr(err, "reason", None) or type(err).__name__


class PeriodicRunner:
    def __init__(
        self,
        interval: float,
        store: ObjectStore,
        metrics_source: MetricsSource,
        queue: EventQueue,
        recorder: EventRecorder,
        metrics: AutoscalerMetrics,
        stale_tolerance: int = GiB // 2,
    ):
        if metrics_source is None:
            raise ConfigurationError("no metrics source provided")
        if recorder is None:
            raise ConfigurationError("no event recorder provided")
        if queue is None:
            raise ConfigurationError("no event queue provided")
        if store is None:
            raise ConfigurationError("no object store provided")
        if metrics is None:
            raise ConfigurationError("no metrics provided")
        if not interval or interval <= 0:
            raise ConfigurationError("interval must be positive")
        self.interval = interval
        self.store = store
        self.metrics_source = metrics_source
        self.queue = queue
        self.recorder = recorder
        self.metrics = metrics
        self.engine = DecisionEngine(store, recorder, metrics, interval, stale_tolerance=stale_tolerance)
        self.ticks = 0

    async def run(self, stop_event: Optional[asyncio.Event] = None):
        """Tick until `stop_event` is set or the task is cancelled."""
        stop_event = stop_event or asyncio.Event()
        LAD.info("periodic runner started (interval=%s)", format_duration(self.interval))
        try:
            async for _ in PeriodicTicker(self.interval, stop_event):
                try:
                    await self.enqueue_objects()
                except AutoscalerError as e:
                    LAD.error("failed to enqueue persistentvolumeclaims: %s", e)
                except Exception:
                    LAD.exception("failed to enqueue persistentvolumeclaims")
                self.ticks += 1
        finally:
            self.queue.close()
            LAD.info("periodic runner stopped")

    def _count_skip(self, obj: ObjectView, err: AutoscalerError):
        self.metrics.skipped(obj.namespace, obj.name, skip_reason(err))

    async def enqueue_objects(self) -> List[ReconcileRequest]:
        """One scan pass. Returns the requests that were queued."""
        targets = await list_targets(self.store, on_error=self._count_skip)
        if not targets:
            return []

        snapshot = await self.metrics_source.get()

        eligible: List[ReconcileRequest] = []
        for target in targets:
            namespace, name = target.key
            candidate = ScanCandidate(target=target, info=snapshot.get(target.key))
            try:
                ok = await self.engine.should_reconcile(candidate)
            except AutoscalerError as e:
                reason = skip_reason(e)
                LAD.info(
                    "skipping persistentvolumeclaim",
                    extra={"namespace": namespace, "pvc": name, "reason": reason, "detail": str(e)},
                )
                self.metrics.skipped(namespace, name, reason)
                continue
            if ok:
                eligible.append(target.request())

        for request in eligible:
            await self.queue.put(request)
        if eligible:
            LAD.debug("queued %d persistentvolumeclaims", len(eligible))
        return eligible
