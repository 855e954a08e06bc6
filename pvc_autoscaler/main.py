# pvc_autoscaler/main.py
"""
PVC Autoscaler process entrypoint

Responsibilities:
 - build the object store, metrics source and event recorder from Settings
   (`fake` mode runs fully in memory with a seeded demo claim)
 - run the periodic runner and the reconciler workers under one stop event
 - FastAPI app exposing liveness / readiness probes and Prometheus metrics
 - uvicorn CLI entrypoint
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from pvc_autoscaler import __version__, demo
from pvc_autoscaler.config import Settings, load_settings
from pvc_autoscaler.event_queue import EventQueue
from pvc_autoscaler.events import EventRecorder, KubernetesEventRecorder, RecordingEventRecorder
from pvc_autoscaler.metrics import CONTENT_TYPE_LATEST, AutoscalerMetrics
from pvc_autoscaler.models import VolumeKey
from pvc_autoscaler.periodic import PeriodicRunner
from pvc_autoscaler.reconciler import Reconciler
from pvc_autoscaler.sources import FakeSource, MetricsSource, PrometheusSource
from pvc_autoscaler.store import InMemoryStore, KubernetesStore, ObjectStore
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, configure_logging, get_logger

LOG = get_logger("pvc_autoscaler.main")
LAD = StructuredLoggerAdapter(LOG, {"component": "main"})

APP_TITLE = "PVC Autoscaler"


def _load_kube_config(settings: Settings):
    if settings.in_cluster:
        k8s_config.load_incluster_config()
        LAD.info("loaded in-cluster kubernetes configuration")
    else:
        k8s_config.load_kube_config(config_file=settings.kubeconfig)
        LAD.info("loaded kubeconfig %s", settings.kubeconfig or "(default)")


class AutoscalerManager:
    """
    Owns the long-running tasks. Collaborators default from `settings` and
    can be injected (tests pass an InMemoryStore and a FakeSource).
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[ObjectStore] = None,
        metrics_source: Optional[MetricsSource] = None,
        recorder: Optional[EventRecorder] = None,
        metrics: Optional[AutoscalerMetrics] = None,
    ):
        self.settings = settings
        fake = settings.metrics_source == "fake"
        seed_demo = fake and store is None and metrics_source is None
        if store is None or recorder is None:
            if fake:
                store = store or InMemoryStore()
                recorder = recorder or RecordingEventRecorder()
            else:
                _load_kube_config(settings)
                api_client = k8s_client.ApiClient()
                store = store or KubernetesStore(api_client)
                recorder = recorder or KubernetesEventRecorder(k8s_client.CoreV1Api(api_client))
        if metrics_source is None:
            metrics_source = FakeSource() if fake else PrometheusSource(settings.prometheus_address)
        self.store = store
        self.recorder = recorder
        self.metrics_source = metrics_source
        self.metrics = metrics or AutoscalerMetrics()
        self.demo_key: Optional[VolumeKey] = None
        if seed_demo:
            self.demo_key = demo.seed(self.store, self.metrics_source)

        self.stop_event = asyncio.Event()
        self.queue: EventQueue = EventQueue(maxsize=settings.queue_size)
        self.runner = PeriodicRunner(
            settings.interval,
            self.store,
            self.metrics_source,
            self.queue,
            self.recorder,
            self.metrics,
            stale_tolerance=settings.stale_tolerance,
        )
        self.reconciler = Reconciler(
            self.store,
            self.recorder,
            self.metrics,
            resolution=settings.scaling_resolution,
            interval=settings.interval,
        )
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not any(t.done() for t in self._tasks)

    async def start(self):
        if self._tasks:
            return
        LAD.info(
            "starting autoscaler (interval=%.1fs, metrics source=%s, workers=%d)",
            self.settings.interval, self.settings.metrics_source, self.settings.workers,
        )
        self._tasks.append(asyncio.create_task(self.runner.run(self.stop_event), name="periodic-runner"))
        self._tasks.append(asyncio.create_task(self.reconciler.run(self.queue, self.settings.workers), name="reconciler"))
        if isinstance(self.metrics_source, FakeSource):
            self._tasks.append(asyncio.create_task(self.metrics_source.start(self.stop_event), name="fake-source"))
        if self.demo_key is not None:
            self._tasks.append(
                asyncio.create_task(
                    demo.settle_resizes(self.store, self.metrics_source, self.demo_key, self.stop_event, self.metrics_source.interval),
                    name="demo-driver",
                )
            )

    async def stop(self):
        LAD.info("stopping autoscaler")
        self.stop_event.set()
        self.queue.close()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                LAD.error("task %s failed: %s", task.get_name(), result)
        self._tasks = []
        if isinstance(self.metrics_source, PrometheusSource):
            await self.metrics_source.close()
        LAD.info("autoscaler stopped")

    def readiness(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "ticks": self.runner.ticks,
            "queued": self.queue.qsize(),
        }


# -------------------------
# HTTP surface
# -------------------------
def create_app(settings: Optional[Settings] = None, manager: Optional[AutoscalerManager] = None) -> FastAPI:
    settings = settings or (manager.settings if manager else load_settings())

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        mgr = manager or AutoscalerManager(settings)
        app.state.manager = mgr
        await mgr.start()
        try:
            yield
        finally:
            await mgr.stop()

    app = FastAPI(title=APP_TITLE, version=__version__, lifespan=lifespan)

    @app.get("/healthz", tags=["health"])
    async def liveness_probe():
        return PlainTextResponse("OK", status_code=200)

    @app.get("/readyz", tags=["health"])
    async def readiness_probe():
        mgr: Optional[AutoscalerManager] = getattr(app.state, "manager", None)
        if mgr is None:
            return JSONResponse(status_code=503, content={"running": False})
        checks = mgr.readiness()
        return JSONResponse(status_code=200 if checks["running"] else 503, content=checks)

    @app.get("/metrics", tags=["metrics"])
    async def prometheus_metrics():
        mgr: Optional[AutoscalerManager] = getattr(app.state, "manager", None)
        body = mgr.metrics.exposition() if mgr is not None else b""
        return Response(content=body, media_type=CONTENT_TYPE_LATEST)

    return app


def run():
    settings = load_settings()
    configure_logging(level=settings.log_level, json=settings.log_json)
    LAD.info("pvc-autoscaler %s listening on %s:%d", __version__, settings.http_host, settings.http_port)
    uvicorn.run(create_app(settings), host=settings.http_host, port=settings.http_port, log_config=None)


if __name__ == "__main__":
    run()
