# pvc_autoscaler/metrics.py
"""
PVC Autoscaler Prometheus metrics
---------------------------------

`AutoscalerMetrics` owns the four outcome counters on an explicit
`CollectorRegistry`. One instance is created at startup and passed to the
runner and the reconciler; tests create their own so counts never leak
between runs.

Counters (all labeled by namespace / persistentvolumeclaim):
 - pvc_autoscaler_resized_total
 - pvc_autoscaler_threshold_reached_total{reason}
 - pvc_autoscaler_max_capacity_reached_total
 - pvc_autoscaler_skipped_total{reason}
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

NAMESPACE = "pvc_autoscaler"
_VOLUME_LABELS = ["namespace", "persistentvolumeclaim"]


class AutoscalerMetrics:
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry(auto_describe=True)
        self.resized_total = Counter(
            "resized_total",
            "Total number of times a PVC has been resized",
            _VOLUME_LABELS,
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.threshold_reached_total = Counter(
            "threshold_reached_total",
            "Total number of times the free capacity for a PVC has reached the threshold",
            _VOLUME_LABELS + ["reason"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.max_capacity_reached_total = Counter(
            "max_capacity_reached_total",
            "Total number of times the max capacity has been reached for a PVC",
            _VOLUME_LABELS,
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.skipped_total = Counter(
            "skipped_total",
            "Total number of times a PVC has been skipped",
            _VOLUME_LABELS + ["reason"],
            namespace=NAMESPACE,
            registry=self.registry,
        )

    # convenience wrappers
    def resized(self, namespace: str, name: str):
        self.resized_total.labels(namespace, name).inc()

    def threshold_reached(self, namespace: str, name: str, reason: str):
        self.threshold_reached_total.labels(namespace, name, reason).inc()

    def max_capacity_reached(self, namespace: str, name: str):
        self.max_capacity_reached_total.labels(namespace, name).inc()

    def skipped(self, namespace: str, name: str, reason: str):
        self.skipped_total.labels(namespace, name, reason).inc()

    def value(self, metric: str, **labels) -> float:
        """Current sample value of `pvc_autoscaler_<metric>`; 0.0 when never incremented."""
        sample = self.registry.get_sample_value(f"{NAMESPACE}_{metric}", labels)
        return sample or 0.0

    def exposition(self) -> bytes:
        return generate_latest(self.registry)


__all__ = ["AutoscalerMetrics", "NAMESPACE", "CONTENT_TYPE_LATEST"]
