from pvc_autoscaler.sources.base import Metrics, MetricsSource, VolumeInfo
from pvc_autoscaler.sources.fake import AlwaysFailingSource, FakeItem, FakeSource
from pvc_autoscaler.sources.prometheus import PrometheusSource

__all__ = [
    "Metrics",
    "MetricsSource",
    "VolumeInfo",
    "FakeItem",
    "FakeSource",
    "AlwaysFailingSource",
    "PrometheusSource",
]
