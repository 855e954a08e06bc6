# pvc_autoscaler/events.py
"""
Kubernetes event recording.

`EventRecorder.event(obj, type, reason, message)` attaches an Event to a
PersistentVolumeClaim or PersistentVolumeClaimAutoscaler. Event delivery is
best-effort: a failed POST is logged and never fails the caller.
"""

from __future__ import annotations

import asyncio
import datetime
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException

from pvc_autoscaler.models import ObjectView
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger
from pvc_autoscaler.utils.time_utils import utc_now

LOG = get_logger("pvc_autoscaler.events")
LAD = StructuredLoggerAdapter(LOG, {"component": "events"})

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

COMPONENT_NAME = "pvc-autoscaler"

# Reasons
FREE_SPACE_THRESHOLD_REACHED = "FreeSpaceThresholdReached"
FREE_INODES_THRESHOLD_REACHED = "FreeInodesThresholdReached"
MAX_CAPACITY_REACHED = "MaxCapacityReached"
RESIZING_STORAGE = "ResizingStorage"


@dataclass
class RecordedEvent:
    kind: str
    namespace: str
    name: str
    type: str
    reason: str
    message: str
    timestamp: datetime.datetime = field(default_factory=utc_now)


class EventRecorder(ABC):
    @abstractmethod
    async def event(self, obj: ObjectView, type_: str, reason: str, message: str) -> None:
        ...

    async def warning(self, obj: ObjectView, reason: str, message: str) -> None:
        await self.event(obj, EVENT_TYPE_WARNING, reason, message)

    async def normal(self, obj: ObjectView, reason: str, message: str) -> None:
        await self.event(obj, EVENT_TYPE_NORMAL, reason, message)


class RecordingEventRecorder(EventRecorder):
    """Keeps events in memory. Used by tests and the fake development mode."""

    def __init__(self):
        self.events: List[RecordedEvent] = []

    async def event(self, obj: ObjectView, type_: str, reason: str, message: str) -> None:
        self.events.append(RecordedEvent(obj.kind, obj.namespace, obj.name, type_, reason, message))
        LAD.debug("event %s %s: %s", type_, reason, message, extra={"namespace": obj.namespace, "pvc": obj.name})

    def reasons(self, name: Optional[str] = None) -> List[str]:
        return [e.reason for e in self.events if name is None or e.name == name]

    def clear(self):
        self.events.clear()


class KubernetesEventRecorder(EventRecorder):
    """Creates core/v1 Events through the official kubernetes client."""

    def __init__(self, core_api: Optional[k8s_client.CoreV1Api] = None, component: str = COMPONENT_NAME):
        self.core_api = core_api or k8s_client.CoreV1Api()
        self.component = component

    def _build(self, obj: ObjectView, type_: str, reason: str, message: str) -> k8s_client.CoreV1Event:
        now = utc_now()
        api_version = obj.obj.get("apiVersion") or "v1"
        return k8s_client.CoreV1Event(
            metadata=k8s_client.V1ObjectMeta(
                name=f"{obj.name}.{uuid.uuid4().hex[:16]}",
                namespace=obj.namespace,
            ),
            involved_object=k8s_client.V1ObjectReference(
                api_version=api_version,
                kind=obj.kind,
                name=obj.name,
                namespace=obj.namespace,
                uid=obj.metadata.get("uid"),
                resource_version=obj.resource_version,
            ),
            type=type_,
            reason=reason,
            message=message,
            source=k8s_client.V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

    async def event(self, obj: ObjectView, type_: str, reason: str, message: str) -> None:
        body = self._build(obj, type_, reason, message)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: self.core_api.create_namespaced_event(obj.namespace, body))
        except ApiException as e:
            LAD.warning(
                "failed to record event %s: %s (status=%s)", reason, e.reason, e.status,
                extra={"namespace": obj.namespace, "pvc": obj.name},
            )
