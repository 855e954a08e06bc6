# pvc_autoscaler/store.py
"""
PVC Autoscaler object store adapters
------------------------------------

The autoscaler needs exactly four verbs from the cluster:
 - list_indexed: objects of a kind matching the enabled index
 - get: one object by namespace/name
 - patch: JSON merge patch, optionally conditional on the last-read
   resourceVersion
 - patch_status: JSON merge patch against the status subresource

Objects travel as raw camelCase dicts (as served by the API server).

Implementations:
 - KubernetesStore: official `kubernetes` client, blocking calls pushed to
   the default executor
 - InMemoryStore: dict-backed store with resourceVersion bookkeeping, used
   by tests and the `fake` development mode
"""

from __future__ import annotations

import copy
import json
import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException

from pvc_autoscaler import index
from pvc_autoscaler.exceptions import Conflict, NotFound, StoreError
from pvc_autoscaler.models import KIND_AUTOSCALER, KIND_PVC
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger

LOG = get_logger("pvc_autoscaler.store")
LAD = StructuredLoggerAdapter(LOG, {"component": "store"})

KIND_STORAGE_CLASS = "StorageClass"

AUTOSCALER_GROUP = "autoscaling.pvc.io"
AUTOSCALER_VERSION = "v1alpha1"
AUTOSCALER_PLURAL = "persistentvolumeclaimautoscalers"

MERGE_PATCH = "application/merge-patch+json"


def json_merge_patch(target: Any, patch: Any) -> Any:
    """RFC 7386 merge patch. Returns a new object; `None` values delete keys."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = json_merge_patch(result.get(key), value)
    return result


def with_resource_version(patch: Dict[str, Any], resource_version: Optional[str]) -> Dict[str, Any]:
    """Return `patch` carrying metadata.resourceVersion as a precondition."""
    if resource_version is None:
        return patch
    out = copy.deepcopy(patch)
    out.setdefault("metadata", {})["resourceVersion"] = resource_version
    return out


class ObjectStore(ABC):
    @abstractmethod
    async def list_indexed(self, kind: str, value: str = index.INDEX_VALUE_ENABLED) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        """Return the object or raise NotFound."""

    @abstractmethod
    async def patch(self, kind: str, obj: Dict[str, Any], patch: Dict[str, Any], optimistic: bool = True) -> Dict[str, Any]:
        """
        Merge-patch `obj`. With `optimistic=True` the write only succeeds if
        the stored resourceVersion still equals the one in `obj`; otherwise
        Conflict is raised.
        """

    @abstractmethod
    async def patch_status(self, kind: str, obj: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        ...


# ---------------------------
# In-memory
# ---------------------------
class InMemoryStore(ObjectStore):
    def __init__(self):
        self._objects: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._rv = 0
        self._lock = threading.Lock()
        self.patches: List[Dict[str, Any]] = []

    @staticmethod
    def _key(kind: str, namespace: str, name: str) -> Tuple[str, str, str]:
        return (kind, namespace or "", name)

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def add(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace an object (its `kind` field selects the bucket)."""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        with self._lock:
            meta["resourceVersion"] = self._next_rv()
            meta.setdefault("generation", 1)
            self._objects[self._key(obj["kind"], meta.get("namespace", ""), meta["name"])] = obj
        return copy.deepcopy(obj)

    def mutate(self, kind: str, namespace: str, name: str, fn: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        """Apply `fn` to the stored object in place, as an external writer would."""
        with self._lock:
            obj = self._objects.get(self._key(kind, namespace, name))
            if obj is None:
                raise NotFound(f"{kind} {namespace}/{name} not found")
            fn(obj)
            obj["metadata"]["resourceVersion"] = self._next_rv()
            return copy.deepcopy(obj)

    def delete(self, kind: str, namespace: str, name: str):
        with self._lock:
            self._objects.pop(self._key(kind, namespace, name), None)

    def peek(self, kind: str, namespace: str, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            obj = self._objects.get(self._key(kind, namespace, name))
            return copy.deepcopy(obj) if obj is not None else None

    def spec_patches(self, kind: str = KIND_PVC, name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Recorded patches which changed spec.resources.requests.storage."""
        out = []
        for entry in self.patches:
            if entry["kind"] != kind or (name is not None and entry["name"] != name):
                continue
            if ((entry["patch"].get("spec") or {}).get("resources") or {}).get("requests", {}).get("storage"):
                out.append(entry)
        return out

    async def list_indexed(self, kind: str, value: str = index.INDEX_VALUE_ENABLED) -> List[Dict[str, Any]]:
        with self._lock:
            items = [
                copy.deepcopy(obj)
                for (k, _, _), obj in sorted(self._objects.items())
                if k == kind and index.matches(kind, obj, value)
            ]
        return items

    async def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        obj = self.peek(kind, namespace, name)
        if obj is None:
            raise NotFound(f"{kind} {namespace}/{name} not found")
        return obj

    def _apply(self, kind: str, obj: Dict[str, Any], patch: Dict[str, Any], expected_rv: Optional[str], subresource: str) -> Dict[str, Any]:
        meta = obj.get("metadata") or {}
        namespace, name = meta.get("namespace", ""), meta.get("name", "")
        key = self._key(kind, namespace, name)
        with self._lock:
            current = self._objects.get(key)
            if current is None:
                raise NotFound(f"{kind} {namespace}/{name} not found")
            if expected_rv is not None and current["metadata"].get("resourceVersion") != expected_rv:
                raise Conflict(
                    f'Operation cannot be fulfilled on {kind} "{name}": the object has been modified; '
                    "please apply your changes to the latest version and try again"
                )
            if subresource == "status":
                patch = {"status": patch["status"]} if "status" in patch else {}
            else:
                patch = {k: v for k, v in patch.items() if k != "status"}
            updated = json_merge_patch(current, patch)
            updated["metadata"]["resourceVersion"] = self._next_rv()
            if subresource != "status" and "spec" in patch:
                updated["metadata"]["generation"] = int(current["metadata"].get("generation") or 1) + 1
            self._objects[key] = updated
            self.patches.append({
                "kind": kind,
                "namespace": namespace,
                "name": name,
                "subresource": subresource,
                "patch": copy.deepcopy(patch),
            })
            return copy.deepcopy(updated)

    async def patch(self, kind: str, obj: Dict[str, Any], patch: Dict[str, Any], optimistic: bool = True) -> Dict[str, Any]:
        rv = (obj.get("metadata") or {}).get("resourceVersion") if optimistic else None
        return self._apply(kind, obj, patch, rv, "")

    async def patch_status(self, kind: str, obj: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._apply(kind, obj, patch, None, "status")


# ---------------------------
# Kubernetes
# ---------------------------
def _translate(e: ApiException, what: str) -> StoreError:
    if e.status == 404:
        return NotFound(f"{what} not found")
    if e.status == 409:
        return Conflict(f"{what}: {e.reason}")
    return StoreError(f"{what}: {e.status} {e.reason}")


class KubernetesStore(ObjectStore):
    """
    ObjectStore backed by the official kubernetes client.

    Core kinds are requested with `_preload_content=False` so the store hands
    out the raw JSON documents exactly as served.
    """

    def __init__(self, api_client: Optional[k8s_client.ApiClient] = None):
        self.api_client = api_client or k8s_client.ApiClient()
        self.core = k8s_client.CoreV1Api(self.api_client)
        self.storage = k8s_client.StorageV1Api(self.api_client)
        self.custom = k8s_client.CustomObjectsApi(self.api_client)

    async def _call(self, what: str, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, fn)
        except ApiException as e:
            raise _translate(e, what) from e
        if hasattr(result, "data") and hasattr(result, "status"):
            return json.loads(result.data)
        return result

    async def list_indexed(self, kind: str, value: str = index.INDEX_VALUE_ENABLED) -> List[Dict[str, Any]]:
        if kind == KIND_PVC:
            doc = await self._call(
                "list persistentvolumeclaims",
                lambda: self.core.list_persistent_volume_claim_for_all_namespaces(_preload_content=False),
            )
        elif kind == KIND_AUTOSCALER:
            doc = await self._call(
                "list persistentvolumeclaimautoscalers",
                lambda: self.custom.list_cluster_custom_object(AUTOSCALER_GROUP, AUTOSCALER_VERSION, AUTOSCALER_PLURAL),
            )
        else:
            raise StoreError(f"kind {kind} is not indexed")
        items = doc.get("items") or []
        for item in items:
            item.setdefault("kind", kind)
        return [item for item in items if index.matches(kind, item, value)]

    async def get(self, kind: str, namespace: str, name: str) -> Dict[str, Any]:
        what = f"{kind} {namespace}/{name}" if namespace else f"{kind} {name}"
        if kind == KIND_PVC:
            obj = await self._call(what, lambda: self.core.read_namespaced_persistent_volume_claim(name, namespace, _preload_content=False))
        elif kind == KIND_STORAGE_CLASS:
            obj = await self._call(what, lambda: self.storage.read_storage_class(name, _preload_content=False))
        elif kind == KIND_AUTOSCALER:
            obj = await self._call(
                what,
                lambda: self.custom.get_namespaced_custom_object(AUTOSCALER_GROUP, AUTOSCALER_VERSION, namespace, AUTOSCALER_PLURAL, name),
            )
        else:
            raise StoreError(f"unsupported kind {kind}")
        obj.setdefault("kind", kind)
        return obj

    async def patch(self, kind: str, obj: Dict[str, Any], patch: Dict[str, Any], optimistic: bool = True) -> Dict[str, Any]:
        meta = obj.get("metadata") or {}
        namespace, name = meta.get("namespace", ""), meta.get("name", "")
        body = with_resource_version(patch, meta.get("resourceVersion")) if optimistic else patch
        what = f"patch {kind} {namespace}/{name}"
        if kind == KIND_PVC:
            return await self._call(
                what,
                lambda: self.core.patch_namespaced_persistent_volume_claim(
                    name, namespace, body, _content_type=MERGE_PATCH, _preload_content=False
                ),
            )
        if kind == KIND_AUTOSCALER:
            return await self._call(
                what,
                lambda: self.custom.patch_namespaced_custom_object(
                    AUTOSCALER_GROUP, AUTOSCALER_VERSION, namespace, AUTOSCALER_PLURAL, name, body, _content_type=MERGE_PATCH
                ),
            )
        raise StoreError(f"unsupported kind {kind}")

    async def patch_status(self, kind: str, obj: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        if kind != KIND_AUTOSCALER:
            raise StoreError(f"{kind} has no status subresource managed by the autoscaler")
        meta = obj.get("metadata") or {}
        namespace, name = meta.get("namespace", ""), meta.get("name", "")
        return await self._call(
            f"patch status {kind} {namespace}/{name}",
            lambda: self.custom.patch_namespaced_custom_object_status(
                AUTOSCALER_GROUP, AUTOSCALER_VERSION, namespace, AUTOSCALER_PLURAL, name, patch, _content_type=MERGE_PATCH
            ),
        )
