# pvc_autoscaler/models.py
"""
PVC Autoscaler data model
-------------------------

Provides:
 - VolumeKey / ReconcileRequest identifiers
 - Condition + set_status_condition (standard Kubernetes condition semantics)
 - AutoscalingPolicy: effective, fully-defaulted policy of one volume
 - AutoscalerStatus: observed state, serializable to annotations or to the
   autoscaler object's status subresource
 - Thin views over raw API dicts: PersistentVolumeClaim, StorageClass,
   PersistentVolumeClaimAutoscaler
"""

from __future__ import annotations

import json
import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.utils.common import parse_quantity_bytes
from pvc_autoscaler.utils.time_utils import (
    from_timestamp,
    parse_iso8601,
    to_rfc3339,
    to_timestamp,
    utc_now,
)


class VolumeKey(NamedTuple):
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


KIND_PVC = "PersistentVolumeClaim"
KIND_AUTOSCALER = "PersistentVolumeClaimAutoscaler"


class ReconcileRequest(NamedTuple):
    """What travels through the event queue: the owner of the policy."""
    kind: str
    namespace: str
    name: str

    @property
    def key(self) -> VolumeKey:
        return VolumeKey(self.namespace, self.name)


# ---------------------------
# Conditions
# ---------------------------
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

CONDITION_HEALTHY = "Healthy"
REASON_RECONCILING = "Reconciling"

# PersistentVolumeClaim status condition types
PVC_RESIZING = "Resizing"
PVC_FILESYSTEM_RESIZE_PENDING = "FileSystemResizePending"
PVC_MODIFYING_VOLUME = "ModifyingVolume"


class Condition(BaseModel):
    type: str
    status: str = CONDITION_UNKNOWN
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: Optional[datetime.datetime] = None

    @field_validator("status")
    @classmethod
    def _valid_status(cls, v: str) -> str:
        if v not in (CONDITION_TRUE, CONDITION_FALSE, CONDITION_UNKNOWN):
            raise ValueError(f"condition status must be True, False or Unknown, got {v!r}")
        return v

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
        }
        if self.observed_generation:
            d["observedGeneration"] = self.observed_generation
        if self.last_transition_time is not None:
            d["lastTransitionTime"] = to_rfc3339(self.last_transition_time)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Condition":
        ltt = d.get("lastTransitionTime")
        return cls(
            type=d["type"],
            status=d.get("status", CONDITION_UNKNOWN),
            reason=d.get("reason", "") or "",
            message=d.get("message", "") or "",
            observed_generation=int(d.get("observedGeneration") or 0),
            last_transition_time=parse_iso8601(ltt) if ltt else None,
        )


def find_condition(conditions: Iterable[Condition], type_: str) -> Optional[Condition]:
    for c in conditions:
        if c.type == type_:
            return c
    return None


def set_status_condition(conditions: List[Condition], new: Condition, now: Optional[datetime.datetime] = None) -> bool:
    """
    Insert or update `new` in place. At most one entry per type; status,
    reason, message and observed generation are overwritten, the transition
    time moves only when the status changes. Returns True if anything changed.
    """
    now = now or utc_now()
    existing = find_condition(conditions, new.type)
    if existing is None:
        added = new.model_copy()
        if added.last_transition_time is None:
            added.last_transition_time = now
        conditions.append(added)
        return True

    changed = False
    if existing.status != new.status:
        existing.status = new.status
        existing.last_transition_time = new.last_transition_time or now
        changed = True
    for attr in ("reason", "message", "observed_generation"):
        if getattr(existing, attr) != getattr(new, attr):
            setattr(existing, attr, getattr(new, attr))
            changed = True
    return changed


# ---------------------------
# Policy
# ---------------------------
class AutoscalingPolicy(BaseModel):
    """Effective policy for one volume; every optional field already defaulted."""
    max_capacity: int = Field(..., gt=0)
    min_capacity: Optional[int] = Field(default=None, ge=0)
    threshold_percent: float = Field(default=10.0, gt=0, le=100)
    step_percent: float = Field(default=10.0, gt=0, le=100)
    min_step_absolute: Optional[int] = Field(default=None, gt=0)
    # parsed and kept; not consulted by the decision engine
    cooldown_duration: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _min_below_max(self) -> "AutoscalingPolicy":
        if self.min_capacity is not None and self.min_capacity > self.max_capacity:
            raise ValueError("min capacity must not exceed max capacity")
        return self


# ---------------------------
# Status
# ---------------------------
_STATUS_ANNOTATIONS = {
    "used_space_percentage": ann.USED_SPACE_PERCENTAGE,
    "free_space_percentage": ann.FREE_SPACE_PERCENTAGE,
    "used_inodes_percentage": ann.USED_INODES_PERCENTAGE,
    "free_inodes_percentage": ann.FREE_INODES_PERCENTAGE,
    "prev_size": ann.PREV_SIZE,
    "new_size": ann.NEW_SIZE,
}

_STATUS_FIELDS = {
    "last_check": "lastCheck",
    "next_check": "nextCheck",
    "used_space_percentage": "usedSpacePercentage",
    "free_space_percentage": "freeSpacePercentage",
    "used_inodes_percentage": "usedInodesPercentage",
    "free_inodes_percentage": "freeInodesPercentage",
    "prev_size": "prevSize",
    "new_size": "newSize",
    "conditions": "conditions",
}


class AutoscalerStatus(BaseModel):
    last_check: Optional[datetime.datetime] = None
    next_check: Optional[datetime.datetime] = None
    used_space_percentage: Optional[str] = None
    free_space_percentage: Optional[str] = None
    used_inodes_percentage: Optional[str] = None
    free_inodes_percentage: Optional[str] = None
    prev_size: Optional[str] = None
    new_size: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)

    def _selected(self, include: Optional[Iterable[str]]) -> List[str]:
        if include is None:
            return list(_STATUS_FIELDS)
        wanted = set(include)
        unknown = wanted - set(_STATUS_FIELDS)
        if unknown:
            raise KeyError(f"unknown status fields: {sorted(unknown)}")
        return [f for f in _STATUS_FIELDS if f in wanted]

    # annotations (tag mode)
    def to_annotations(self, include: Optional[Iterable[str]] = None) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for f in self._selected(include):
            value = getattr(self, f)
            if f in ("last_check", "next_check"):
                if value is not None:
                    out[ann.LAST_CHECK if f == "last_check" else ann.NEXT_CHECK] = str(to_timestamp(value))
            elif f == "conditions":
                out[ann.CONDITIONS] = json.dumps([c.to_dict() for c in value])
            elif value is not None:
                out[_STATUS_ANNOTATIONS[f]] = value
        return out

    @classmethod
    def from_annotations(cls, annotations: Optional[Dict[str, str]]) -> "AutoscalerStatus":
        a = annotations or {}
        kwargs: Dict[str, Any] = {f: a.get(key) for f, key in _STATUS_ANNOTATIONS.items()}
        for f, key in (("last_check", ann.LAST_CHECK), ("next_check", ann.NEXT_CHECK)):
            raw = a.get(key)
            if raw:
                kwargs[f] = from_timestamp(int(raw))
        raw_conditions = a.get(ann.CONDITIONS)
        if raw_conditions:
            kwargs["conditions"] = [Condition.from_dict(c) for c in json.loads(raw_conditions)]
        return cls(**kwargs)

    # status subresource (autoscaler object)
    def to_status_dict(self, include: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in self._selected(include):
            value = getattr(self, f)
            key = _STATUS_FIELDS[f]
            if f in ("last_check", "next_check"):
                out[key] = to_rfc3339(value) if value is not None else None
            elif f == "conditions":
                out[key] = [c.to_dict() for c in value]
            else:
                out[key] = value
        return out

    @classmethod
    def from_status_dict(cls, status: Optional[Dict[str, Any]]) -> "AutoscalerStatus":
        s = status or {}
        kwargs: Dict[str, Any] = {}
        for f, key in _STATUS_FIELDS.items():
            raw = s.get(key)
            if raw in (None, ""):
                continue
            if f in ("last_check", "next_check"):
                kwargs[f] = parse_iso8601(raw)
            elif f == "conditions":
                kwargs[f] = [Condition.from_dict(c) for c in raw]
            else:
                kwargs[f] = str(raw)
        return cls(**kwargs)


# ---------------------------
# Object views
# ---------------------------
class ObjectView:
    """Read accessors over a raw (camelCase) API object dict."""

    kind = ""

    def __init__(self, obj: Dict[str, Any]):
        self.obj = obj

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.obj.setdefault("metadata", {})

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "")

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def key(self) -> VolumeKey:
        return VolumeKey(self.namespace, self.name)

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def generation(self) -> int:
        return int(self.metadata.get("generation") or 0)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.namespace}/{self.name})"


def _quantity_or_none(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    return parse_quantity_bytes(value)


class PersistentVolumeClaim(ObjectView):
    kind = KIND_PVC

    @property
    def spec(self) -> Dict[str, Any]:
        return self.obj.get("spec") or {}

    @property
    def status(self) -> Dict[str, Any]:
        return self.obj.get("status") or {}

    @property
    def storage_class_name(self) -> str:
        return self.spec.get("storageClassName") or ""

    @property
    def volume_mode(self) -> Optional[str]:
        return self.spec.get("volumeMode")

    @property
    def phase(self) -> Optional[str]:
        return self.status.get("phase")

    @property
    def requested_storage(self) -> Optional[str]:
        return ((self.spec.get("resources") or {}).get("requests") or {}).get("storage")

    @property
    def capacity_storage(self) -> Optional[str]:
        return (self.status.get("capacity") or {}).get("storage")

    @property
    def requested_bytes(self) -> Optional[int]:
        """spec.resources.requests.storage in bytes; InvalidQuantity if malformed."""
        return _quantity_or_none(self.requested_storage)

    @property
    def capacity_bytes(self) -> Optional[int]:
        """status.capacity.storage in bytes; InvalidQuantity if malformed."""
        return _quantity_or_none(self.capacity_storage)

    @property
    def conditions(self) -> List[Dict[str, Any]]:
        return self.status.get("conditions") or []

    def condition_true(self, type_: str) -> bool:
        for c in self.conditions:
            if c.get("type") == type_:
                return c.get("status") == CONDITION_TRUE
        return False


class StorageClass(ObjectView):
    kind = "StorageClass"

    @property
    def allow_volume_expansion(self) -> bool:
        return bool(self.obj.get("allowVolumeExpansion"))


class PersistentVolumeClaimAutoscaler(ObjectView):
    kind = KIND_AUTOSCALER

    @property
    def spec(self) -> Dict[str, Any]:
        return self.obj.get("spec") or {}

    @property
    def target_ref(self) -> Dict[str, Any]:
        return self.spec.get("targetRef") or {}

    @property
    def target_key(self) -> VolumeKey:
        return VolumeKey(self.namespace, self.target_ref.get("name", ""))

    @property
    def status(self) -> AutoscalerStatus:
        return AutoscalerStatus.from_status_dict(self.obj.get("status"))


__all__ = [
    "VolumeKey",
    "ObjectView",
    "ReconcileRequest",
    "KIND_PVC",
    "KIND_AUTOSCALER",
    "Condition",
    "find_condition",
    "set_status_condition",
    "AutoscalingPolicy",
    "AutoscalerStatus",
    "PersistentVolumeClaim",
    "StorageClass",
    "PersistentVolumeClaimAutoscaler",
    "CONDITION_TRUE",
    "CONDITION_FALSE",
    "CONDITION_UNKNOWN",
    "CONDITION_HEALTHY",
    "REASON_RECONCILING",
    "PVC_RESIZING",
    "PVC_FILESYSTEM_RESIZE_PENDING",
    "PVC_MODIFYING_VOLUME",
]
