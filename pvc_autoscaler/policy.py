# pvc_autoscaler/policy.py
"""
PVC Autoscaler policy resolution
--------------------------------

A *target* pairs the volume being scaled with the owner of its policy:

 - AnnotatedTarget: a PersistentVolumeClaim opted in through annotations;
   policy and status both live in the claim's annotations.
 - AutoscalerTarget: a PersistentVolumeClaimAutoscaler naming a claim in
   its targetRef; policy lives in the autoscaler spec, status in its status
   subresource.

Both expose the same small surface to the decision engine and reconciler:
key / request / resolve_threshold / resolve_policy / status / update_status.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.exceptions import (
    AutoscalerError,
    BadPercentageValue,
    InvalidPolicy,
    InvalidQuantity,
    NoMaxCapacity,
    NotFound,
    TargetNotFound,
)
from pvc_autoscaler.models import (
    KIND_AUTOSCALER,
    KIND_PVC,
    AutoscalerStatus,
    AutoscalingPolicy,
    ObjectView,
    PersistentVolumeClaim,
    PersistentVolumeClaimAutoscaler,
    ReconcileRequest,
    VolumeKey,
)
from pvc_autoscaler.store import ObjectStore
from pvc_autoscaler.utils.common import parse_percentage, parse_quantity_bytes
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger
from pvc_autoscaler.utils.time_utils import parse_duration

LOG = get_logger("pvc_autoscaler.policy")
LAD = StructuredLoggerAdapter(LOG, {"component": "policy"})


def _percentage(field: str, raw: Optional[str], default: str) -> float:
    value = raw if raw not in (None, "") else default
    try:
        pct = parse_percentage(value)
    except BadPercentageValue as e:
        raise InvalidPolicy(f"cannot parse {field}: {e}") from e
    if pct == 0.0:
        raise InvalidPolicy(f"{field} must not be zero")
    return pct


def _quantity(field: str, raw: Optional[str]) -> Optional[int]:
    if raw in (None, ""):
        return None
    try:
        return parse_quantity_bytes(raw)
    except InvalidQuantity as e:
        raise InvalidPolicy(f"cannot parse {field}: {e}") from e


def _resize_patch(new_size: str) -> Dict[str, Any]:
    return {"spec": {"resources": {"requests": {"storage": new_size}}}}


class Target(ABC):
    """A volume plus the object carrying its autoscaling policy."""

    def __init__(self, pvc: PersistentVolumeClaim):
        self.pvc = pvc

    @property
    @abstractmethod
    def owner(self) -> ObjectView:
        ...

    @property
    def key(self) -> VolumeKey:
        return self.pvc.key

    def request(self) -> ReconcileRequest:
        return ReconcileRequest(self.owner.kind, self.owner.namespace, self.owner.name)

    @abstractmethod
    def policy_values(self) -> Dict[str, Optional[str]]:
        """Raw policy strings keyed by AutoscalingPolicy field name."""

    def resolve_threshold(self) -> float:
        return _percentage("threshold", self.policy_values().get("threshold"), ann.DEFAULT_THRESHOLD)

    def resolve_max_capacity(self) -> int:
        max_capacity = _quantity("max capacity", self.policy_values().get("max_capacity"))
        if not max_capacity:
            raise NoMaxCapacity("no max capacity specified")
        return max_capacity

    def resolve_policy(self) -> AutoscalingPolicy:
        """
        Effective policy with defaults applied. Threshold problems surface
        before a missing max capacity.
        """
        values = self.policy_values()
        threshold = self.resolve_threshold()
        max_capacity = self.resolve_max_capacity()
        step = _percentage("increase-by", values.get("increase_by"), ann.DEFAULT_INCREASE_BY)
        cooldown_raw = values.get("cooldown_duration")
        try:
            cooldown = parse_duration(cooldown_raw) if cooldown_raw else None
        except ValueError as e:
            raise InvalidPolicy(f"cannot parse cooldown duration: {e}") from e
        try:
            return AutoscalingPolicy(
                max_capacity=max_capacity,
                min_capacity=_quantity("min capacity", values.get("min_capacity")),
                threshold_percent=threshold,
                step_percent=step,
                min_step_absolute=_quantity("min step absolute", values.get("min_step_absolute")),
                cooldown_duration=cooldown,
            )
        except ValidationError as e:
            raise InvalidPolicy(f"invalid policy: {e.errors()[0]['msg']}") from e

    @abstractmethod
    def status(self) -> AutoscalerStatus:
        ...

    @abstractmethod
    async def update_status(self, store: ObjectStore, status: AutoscalerStatus, fields: Iterable[str]) -> None:
        """Persist the selected status fields."""

    @abstractmethod
    async def apply_resize(self, store: ObjectStore, new_size: str, status: AutoscalerStatus, fields: Iterable[str]) -> None:
        """
        Set spec.resources.requests.storage to `new_size` with a patch
        conditional on the claim's last-read resourceVersion, and record the
        selected status fields. Raises Conflict if the claim changed.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.owner.kind} {self.owner.namespace}/{self.owner.name} -> {self.key})"


class AnnotatedTarget(Target):
    @property
    def owner(self) -> ObjectView:
        return self.pvc

    def policy_values(self) -> Dict[str, Optional[str]]:
        a = self.pvc.annotations
        return {
            "threshold": a.get(ann.THRESHOLD),
            "increase_by": a.get(ann.INCREASE_BY),
            "max_capacity": a.get(ann.MAX_CAPACITY),
            "min_capacity": a.get(ann.MIN_CAPACITY),
            "min_step_absolute": a.get(ann.MIN_STEP_ABSOLUTE),
            "cooldown_duration": a.get(ann.COOLDOWN_DURATION),
        }

    def status(self) -> AutoscalerStatus:
        return AutoscalerStatus.from_annotations(self.pvc.annotations)

    async def update_status(self, store: ObjectStore, status: AutoscalerStatus, fields: Iterable[str]) -> None:
        patch = {"metadata": {"annotations": status.to_annotations(fields)}}
        updated = await store.patch(KIND_PVC, self.pvc.obj, patch, optimistic=False)
        self.pvc = PersistentVolumeClaim(updated)

    async def apply_resize(self, store: ObjectStore, new_size: str, status: AutoscalerStatus, fields: Iterable[str]) -> None:
        patch = _resize_patch(new_size)
        patch["metadata"] = {"annotations": status.to_annotations(fields)}
        updated = await store.patch(KIND_PVC, self.pvc.obj, patch, optimistic=True)
        self.pvc = PersistentVolumeClaim(updated)


class AutoscalerTarget(Target):
    def __init__(self, autoscaler: PersistentVolumeClaimAutoscaler, pvc: PersistentVolumeClaim):
        super().__init__(pvc)
        self.autoscaler = autoscaler

    @property
    def owner(self) -> ObjectView:
        return self.autoscaler

    def policy_values(self) -> Dict[str, Optional[str]]:
        spec = self.autoscaler.spec

        def _str(key: str) -> Optional[str]:
            value = spec.get(key)
            return None if value is None else str(value)

        return {
            "threshold": _str("threshold"),
            "increase_by": _str("increaseBy"),
            "max_capacity": _str("maxCapacity"),
            "min_capacity": _str("minCapacity"),
            "min_step_absolute": _str("minStepAbsolute"),
            "cooldown_duration": _str("cooldownDuration"),
        }

    def status(self) -> AutoscalerStatus:
        return self.autoscaler.status

    async def update_status(self, store: ObjectStore, status: AutoscalerStatus, fields: Iterable[str]) -> None:
        patch = {"status": status.to_status_dict(fields)}
        updated = await store.patch_status(KIND_AUTOSCALER, self.autoscaler.obj, patch)
        self.autoscaler = PersistentVolumeClaimAutoscaler(updated)

    async def apply_resize(self, store: ObjectStore, new_size: str, status: AutoscalerStatus, fields: Iterable[str]) -> None:
        updated = await store.patch(KIND_PVC, self.pvc.obj, _resize_patch(new_size), optimistic=True)
        self.pvc = PersistentVolumeClaim(updated)
        await self.update_status(store, status, fields)


# ---------------------------
# Loading targets
# ---------------------------
async def _autoscaler_target(store: ObjectStore, autoscaler: PersistentVolumeClaimAutoscaler) -> AutoscalerTarget:
    ref = autoscaler.target_ref
    if ref.get("kind", KIND_PVC) != KIND_PVC or not ref.get("name"):
        raise TargetNotFound(f"unsupported target reference {ref}")
    namespace, name = autoscaler.target_key
    try:
        pvc = PersistentVolumeClaim(await store.get(KIND_PVC, namespace, name))
    except NotFound as e:
        raise TargetNotFound(f"target persistentvolumeclaim {namespace}/{name} not found") from e
    return AutoscalerTarget(autoscaler, pvc)


async def list_targets(
    store: ObjectStore,
    on_error: Optional[Callable[[ObjectView, AutoscalerError], Any]] = None,
) -> List[Target]:
    """
    All enabled targets. An autoscaler object takes precedence over
    annotations on the same claim. Objects whose target cannot be loaded are
    reported through `on_error` and left out.
    """
    targets: List[Target] = []
    claimed = set()
    for raw in await store.list_indexed(KIND_AUTOSCALER):
        autoscaler = PersistentVolumeClaimAutoscaler(raw)
        try:
            target = await _autoscaler_target(store, autoscaler)
        except TargetNotFound as e:
            LAD.warning("skipping persistentvolumeclaimautoscaler: %s", e, extra={"namespace": autoscaler.namespace, "pvc": autoscaler.name})
            if on_error is not None:
                on_error(autoscaler, e)
            continue
        if target.key in claimed:
            LAD.warning("persistentvolumeclaim %s is targeted by more than one autoscaler", target.key)
            continue
        claimed.add(target.key)
        targets.append(target)

    for raw in await store.list_indexed(KIND_PVC):
        pvc = PersistentVolumeClaim(raw)
        if pvc.key in claimed:
            LAD.debug("annotations ignored, persistentvolumeclaim has an autoscaler object", extra={"namespace": pvc.namespace, "pvc": pvc.name})
            continue
        targets.append(AnnotatedTarget(pvc))
    return targets


async def load_target(store: ObjectStore, request: ReconcileRequest) -> Optional[Target]:
    """
    Fresh read of the target behind `request`. Returns None when the owner
    no longer opts into autoscaling; NotFound propagates when it is gone.
    """
    if request.kind == KIND_PVC:
        pvc = PersistentVolumeClaim(await store.get(KIND_PVC, request.namespace, request.name))
        if not ann.is_enabled(pvc.annotations):
            return None
        return AnnotatedTarget(pvc)
    if request.kind == KIND_AUTOSCALER:
        autoscaler = PersistentVolumeClaimAutoscaler(await store.get(KIND_AUTOSCALER, request.namespace, request.name))
        return await _autoscaler_target(store, autoscaler)
    raise InvalidPolicy(f"unsupported target kind {request.kind}")
