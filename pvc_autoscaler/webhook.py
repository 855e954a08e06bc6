# pvc_autoscaler/webhook.py
"""
Defaulting and validation of PersistentVolumeClaimAutoscaler objects.

Only the admission logic lives here; callers hand in the raw object dict.
`validate()` collects every violation in one pass instead of stopping at
the first one.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.exceptions import BadPercentageValue, FieldError, InvalidQuantity, ValidationFailed
from pvc_autoscaler.models import KIND_AUTOSCALER, KIND_PVC
from pvc_autoscaler.utils.common import parse_percentage, parse_quantity_bytes
from pvc_autoscaler.utils.time_utils import parse_duration

SUPPORTED_TARGET_API_VERSION = "v1"
SUPPORTED_TARGET_KIND = KIND_PVC


def default(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Fill unset increaseBy / threshold with their defaults (in place)."""
    spec = obj.setdefault("spec", {})
    if not spec.get("increaseBy"):
        spec["increaseBy"] = ann.DEFAULT_INCREASE_BY
    if not spec.get("threshold"):
        spec["threshold"] = ann.DEFAULT_THRESHOLD
    return obj


def _check_percentage(errors: List[FieldError], path: str, value: Any):
    try:
        pct = parse_percentage(value)
    except BadPercentageValue as e:
        errors.append(FieldError(path, value, str(e)))
        return
    if pct == 0.0:
        errors.append(FieldError(path, value, "percentage value must not be zero"))


def _check_quantity(errors: List[FieldError], path: str, value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return parse_quantity_bytes(value)
    except InvalidQuantity as e:
        errors.append(FieldError(path, value, str(e)))
        return None


def validate(obj: Dict[str, Any]) -> List[FieldError]:
    errors: List[FieldError] = []
    kind = obj.get("kind")
    if kind not in (None, KIND_AUTOSCALER):
        return [FieldError("kind", kind, f"expected {KIND_AUTOSCALER} resource")]

    spec = obj.get("spec") or {}
    _check_percentage(errors, "spec.increaseBy", spec.get("increaseBy"))
    _check_percentage(errors, "spec.threshold", spec.get("threshold"))

    raw_max = spec.get("maxCapacity")
    max_capacity = _check_quantity(errors, "spec.maxCapacity", raw_max)
    if raw_max in (None, ""):
        errors.append(FieldError("spec.maxCapacity", raw_max, "max capacity is required"))
    elif max_capacity == 0:
        errors.append(FieldError("spec.maxCapacity", raw_max, "zero max capacity"))

    raw_min = spec.get("minCapacity")
    min_capacity = _check_quantity(errors, "spec.minCapacity", raw_min)
    if min_capacity is not None and max_capacity and min_capacity > max_capacity:
        errors.append(FieldError("spec.minCapacity", raw_min, "min capacity must not exceed max capacity"))

    raw_step = spec.get("minStepAbsolute")
    if _check_quantity(errors, "spec.minStepAbsolute", raw_step) == 0:
        errors.append(FieldError("spec.minStepAbsolute", raw_step, "zero min step absolute"))

    raw_cooldown = spec.get("cooldownDuration")
    if raw_cooldown not in (None, ""):
        try:
            if parse_duration(raw_cooldown) <= 0:
                errors.append(FieldError("spec.cooldownDuration", raw_cooldown, "cooldown duration must be positive"))
        except ValueError as e:
            errors.append(FieldError("spec.cooldownDuration", raw_cooldown, str(e)))

    ref = spec.get("targetRef") or {}
    if ref.get("apiVersion") != SUPPORTED_TARGET_API_VERSION:
        errors.append(FieldError(
            "spec.targetRef.apiVersion", ref.get("apiVersion"),
            f"unsupported apiVersion, expected {SUPPORTED_TARGET_API_VERSION}",
        ))
    if ref.get("kind") != SUPPORTED_TARGET_KIND:
        errors.append(FieldError("spec.targetRef.kind", ref.get("kind"), f"unsupported kind, expected {SUPPORTED_TARGET_KIND}"))
    if not ref.get("name"):
        errors.append(FieldError("spec.targetRef.name", ref.get("name", ""), "no target pvc specified"))
    return errors


def _raise_if_invalid(obj: Dict[str, Any]):
    errors = validate(obj)
    if errors:
        raise ValidationFailed(errors, KIND_AUTOSCALER, (obj.get("metadata") or {}).get("name"))


def validate_create(obj: Dict[str, Any]) -> None:
    _raise_if_invalid(obj)


def validate_update(old: Dict[str, Any], new: Dict[str, Any]) -> None:
    _raise_if_invalid(new)


def validate_delete(obj: Dict[str, Any]) -> None:
    return None
