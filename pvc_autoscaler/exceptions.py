# pvc_autoscaler/exceptions.py
"""
PVC Autoscaler error hierarchy
------------------------------

Every error raised by the autoscaler derives from `AutoscalerError` so the
periodic runner and the reconciler workers can log-and-continue on one base
class without catching unrelated programming errors.

Skip outcomes (`SkipReason` subclasses) carry a stable `reason` string that
is used verbatim as the `reason` label of `pvc_autoscaler_skipped_total`.
"""

from __future__ import annotations

from typing import Any, List, Optional


class AutoscalerError(Exception):
    """Base class for all autoscaler errors."""

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = str(self.args[0])
        self.details = details


class ConfigurationError(AutoscalerError):
    """invalid or missing configuration"""


# ---------------------------
# Skip outcomes
# ---------------------------
class SkipReason(AutoscalerError):
    """Named, expected outcome which stops evaluation of a volume for this tick."""

    reason: str = "Skipped"


class NoMetrics(SkipReason):
    """no metrics found"""

    reason = "NoMetrics"


class StorageClassNotFound(SkipReason):
    """no storage class found"""

    reason = "StorageClassNotFound"


class StorageClassDoesNotSupportExpansion(SkipReason):
    """storage class does not support expansion"""

    reason = "StorageClassDoesNotSupportExpansion"


class StaleMetrics(SkipReason):
    """metrics data not up to date"""

    reason = "StaleMetrics"


class NoMaxCapacity(SkipReason):
    """no max capacity specified"""

    reason = "NoMaxCapacity"


class VolumeModeIsNotFilesystem(SkipReason):
    """volume mode is not filesystem"""

    reason = "VolumeModeIsNotFilesystem"


class InvalidPolicy(SkipReason):
    """autoscaling policy cannot be resolved"""

    reason = "InvalidPolicy"


class TargetNotFound(SkipReason):
    """target persistent volume claim not found"""

    reason = "TargetNotFound"


# ---------------------------
# Value errors
# ---------------------------
class CapacityIsZero(AutoscalerError, ZeroDivisionError):
    """capacity is zero"""


class BadPercentageValue(AutoscalerError, ValueError):
    """bad percentage value"""


class InvalidQuantity(AutoscalerError, ValueError):
    """invalid quantity"""


# ---------------------------
# Object store
# ---------------------------
class StoreError(AutoscalerError):
    """object store request failed"""


class NotFound(StoreError):
    """object not found"""


class Conflict(StoreError):
    """object has been modified; resourceVersion mismatch"""


# ---------------------------
# Reconciler / metrics / plumbing
# ---------------------------
class MetricsQueryError(AutoscalerError):
    """metrics query failed"""


class ReconcileError(AutoscalerError):
    """reconcile failed"""


class QueueClosed(AutoscalerError):
    """event queue is closed"""


class FieldError:
    """A single validation violation, addressed by its field path."""

    __slots__ = ("path", "value", "detail")

    def __init__(self, path: str, value: Any, detail: str) -> None:
        self.path = path
        self.value = value
        self.detail = detail

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldError):
            return NotImplemented
        return (self.path, self.value, self.detail) == (other.path, other.value, other.detail)

    def __repr__(self) -> str:
        return f"FieldError(path={self.path!r}, value={self.value!r}, detail={self.detail!r})"

    def __str__(self) -> str:
        return f"{self.path}: Invalid value: {self.value!r}: {self.detail}"


class ValidationFailed(AutoscalerError):
    """Raised by the validation gate with every violation found."""

    def __init__(self, errors: List[FieldError], kind: str = "PersistentVolumeClaimAutoscaler", name: Optional[str] = None) -> None:
        self.errors = list(errors)
        self.kind = kind
        self.name = name
        joined = ", ".join(str(e) for e in self.errors)
        subject = f'{kind} "{name}"' if name else kind
        super().__init__(f"{subject} is invalid: [{joined}]")


__all__ = [
    "AutoscalerError",
    "ConfigurationError",
    "SkipReason",
    "NoMetrics",
    "StorageClassNotFound",
    "StorageClassDoesNotSupportExpansion",
    "StaleMetrics",
    "NoMaxCapacity",
    "VolumeModeIsNotFilesystem",
    "InvalidPolicy",
    "TargetNotFound",
    "CapacityIsZero",
    "BadPercentageValue",
    "InvalidQuantity",
    "StoreError",
    "NotFound",
    "Conflict",
    "MetricsQueryError",
    "ReconcileError",
    "QueueClosed",
    "FieldError",
    "ValidationFailed",
]
