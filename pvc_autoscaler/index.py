# pvc_autoscaler/index.py
"""
Enabled-volume index.

The periodic runner lists targets by `INDEX_KEY == "true"`. Stores evaluate
the indexer functions below to decide which objects match.
"""

from typing import Any, Dict, List

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.models import KIND_AUTOSCALER, KIND_PVC

INDEX_KEY = "pvc.autoscaling.io/idx"
INDEX_VALUE_ENABLED = "true"


def pvc_indexer(obj: Dict[str, Any]) -> List[str]:
    """Index a PersistentVolumeClaim by its is-enabled annotation value."""
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    value = annotations.get(ann.IS_ENABLED)
    if value is None:
        return []
    return [value]


def autoscaler_indexer(obj: Dict[str, Any]) -> List[str]:
    """Every PersistentVolumeClaimAutoscaler is enabled by existing."""
    return [INDEX_VALUE_ENABLED]


INDEXERS = {
    KIND_PVC: pvc_indexer,
    KIND_AUTOSCALER: autoscaler_indexer,
}


def matches(kind: str, obj: Dict[str, Any], value: str = INDEX_VALUE_ENABLED) -> bool:
    indexer = INDEXERS.get(kind)
    if indexer is None:
        return False
    return value in indexer(obj)
