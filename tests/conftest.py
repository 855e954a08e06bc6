"""
PVC Autoscaler Pytest Configuration
-----------------------------------

Centralized fixtures for all tests.

Features:
 - Auto-clean PVC_AUTOSCALER_* environment variables
 - Isolated Prometheus registry per test
 - In-memory object store and event recorder
 - Builders for PersistentVolumeClaim, StorageClass and
   PersistentVolumeClaimAutoscaler objects
"""

import os
import logging
from typing import Any, Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from pvc_autoscaler import annotations as ann
from pvc_autoscaler.events import RecordingEventRecorder
from pvc_autoscaler.metrics import AutoscalerMetrics
from pvc_autoscaler.models import KIND_AUTOSCALER, KIND_PVC
from pvc_autoscaler.store import KIND_STORAGE_CLASS, InMemoryStore

# -----------------------------------------------------------------------------
# Logging setup for tests
# -----------------------------------------------------------------------------
LOG = logging.getLogger("pvc_autoscaler.tests")
LOG.setLevel(logging.WARNING)

STORAGE_CLASS = "standard"


# -----------------------------------------------------------------------------
# Environment sanitization
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Drop settings from the developer's shell so config tests see defaults."""
    for var in list(os.environ):
        if var.startswith("PVC_AUTOSCALER_"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("KUBECONFIG", raising=False)
    yield


# -----------------------------------------------------------------------------
# Core collaborators
# -----------------------------------------------------------------------------
@pytest.fixture
def metrics():
    return AutoscalerMetrics(CollectorRegistry())


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def recorder():
    return RecordingEventRecorder()


# -----------------------------------------------------------------------------
# Object builders
# -----------------------------------------------------------------------------
def build_pvc(
    name: str = "pvc-1",
    namespace: str = "default",
    requested: str = "1Gi",
    capacity: Optional[str] = None,
    storage_class: Optional[str] = STORAGE_CLASS,
    volume_mode: Optional[str] = "Filesystem",
    phase: str = "Bound",
    enabled: bool = True,
    max_capacity: Optional[str] = "100Gi",
    annotations: Optional[Dict[str, str]] = None,
    conditions: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    a: Dict[str, str] = {}
    if enabled:
        a[ann.IS_ENABLED] = "true"
        if max_capacity is not None:
            a[ann.MAX_CAPACITY] = max_capacity
    a.update(annotations or {})
    spec: Dict[str, Any] = {
        "accessModes": ["ReadWriteOnce"],
        "resources": {"requests": {"storage": requested}},
    }
    if storage_class is not None:
        spec["storageClassName"] = storage_class
    if volume_mode is not None:
        spec["volumeMode"] = volume_mode
    return {
        "apiVersion": "v1",
        "kind": KIND_PVC,
        "metadata": {"name": name, "namespace": namespace, "annotations": a},
        "spec": spec,
        "status": {
            "phase": phase,
            "capacity": {"storage": capacity or requested},
            "conditions": conditions or [],
        },
    }


def build_storage_class(name: str = STORAGE_CLASS, allow_expansion: bool = True) -> Dict[str, Any]:
    return {
        "apiVersion": "storage.k8s.io/v1",
        "kind": KIND_STORAGE_CLASS,
        "metadata": {"name": name},
        "provisioner": "csi.example.com",
        "allowVolumeExpansion": allow_expansion,
    }


def build_autoscaler(
    name: str = "pvca-1",
    namespace: str = "default",
    target: str = "pvc-1",
    max_capacity: Optional[str] = "10Gi",
    **spec_fields: Any,
) -> Dict[str, Any]:
    spec: Dict[str, Any] = {
        "targetRef": {"apiVersion": "v1", "kind": KIND_PVC, "name": target},
        "threshold": "10%",
        "increaseBy": "10%",
    }
    if max_capacity is not None:
        spec["maxCapacity"] = max_capacity
    spec.update(spec_fields)
    return {
        "apiVersion": "autoscaling.pvc.io/v1alpha1",
        "kind": KIND_AUTOSCALER,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


@pytest.fixture
def make_pvc():
    return build_pvc


@pytest.fixture
def make_storage_class():
    return build_storage_class


@pytest.fixture
def make_autoscaler():
    return build_autoscaler


@pytest.fixture
def expandable_store(store):
    """Store pre-populated with an expandable storage class."""
    store.add(build_storage_class())
    return store
