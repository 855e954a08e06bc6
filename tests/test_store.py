# tests/test_store.py
"""
In-memory object store: merge patch semantics, optimistic concurrency,
status subresource and the enabled index.
"""

import pytest

from pvc_autoscaler.exceptions import Conflict, NotFound
from pvc_autoscaler.index import autoscaler_indexer, matches, pvc_indexer
from pvc_autoscaler.models import KIND_AUTOSCALER, KIND_PVC
from pvc_autoscaler.store import json_merge_patch, with_resource_version


def test_json_merge_patch():
    target = {"a": 1, "b": {"c": 2, "d": 3}, "e": [1, 2]}
    patch = {"a": None, "b": {"c": 5}, "e": [3], "f": "new"}
    assert json_merge_patch(target, patch) == {"b": {"c": 5, "d": 3}, "e": [3], "f": "new"}
    # inputs are not modified
    assert target["a"] == 1


def test_with_resource_version():
    patched = with_resource_version({"spec": {}}, "42")
    assert patched["metadata"]["resourceVersion"] == "42"


def test_indexers(make_pvc, make_autoscaler):
    assert pvc_indexer(make_pvc()) == ["true"]
    assert pvc_indexer(make_pvc(enabled=False)) == []
    assert autoscaler_indexer(make_autoscaler()) == ["true"]
    assert not matches(KIND_PVC, make_pvc(annotations={"pvc.autoscaling.io/is-enabled": "yes"}))
    assert not matches("ConfigMap", {"metadata": {}})


@pytest.mark.asyncio
async def test_list_indexed_filters_disabled(store, make_pvc, make_autoscaler):
    store.add(make_pvc(name="on"))
    store.add(make_pvc(name="off", enabled=False))
    store.add(make_autoscaler())
    names = [o["metadata"]["name"] for o in await store.list_indexed(KIND_PVC)]
    assert names == ["on"]
    assert len(await store.list_indexed(KIND_AUTOSCALER)) == 1


@pytest.mark.asyncio
async def test_get_missing_raises_not_found(store):
    with pytest.raises(NotFound):
        await store.get(KIND_PVC, "default", "missing")


@pytest.mark.asyncio
async def test_optimistic_patch_conflicts_on_stale_object(store, make_pvc):
    stale = store.add(make_pvc())
    store.mutate(KIND_PVC, "default", "pvc-1", lambda o: o["metadata"].update(labels={"x": "y"}))
    with pytest.raises(Conflict):
        await store.patch(KIND_PVC, stale, {"spec": {"resources": {"requests": {"storage": "2Gi"}}}})
    # a non-optimistic patch still goes through
    updated = await store.patch(KIND_PVC, stale, {"metadata": {"annotations": {"k": "v"}}}, optimistic=False)
    assert updated["metadata"]["annotations"]["k"] == "v"
    assert updated["metadata"]["labels"] == {"x": "y"}


@pytest.mark.asyncio
async def test_spec_patch_bumps_generation_and_resource_version(store, make_pvc):
    obj = store.add(make_pvc())
    updated = await store.patch(KIND_PVC, obj, {"spec": {"resources": {"requests": {"storage": "2Gi"}}}})
    assert updated["metadata"]["generation"] == 2
    assert int(updated["metadata"]["resourceVersion"]) > int(obj["metadata"]["resourceVersion"])
    assert len(store.spec_patches()) == 1


@pytest.mark.asyncio
async def test_status_patch_only_touches_status(store, make_autoscaler):
    obj = store.add(make_autoscaler())
    updated = await store.patch_status(
        KIND_AUTOSCALER, obj, {"spec": {"maxCapacity": "1Ti"}, "status": {"newSize": "2Gi"}}
    )
    assert updated["status"] == {"newSize": "2Gi"}
    assert updated["spec"]["maxCapacity"] == "10Gi"
    assert updated["metadata"]["generation"] == 1


@pytest.mark.asyncio
async def test_regular_patch_ignores_status(store, make_pvc):
    obj = store.add(make_pvc())
    updated = await store.patch(KIND_PVC, obj, {"status": {"phase": "Lost"}})
    assert updated["status"]["phase"] == "Bound"
