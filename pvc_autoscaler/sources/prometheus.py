# pvc_autoscaler/sources/prometheus.py
"""
Prometheus metrics source.

Runs one instant query per snapshot field against the Prometheus HTTP API
(`GET {address}/api/v1/query`) and merges the resulting vectors by their
`namespace` / `persistentvolumeclaim` labels.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import aiohttp

from pvc_autoscaler.exceptions import ConfigurationError, MetricsQueryError
from pvc_autoscaler.models import VolumeKey
from pvc_autoscaler.sources.base import (
    KUBELET_VOLUME_STATS_AVAILABLE_BYTES,
    KUBELET_VOLUME_STATS_CAPACITY_BYTES,
    KUBELET_VOLUME_STATS_INODES,
    KUBELET_VOLUME_STATS_INODES_FREE,
    Metrics,
    MetricsSource,
    VolumeInfo,
)
from pvc_autoscaler.utils.logger import StructuredLoggerAdapter, get_logger

LOG = get_logger("pvc_autoscaler.sources.prometheus")
LAD = StructuredLoggerAdapter(LOG, {"component": "prometheus-source"})

QUERY_PATH = "/api/v1/query"


class PrometheusSource(MetricsSource):
    def __init__(
        self,
        address: str,
        session: Optional[aiohttp.ClientSession] = None,
        available_bytes_query: str = KUBELET_VOLUME_STATS_AVAILABLE_BYTES,
        capacity_bytes_query: str = KUBELET_VOLUME_STATS_CAPACITY_BYTES,
        available_inodes_query: str = KUBELET_VOLUME_STATS_INODES_FREE,
        capacity_inodes_query: str = KUBELET_VOLUME_STATS_INODES,
    ):
        if not address:
            raise ConfigurationError("no prometheus address specified")
        self.address = address.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self.queries: Dict[str, str] = {
            "available_bytes": available_bytes_query,
            "capacity_bytes": capacity_bytes_query,
            "available_inodes": available_inodes_query,
            "capacity_inodes": capacity_inodes_query,
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # no request timeout; a slow backend stalls the tick until cancelled
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def get(self) -> Metrics:
        result: Metrics = {}
        for field, query in self.queries.items():
            await self._collect(query, result, lambda info, v, f=field: setattr(info, f, v))
        return result

    async def query(self, query: str) -> List[Dict[str, Any]]:
        """Run one instant query and return its vector samples."""
        session = await self._get_session()
        url = self.address + QUERY_PATH
        try:
            async with session.get(url, params={"query": query}) as resp:
                try:
                    payload = await resp.json(content_type=None)
                except ValueError as e:
                    raise MetricsQueryError(f"query {query!r}: invalid response (HTTP {resp.status})") from e
                status = resp.status
        except aiohttp.ClientError as e:
            raise MetricsQueryError(f"query {query!r}: {e}") from e

        if not isinstance(payload, dict):
            raise MetricsQueryError(f"query {query!r}: unexpected response body")
        for warning in payload.get("warnings") or []:
            LAD.info("%s", warning, extra={"query": query})
        if payload.get("status") != "success" or status >= 400:
            raise MetricsQueryError(
                f"query {query!r} failed (HTTP {status}): {payload.get('errorType', '')} {payload.get('error', '')}".strip()
            )
        data = payload.get("data") or {}
        if data.get("resultType") != "vector":
            raise MetricsQueryError(f"expected vector result, got {data.get('resultType')}")
        return data.get("result") or []

    async def _collect(self, query: str, result: Metrics, assign: Callable[[VolumeInfo, int], None]):
        for sample in await self.query(query):
            labels = sample.get("metric") or {}
            if "namespace" not in labels:
                raise MetricsQueryError(f"metric does not provide namespace label: {labels}")
            if "persistentvolumeclaim" not in labels:
                raise MetricsQueryError(f"metric does not provide persistentvolumeclaim label: {labels}")
            try:
                value = int(float(sample["value"][1]))
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise MetricsQueryError(f"bad sample value for {labels}: {sample.get('value')}") from e
            key = VolumeKey(labels["namespace"], labels["persistentvolumeclaim"])
            info = result.get(key)
            if info is None:
                info = result[key] = VolumeInfo()
            assign(info, value)
