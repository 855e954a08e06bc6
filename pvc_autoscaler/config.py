# pvc_autoscaler/config.py
"""
PVC Autoscaler configuration
----------------------------

Settings are read from `PVC_AUTOSCALER_*` environment variables (a `.env`
file in the working directory is loaded first when present) and collected
into a frozen `Settings` instance by `load_settings()`.

Provides:
 - Settings dataclass with documented defaults
 - load_settings(): env -> Settings, raising ConfigurationError on bad input
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from pvc_autoscaler.exceptions import ConfigurationError, InvalidQuantity
from pvc_autoscaler.utils.common import get_env, parse_quantity_bytes
from pvc_autoscaler.utils.time_utils import parse_duration

ENV_PREFIX = "PVC_AUTOSCALER_"

DEFAULT_INTERVAL = "30s"
DEFAULT_PROMETHEUS_ADDRESS = "http://localhost:9090"
DEFAULT_METRICS_SOURCE = "prometheus"
DEFAULT_QUEUE_SIZE = 100
DEFAULT_WORKERS = 1
DEFAULT_SCALING_RESOLUTION = "1Gi"
DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 8081

METRICS_SOURCES = ("prometheus", "fake")


@dataclass(frozen=True)
class Settings:
    interval: float = 30.0
    prometheus_address: str = DEFAULT_PROMETHEUS_ADDRESS
    metrics_source: str = DEFAULT_METRICS_SOURCE
    queue_size: int = DEFAULT_QUEUE_SIZE
    workers: int = DEFAULT_WORKERS
    scaling_resolution: int = 1024 ** 3
    # |spec request - reported capacity| above this marks metrics as stale
    stale_tolerance: Optional[int] = None
    log_level: str = "INFO"
    log_json: bool = False
    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT
    in_cluster: bool = False
    kubeconfig: Optional[str] = None

    def __post_init__(self):
        if self.interval <= 0:
            raise ConfigurationError(f"interval must be positive, got {self.interval}")
        if self.metrics_source not in METRICS_SOURCES:
            raise ConfigurationError(
                f"unknown metrics source {self.metrics_source!r}; expected one of {', '.join(METRICS_SOURCES)}"
            )
        if self.queue_size < 0:
            raise ConfigurationError("queue size must not be negative")
        if self.workers < 1:
            raise ConfigurationError("at least one reconcile worker is required")
        if self.scaling_resolution <= 0:
            raise ConfigurationError("scaling resolution must be positive")
        if self.stale_tolerance is None:
            object.__setattr__(self, "stale_tolerance", self.scaling_resolution // 2)
        elif self.stale_tolerance < 0:
            raise ConfigurationError("stale metrics tolerance must not be negative")


def _env(name: str) -> str:
    return ENV_PREFIX + name


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """Build Settings from the environment (after loading `.env` if present)."""
    load_dotenv(dotenv_path, override=False)
    try:
        interval = parse_duration(get_env(_env("INTERVAL"), DEFAULT_INTERVAL))
        resolution = parse_quantity_bytes(get_env(_env("SCALING_RESOLUTION"), DEFAULT_SCALING_RESOLUTION))
        stale_raw = get_env(_env("STALE_TOLERANCE"))
        stale = parse_quantity_bytes(stale_raw) if stale_raw is not None else None
        return Settings(
            interval=interval,
            prometheus_address=get_env(_env("PROMETHEUS_ADDRESS"), DEFAULT_PROMETHEUS_ADDRESS).rstrip("/"),
            metrics_source=get_env(_env("METRICS_SOURCE"), DEFAULT_METRICS_SOURCE).strip().lower(),
            queue_size=get_env(_env("QUEUE_SIZE"), DEFAULT_QUEUE_SIZE, int),
            workers=get_env(_env("WORKERS"), DEFAULT_WORKERS, int),
            scaling_resolution=resolution,
            stale_tolerance=stale,
            log_level=get_env(_env("LOG_LEVEL"), "INFO").upper(),
            log_json=get_env(_env("LOG_JSON"), False, bool),
            http_host=get_env(_env("HTTP_HOST"), DEFAULT_HTTP_HOST),
            http_port=get_env(_env("HTTP_PORT"), DEFAULT_HTTP_PORT, int),
            in_cluster=get_env(_env("IN_CLUSTER"), False, bool),
            kubeconfig=os.getenv("KUBECONFIG") or None,
        )
    except (ValueError, InvalidQuantity) as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e
