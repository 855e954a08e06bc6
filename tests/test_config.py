# tests/test_config.py
import os

import pytest

from pvc_autoscaler.config import Settings, load_settings
from pvc_autoscaler.exceptions import ConfigurationError
from pvc_autoscaler.utils.common import GiB


def test_defaults(tmp_path):
    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings.interval == 30.0
    assert settings.metrics_source == "prometheus"
    assert settings.prometheus_address == "http://localhost:9090"
    assert settings.scaling_resolution == GiB
    assert settings.stale_tolerance == GiB // 2
    assert settings.workers == 1
    assert settings.http_port == 8081
    assert settings.in_cluster is False


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PVC_AUTOSCALER_INTERVAL", "1m")
    monkeypatch.setenv("PVC_AUTOSCALER_METRICS_SOURCE", "Fake")
    monkeypatch.setenv("PVC_AUTOSCALER_SCALING_RESOLUTION", "512Mi")
    monkeypatch.setenv("PVC_AUTOSCALER_STALE_TOLERANCE", "100Mi")
    monkeypatch.setenv("PVC_AUTOSCALER_WORKERS", "4")
    monkeypatch.setenv("PVC_AUTOSCALER_LOG_JSON", "true")
    monkeypatch.setenv("PVC_AUTOSCALER_PROMETHEUS_ADDRESS", "http://prometheus:9090/")
    settings = load_settings(str(tmp_path / "missing.env"))
    assert settings.interval == 60.0
    assert settings.metrics_source == "fake"
    assert settings.scaling_resolution == 512 * 1024 ** 2
    assert settings.stale_tolerance == 100 * 1024 ** 2
    assert settings.workers == 4
    assert settings.log_json is True
    assert settings.prometheus_address == "http://prometheus:9090"


def test_dotenv_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("PVC_AUTOSCALER_QUEUE_SIZE=7\n")
    try:
        settings = load_settings(str(env_file))
    finally:
        os.environ.pop("PVC_AUTOSCALER_QUEUE_SIZE", None)
    assert settings.queue_size == 7


@pytest.mark.parametrize(
    "var,value",
    [
        ("PVC_AUTOSCALER_INTERVAL", "soon"),
        ("PVC_AUTOSCALER_INTERVAL", "0s"),
        ("PVC_AUTOSCALER_METRICS_SOURCE", "graphite"),
        ("PVC_AUTOSCALER_WORKERS", "many"),
        ("PVC_AUTOSCALER_WORKERS", "0"),
        ("PVC_AUTOSCALER_SCALING_RESOLUTION", "huge"),
    ],
)
def test_invalid_values(monkeypatch, tmp_path, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(ConfigurationError):
        load_settings(str(tmp_path / "missing.env"))


def test_settings_validate_directly():
    with pytest.raises(ConfigurationError):
        Settings(scaling_resolution=0)
    assert Settings(scaling_resolution=GiB, stale_tolerance=0).stale_tolerance == 0
