# tests/test_logger.py
import json
import logging

from pvc_autoscaler.utils.logger import HumanFormatter, JSONFormatter, StructuredLoggerAdapter, get_logger


def _record(adapter, msg, **extra):
    captured = []

    class _Capture(logging.Handler):
        def emit(self, record):
            captured.append(record)

    handler = _Capture()
    adapter.logger.addHandler(handler)
    adapter.logger.setLevel(logging.INFO)
    try:
        adapter.info(msg, extra=extra)
    finally:
        adapter.logger.removeHandler(handler)
    return captured[0]


def test_json_formatter_carries_structured_extras():
    adapter = StructuredLoggerAdapter(get_logger("pvc_autoscaler.tests.json"), {"component": "reconciler"})
    record = _record(adapter, "resizing persistent volume claim", namespace="default", pvc="data")
    payload = json.loads(JSONFormatter(service_name="svc").format(record))
    assert payload["message"] == "resizing persistent volume claim"
    assert payload["service"] == "svc"
    assert payload["extra"] == {"component": "reconciler", "namespace": "default", "pvc": "data"}


def test_human_formatter_appends_pairs():
    adapter = StructuredLoggerAdapter(get_logger("pvc_autoscaler.tests.human"), {"component": "periodic"})
    line = HumanFormatter().format(_record(adapter.bind(namespace="ns"), "skipping persistentvolumeclaim", reason="NoMetrics"))
    assert line.endswith("skipping persistentvolumeclaim | component=periodic namespace=ns reason=NoMetrics")
