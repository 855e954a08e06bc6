# pvc_autoscaler/utils/logger.py
"""
PVC Autoscaler Logger Utilities
-------------------------------
Logging setup shared by every autoscaler component.

Features:
 - JSONFormatter and human-friendly formatter
 - Console handler configured once per process
 - Contextual logger adapter for structured + contextual logging
 - Helpers to configure logging from environment variables / settings

Usage:
    from pvc_autoscaler.utils.logger import configure_logging, get_logger
    configure_logging(level="DEBUG", json=True)
    log = get_logger("pvc_autoscaler.periodic")
    log.info("hello", extra={"namespace": "default", "pvc": "data"})
"""

from __future__ import annotations

import os
import sys
import json
import socket
import logging
import threading
from typing import Any, Dict, Optional

from pvc_autoscaler.utils.time_utils import iso_now

# -------------------------
# Constants & Env defaults
# -------------------------
DEFAULT_LOG_LEVEL = os.getenv("PVC_AUTOSCALER_LOG_LEVEL", "INFO").upper()
DEFAULT_SERVICE_NAME = "pvc-autoscaler"

# LogRecord attributes which are never treated as structured extras
_RESERVED_ATTRS = frozenset((
    "args", "msg", "levelname", "levelno", "name", "pathname", "filename", "module",
    "lineno", "funcName", "exc_info", "exc_text", "stack_info", "created", "msecs",
    "relativeCreated", "thread", "threadName", "processName", "process", "message",
    "asctime", "taskName",
))


def _get_hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return "unknown-host"


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS and not k.startswith("_")}


# -------------------------
# Formatters
# -------------------------
class JSONFormatter(logging.Formatter):
    """
    JSON formatter that attaches standard fields:
      - ts, level, logger, message, module, line
      - service, hostname, pid
      - optional: any structured extras (namespace, name, reason, ...)
    """
    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.service = service_name
        self.extra_fields = extra_fields or {}
        self.hostname = _get_hostname()
        self.pid = os.getpid()

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": iso_now(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "service": self.service,
            "hostname": self.hostname,
            "pid": self.pid,
        }
        extra = _record_extras(record)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        payload.update(self.extra_fields)
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """
    Human-friendly formatter. Structured extras are appended as key=value pairs.
    """
    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")
        self.service = service_name

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _record_extras(record)
        if extras:
            pairs = " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
            # exception text is already part of `base`
            head, sep, tail = base.partition("\n")
            base = f"{head} | {pairs}{sep}{tail}"
        return base


# -------------------------
# Configure logging
# -------------------------
_DEFAULT_CONFIGURED = False
_LOCK = threading.Lock()


def configure_logging(
    app_name: str = DEFAULT_SERVICE_NAME,
    level: Optional[str] = None,
    json: bool = False,
    extra_fields: Optional[Dict[str, Any]] = None,
    force: bool = False,
):
    """
    Configure root logging for the autoscaler process.

    Parameters:
      - app_name: service name inserted into JSON logs
      - level: logging level (e.g. "INFO")
      - json: if True use JSONFormatter, otherwise HumanFormatter
      - force: reconfigure even if logging was configured before
    """
    global _DEFAULT_CONFIGURED
    with _LOCK:
        if _DEFAULT_CONFIGURED and not force:
            return
        level = (level or DEFAULT_LOG_LEVEL).upper()
        root = logging.getLogger()
        root.setLevel(getattr(logging, level, logging.INFO))

        for h in list(root.handlers):
            if getattr(h, "_pvc_autoscaler", False):
                root.removeHandler(h)

        ch = logging.StreamHandler(stream=sys.stdout)
        if json:
            ch.setFormatter(JSONFormatter(service_name=app_name, extra_fields=extra_fields))
        else:
            ch.setFormatter(HumanFormatter(service_name=app_name))
        ch.setLevel(getattr(logging, level, logging.INFO))
        ch._pvc_autoscaler = True
        root.addHandler(ch)

        # kubernetes client and aiohttp are chatty at DEBUG
        logging.getLogger("kubernetes").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

        _DEFAULT_CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a standard logger under the pvc_autoscaler hierarchy.
    """
    if name is None:
        name = "pvc_autoscaler"
    return logging.getLogger(name)


# -------------------------
# Structured Logger Adapter
# -------------------------
class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    Attach structured context to logs conveniently. Works well with JSONFormatter.
    Usage:
        logger = StructuredLoggerAdapter(get_logger(__name__), {"component": "reconciler"})
        logger.info("resizing persistent volume claim", extra={"namespace": "default", "pvc": "data"})
    """
    def process(self, msg, kwargs):
        extra = dict(self.extra) if isinstance(self.extra, dict) else {}
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields) -> "StructuredLoggerAdapter":
        """Return a child adapter carrying additional context fields."""
        ctx = dict(self.extra) if isinstance(self.extra, dict) else {}
        ctx.update(fields)
        return StructuredLoggerAdapter(self.logger, ctx)


__all__ = [
    "configure_logging",
    "get_logger",
    "JSONFormatter",
    "HumanFormatter",
    "StructuredLoggerAdapter",
]
