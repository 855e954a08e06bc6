# pvc_autoscaler/utils/time_utils.py
"""
PVC Autoscaler Time Utilities
-----------------------------

Small set of time helpers shared by the scanner, the reconciler and the
status layer.

Features:
 - UTC wall clock helpers (unix seconds, aware datetimes, RFC3339 strings)
 - RFC3339 parsing/formatting for status timestamps
 - Human-readable durations ("30s", "1m30s", "1.5h") -> seconds
 - Async periodic ticker used by the periodic runner
"""

from __future__ import annotations

import re
import time
import asyncio
import datetime
from typing import Optional

# -------------------------
# Core helpers
# -------------------------
def now_ts() -> float:
    """Unix timestamp (UTC) with float seconds."""
    return time.time()

def utc_now() -> datetime.datetime:
    """Timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)

def iso_now() -> str:
    """Return current UTC time in ISO8601 format."""
    return utc_now().isoformat().replace("+00:00", "Z")

# -------------------------
# Parsing & formatting
# -------------------------
def parse_iso8601(s: str) -> datetime.datetime:
    """Parse an RFC3339/ISO8601 string into an aware UTC datetime."""
    dt = datetime.datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)

def to_rfc3339(dt: datetime.datetime) -> str:
    """Format datetime as RFC3339 with second precision, e.g. 2024-01-02T03:04:05Z."""
    if dt.tzinfo:
        dt = dt.astimezone(datetime.timezone.utc)
    return dt.replace(microsecond=0, tzinfo=None).isoformat() + "Z"

def from_timestamp(ts: float) -> datetime.datetime:
    """Convert float timestamp to UTC datetime."""
    return datetime.datetime.fromtimestamp(ts, tz=datetime.timezone.utc)

def to_timestamp(dt: datetime.datetime) -> int:
    """Convert datetime to whole unix seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return int(dt.timestamp())

# -------------------------
# Human duration parsing
# -------------------------
DURATION_PATTERN = re.compile(r"(\d+\.?\d*)\s*([a-zA-Z]+)")
_DURATION_FULL = re.compile(r"^\s*(?:\d+\.?\d*\s*[a-zA-Z]+\s*)+$")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "h": 3600,
    "hr": 3600,
    "hour": 3600,
    "d": 86400,
    "day": 86400,
}

def parse_duration(text: str) -> float:
    """
    Parse human-readable duration strings like:
    "30s", "5m", "1m30s", "1.5h".

    A bare number is taken as seconds. Unknown units and trailing garbage
    raise ValueError.
    """
    if text is None:
        raise ValueError("empty duration")
    text = str(text).strip().lower()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass
    if not _DURATION_FULL.match(text):
        raise ValueError(f"invalid duration: {text!r}")
    total = 0.0
    for val, unit in DURATION_PATTERN.findall(text):
        if unit not in _UNIT_SECONDS:
            raise ValueError(f"unknown duration unit {unit!r} in {text!r}")
        total += float(val) * _UNIT_SECONDS[unit]
    return total

def format_duration(seconds: float) -> str:
    """Format seconds into '1h2m3s'."""
    seconds = int(seconds)
    h, r = divmod(seconds, 3600)
    m, s = divmod(r, 60)
    parts = []
    if h: parts.append(f"{h}h")
    if m: parts.append(f"{m}m")
    if s or not parts: parts.append(f"{s}s")
    return "".join(parts)

# -------------------------
# Periodic ticker
# -------------------------
class PeriodicTicker:
    """
    Async periodic ticker, like Go's time.Ticker. The first tick fires after
    one full interval. Iteration ends once `stop_event` is set.

    Example:
        async for tick in PeriodicTicker(30.0, stop_event):
            ...
    """
    def __init__(self, interval: float, stop_event: Optional[asyncio.Event] = None):
        if interval <= 0:
            raise ValueError("ticker interval must be positive")
        self.interval = float(interval)
        self.stop_event = stop_event or asyncio.Event()

    def stop(self):
        self.stop_event.set()

    def __aiter__(self):
        return self

    async def __anext__(self) -> float:
        if self.stop_event.is_set():
            raise StopAsyncIteration
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return now_ts()
        raise StopAsyncIteration
