# pvc_autoscaler/utils/common.py
"""
PVC Autoscaler Common Utilities
-------------------------------
Value parsing and formatting shared by the policy resolver, the decision
engine, the reconciler and the validation gate.

Features:
 - Percentage strings ("20%", " 12.5% ") -> float
 - Kubernetes quantity strings ("5Gi", "500Mi", "1G", "1024") <-> bytes
 - Rounding byte counts up to a scaling resolution
 - Typed environment lookups
"""

from __future__ import annotations

import os
import math
import re
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any, Callable, Optional, Union

from kubernetes.utils.quantity import parse_quantity

from pvc_autoscaler.exceptions import BadPercentageValue, InvalidQuantity

GiB = 1024 ** 3

_BINARY_SUFFIXES = (
    ("Ei", 1024 ** 6),
    ("Pi", 1024 ** 5),
    ("Ti", 1024 ** 4),
    ("Gi", 1024 ** 3),
    ("Mi", 1024 ** 2),
    ("Ki", 1024),
)

Quantity = Union[str, int, float, Decimal]

# plain ASCII decimal, optional sign and exponent
_DECIMAL_PATTERN = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)


# -------------------------
# Percentages
# -------------------------
def parse_percentage(value: Optional[str]) -> float:
    """
    Parse "NN.NN%" into a float in [0, 100].

    Surrounding whitespace is ignored, the trailing '%' is mandatory and must
    directly follow the number.
    """
    if value is None:
        raise BadPercentageValue("bad percentage value: None")
    s = str(value).strip()
    if not s.endswith("%"):
        raise BadPercentageValue(f"bad percentage value: {value!r}")
    number = s[:-1]
    if not _DECIMAL_PATTERN.fullmatch(number):
        raise BadPercentageValue(f"bad percentage value: {value!r}")
    val = float(number)
    if val < 0.0 or val > 100.0:
        raise BadPercentageValue(f"bad percentage value: {value!r}")
    return val


def format_percentage(value: float) -> str:
    return f"{value:.2f}%"


# -------------------------
# Quantities
# -------------------------
def parse_quantity_bytes(value: Quantity) -> int:
    """
    Parse a Kubernetes quantity into a whole number of bytes.

    Fractional results are rounded up; negative, non-finite and malformed
    values raise InvalidQuantity.
    """
    if value is None or isinstance(value, bool):
        raise InvalidQuantity(f"invalid quantity: {value!r}")
    raw = value.strip() if isinstance(value, str) else value
    if raw == "":
        raise InvalidQuantity("invalid quantity: empty string")
    try:
        parsed = parse_quantity(raw)
    except (ValueError, TypeError, InvalidOperation) as e:
        raise InvalidQuantity(f"invalid quantity {value!r}: {e}") from e
    if not parsed.is_finite() or parsed < 0:
        raise InvalidQuantity(f"invalid quantity: {value!r}")
    return int(parsed.to_integral_value(rounding=ROUND_CEILING))


def format_quantity(nbytes: int) -> str:
    """
    Canonical binary-SI form: the largest suffix dividing the value evenly,
    otherwise the plain integer. 1.5Gi renders as "1536Mi".
    """
    nbytes = int(nbytes)
    if nbytes == 0:
        return "0"
    for suffix, mult in _BINARY_SUFFIXES:
        if nbytes % mult == 0:
            return f"{nbytes // mult}{suffix}"
    return str(nbytes)


def round_up(value: float, resolution: int) -> int:
    """Round `value` up to the next multiple of `resolution` bytes."""
    if resolution <= 0:
        raise ValueError("resolution must be positive")
    return int(math.ceil(Decimal(str(value)) / Decimal(resolution))) * resolution


# -------------------------
# Environment
# -------------------------
def get_env(key: str, default: Any = None, type_: Callable[[str], Any] = str) -> Any:
    """
    Typed environment lookup. Unset or empty variables yield `default`;
    conversion errors propagate to the caller.
    """
    val = os.getenv(key, None)
    if val is None or val == "":
        return default
    if type_ == bool:
        return val.strip().lower() in ("1", "true", "yes", "on")
    return type_(val)


__all__ = [
    "GiB",
    "parse_percentage",
    "format_percentage",
    "parse_quantity_bytes",
    "format_quantity",
    "round_up",
    "get_env",
]
