"""Compact display of single-precision float values."""

from __future__ import annotations

import math
import struct
from decimal import Decimal

_F32_MAX_DIGITS = 9


def _to_f32(value: float) -> float:
    """Round a float to the nearest single-precision value."""
    try:
        return struct.unpack("f", struct.pack("f", float(value)))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


def _non_finite(value: float) -> str | None:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return None


def _display_f32(value: float) -> str:
    """Shortest decimal text that reads back as the same single-precision value."""
    v = _to_f32(value)
    special = _non_finite(v)
    if special is not None:
        return special
    text = f"{v:.{_F32_MAX_DIGITS}g}"
    for digits in range(1, _F32_MAX_DIGITS + 1):
        candidate = f"{v:.{digits}g}"
        if _to_f32(float(candidate)) == v:
            text = candidate
            break
    return format(Decimal(text), "f")


def _pseudo_int(value: float) -> bool:
    fract = math.modf(value)[0]
    return not 0.0002 <= fract <= 0.9998


def format_terse(value: float) -> str:
    """Format a float with as few decimal places as reads naturally (at most two
    unless the value needs more)."""
    v = _to_f32(value)
    special = _non_finite(v)
    if special is not None:
        return special
    if _pseudo_int(v):
        return f"{v:.0f}"
    if _pseudo_int(v * 10.0):
        return f"{v:.1f}"
    if _pseudo_int(v * 100.0):
        return f"{v:.2f}"
    return _display_f32(v)