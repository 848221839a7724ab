"""Total numeric sanitizers for configuration-like inputs.

None of these raise: invalid input is coerced to a fallback. They guard
settings and query knobs, never financial results.
"""

from __future__ import annotations

import math
from typing import Any

from utils.constants import (
    DEFAULT_LOOKBACK_DAYS,
    DEFAULT_SIGNAL_THRESHOLD,
    DEFAULT_TAX_RATE,
    LOOKBACK_DAYS_MAX,
    LOOKBACK_DAYS_MIN,
    SIGNAL_THRESHOLD_MAX,
    SIGNAL_THRESHOLD_MIN,
    TAX_RATE_MAX,
    TAX_RATE_MIN,
)


def clamp(value: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, value))


def _finite_number(raw: Any) -> float | None:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if not math.isfinite(raw):
        return None
    return raw


def to_positive_int(raw: Any, fallback: int) -> int:
    value = _finite_number(raw)
    if value is None:
        return fallback
    return max(1, math.floor(value))


def to_non_negative_int(raw: Any, fallback: int) -> int:
    value = _finite_number(raw)
    if value is None:
        return fallback
    return max(0, math.floor(value))


def sanitize_tax_rate(raw: Any) -> float:
    value = _finite_number(raw)
    if value is None:
        return DEFAULT_TAX_RATE
    return clamp(float(value), TAX_RATE_MIN, TAX_RATE_MAX)


def sanitize_lookback_days(raw: Any) -> int:
    value = _finite_number(raw)
    if value is None:
        return DEFAULT_LOOKBACK_DAYS
    return int(clamp(math.floor(value), LOOKBACK_DAYS_MIN, LOOKBACK_DAYS_MAX))


def sanitize_signal_threshold(raw: Any) -> float:
    value = _finite_number(raw)
    if value is None:
        return DEFAULT_SIGNAL_THRESHOLD
    return clamp(float(value), SIGNAL_THRESHOLD_MIN, SIGNAL_THRESHOLD_MAX)


def sanitize_budget(raw: Any) -> int:
    return to_non_negative_int(raw, 0)


__all__ = [
    "clamp",
    "to_positive_int",
    "to_non_negative_int",
    "sanitize_tax_rate",
    "sanitize_lookback_days",
    "sanitize_signal_threshold",
    "sanitize_budget",
]
