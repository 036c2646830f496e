"""Numeric helpers shared by the sizing and scoring code."""

from __future__ import annotations

import math
import sys
from typing import Any, Optional

# Smallest distinguishable step around 1.0, used as the "negligible" threshold
EPSILON = sys.float_info.epsilon


def is_finite_number(value: Any) -> bool:
    """True for real ints/floats that are finite (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def clamp01(value: Optional[float]) -> float:
    """Clamp to [0, 1]; missing or non-finite values collapse to 0."""
    if not is_finite_number(value):
        return 0.0
    return clamp(float(value), 0.0, 1.0)


def to_float(value: Any) -> Optional[float]:
    """Parse exchange payload numbers (often strings) into finite floats."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def non_negative_or_none(value: Any) -> Optional[float]:
    if not is_finite_number(value):
        return None
    return max(0.0, float(value))
