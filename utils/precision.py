"""
Rounding applied at the point of externalization.
Intermediate computations keep full precision.
"""

import math
from typing import Any, Optional


def round2(value: Any) -> float:
    """Round a percentage (or money amount) to 2 decimals. Non-numeric reads as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    # + 0.0 turns -0.0 into 0.0
    return round(number, 2) + 0.0


def round4(value: Any) -> float:
    """Round a NAV to 4 decimals. Non-numeric reads as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return round(number, 4) + 0.0


def round2_or_none(value: Optional[float]) -> Optional[float]:
    """Like round2 but keeps an undefined value undefined."""
    if value is None:
        return None
    return round2(value)
