"""
Returns calculation utilities.
Pure functions for per-point, cumulative and daily returns over NAV windows.
"""

import math
import numpy as np
from typing import List, Dict, Optional, Any

from errors import InsufficientData


MS_PER_DAY = 24 * 60 * 60 * 1000

# Calendar-day lookback per history range; None means the whole series
RANGE_DAYS = {
    '30d': 30,
    '90d': 90,
    '1y': 365,
    '3y': 1095,
    'since': None,
}

DEFAULT_RANGE = '30d'


def normalize_range(range_name: Any) -> str:
    """Lower-case a range name, mapping unknown names to the default range."""
    key = str(range_name or '').strip().lower()
    return key if key in RANGE_DAYS else DEFAULT_RANGE


def range_to_days(range_name: Any) -> Optional[int]:
    """
    Calendar days covered by a history range.

    Returns:
        Number of days, or None for ``since`` (the full series)
    """
    return RANGE_DAYS[normalize_range(range_name)]


def slice_window(
    points: List[Dict[str, float]],
    range_name: Any,
    end_ms: Optional[float] = None
) -> List[Dict[str, float]]:
    """
    Select the NAV points inside a range window.

    The window ends at ``end_ms`` (or the last point) and reaches back the
    range's number of calendar days, both bounds inclusive.

    Args:
        points: NavPoints in increasing ``ms`` order
        range_name: One of RANGE_DAYS (unknown names read as 30d)
        end_ms: Optional window end in epoch milliseconds

    Returns:
        Points inside the window

    Raises:
        InsufficientData: If no point falls inside the window
    """
    if not points:
        raise InsufficientData("No NAV points available")

    end = points[-1]['ms'] if end_ms is None else end_ms
    days = range_to_days(range_name)
    start = -math.inf if days is None else end - days * MS_PER_DAY

    window = [p for p in points if start <= p['ms'] <= end]
    if not window:
        raise InsufficientData(f"No NAV points in range {normalize_range(range_name)}")
    return window


def _valid_pair(prev: float, curr: float) -> bool:
    return (
        math.isfinite(prev) and math.isfinite(curr)
        and prev != 0 and curr != 0
    )


def point_returns(navs: List[float]) -> List[float]:
    """
    Return of each point versus the previous one, as a decimal.

    The first point reads 0. A point whose own or previous NAV is zero or
    non-finite also reads 0.

    Example:
        [1.0, 1.1, 0.99] -> [0.0, 0.1, -0.1]
    """
    result = [0.0] * len(navs)
    for i in range(1, len(navs)):
        prev, curr = float(navs[i - 1]), float(navs[i])
        if _valid_pair(prev, curr):
            result[i] = curr / prev - 1
    return result


def daily_returns(navs: List[float]) -> np.ndarray:
    """
    Returns between consecutive NAVs, excluding undefined pairs.

    Unlike ``point_returns`` undefined pairs are dropped rather than read as
    0, so statistics over the array are not biased toward zero.

    Returns:
        Numpy array with at most ``len(navs) - 1`` decimal returns
    """
    rates = []
    for i in range(1, len(navs)):
        prev, curr = float(navs[i - 1]), float(navs[i])
        if _valid_pair(prev, curr):
            rates.append(curr / prev - 1)
    return np.array(rates, dtype=float)


def cumulative_returns(navs: List[float]) -> np.ndarray:
    """
    Return of every point versus the first point of the series, as a decimal.

    Raises:
        InsufficientData: If the series is empty
        ValueError: If the anchor NAV is not positive
    """
    if not navs:
        raise InsufficientData("No NAV points to anchor cumulative returns")

    navs_array = np.array(navs, dtype=float)
    anchor = navs_array[0]
    if not anchor > 0:
        raise ValueError(f"Anchor NAV must be positive, got {anchor}")

    return navs_array / anchor - 1
