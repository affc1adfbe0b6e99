"""
Drawdown and recovery calculation utilities.
Pure functions for maximum drawdown analysis.
"""

import numpy as np
from datetime import date
from typing import List, Dict, Optional, Any


RECOVERED = 'recovered'
NO_DRAWDOWN = 'no_drawdown'
UNRESOLVED = 'unresolved'
INSUFFICIENT_DATA = 'insufficient_data'


class DrawdownError(Exception):
    """Raised when drawdown calculation fails."""
    pass


def drawdown_curve(navs: List[float]) -> np.ndarray:
    """
    Drawdown of every point from the running peak, as a decimal.

    The peak starts at the first NAV. Values are <= 0 and exactly 0 wherever
    the NAV sets a new running maximum.

    Raises:
        DrawdownError: If a NAV is zero or negative
    """
    if not navs:
        return np.array([], dtype=float)

    navs_array = np.array(navs, dtype=float)
    if np.any(navs_array <= 0):
        raise DrawdownError("Zero or negative NAV not allowed")

    running_max = np.maximum.accumulate(navs_array)
    return navs_array / running_max - 1


def max_drawdown(navs: List[float]) -> float:
    """Deepest drawdown as a decimal (0.0 for an empty or rising series)."""
    curve = drawdown_curve(navs)
    if curve.size == 0:
        return 0.0
    return float(min(0.0, curve.min()))


def recovery_stats(navs: List[float], dates: List[date]) -> Dict[str, Any]:
    """
    Calendar days from the deepest trough back to its prior peak.

    The trough is the first point reaching the maximum drawdown; the peak is
    the running peak at that trough. Recovery is the first later NAV at or
    above that peak.

    Args:
        navs: NAVs in chronological order
        dates: Corresponding civil dates

    Returns:
        Dictionary with:
        - recovery_days: int, or None when unresolved/insufficient
        - recovery_status: recovered, no_drawdown, unresolved or insufficient_data
        - trough_date / recovery_date: dates or None

    Raises:
        DrawdownError: If lengths differ or a NAV is not positive
    """
    if len(navs) != len(dates):
        raise DrawdownError("NAVs and dates must have same length")

    if len(navs) < 2:
        return {
            'recovery_days': None,
            'recovery_status': INSUFFICIENT_DATA,
            'trough_date': None,
            'recovery_date': None,
        }

    curve = drawdown_curve(navs)
    if curve.min() >= 0:
        return {
            'recovery_days': 0,
            'recovery_status': NO_DRAWDOWN,
            'trough_date': None,
            'recovery_date': None,
        }

    # argmin returns the first occurrence of the minimum
    trough_idx = int(np.argmin(curve))
    peak_nav = float(np.maximum.accumulate(np.array(navs, dtype=float))[trough_idx])

    for j in range(trough_idx + 1, len(navs)):
        if navs[j] >= peak_nav:
            return {
                'recovery_days': max(0, (dates[j] - dates[trough_idx]).days),
                'recovery_status': RECOVERED,
                'trough_date': dates[trough_idx],
                'recovery_date': dates[j],
            }

    return {
        'recovery_days': None,
        'recovery_status': UNRESOLVED,
        'trough_date': dates[trough_idx],
        'recovery_date': None,
    }
