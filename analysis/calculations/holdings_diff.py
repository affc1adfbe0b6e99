"""
Holdings comparison utilities.
Pure functions for quarter stepping and top-holding deltas between two
disclosure snapshots.
"""

import re
from typing import Dict, Any, List, Optional, Tuple

from utils.precision import round2


_YMD = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')


class HoldingsDiffError(Exception):
    """Raised when a quarter date cannot be interpreted."""
    pass


def quarter_month(month: int) -> int:
    """Map a month to its quarter-end month (3, 6, 9 or 12)."""
    if month <= 3:
        return 3
    if month <= 6:
        return 6
    if month <= 9:
        return 9
    return 12


def quarter_end_from_year_month(year: int, month: int) -> str:
    """
    Quarter-end date containing (year, month).

    Example:
        quarter_end_from_year_month(2024, 5) -> '2024-06-30'
    """
    qm = quarter_month(int(month))
    qd = 31 if qm in (3, 12) else 30
    return f"{int(year):04d}-{qm:02d}-{qd:02d}"


def previous_quarter(as_of_date: str) -> Tuple[int, int]:
    """
    Step a disclosure date back exactly one fiscal quarter.

    Args:
        as_of_date: ``YYYY-MM-DD`` date inside (usually at the end of) a quarter

    Returns:
        (year, quarter-end month) of the previous quarter

    Raises:
        HoldingsDiffError: If the date is not ``YYYY-MM-DD``
    """
    match = _YMD.match(str(as_of_date or '').strip())
    if not match:
        raise HoldingsDiffError(f"Invalid quarter date: {as_of_date!r}")

    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise HoldingsDiffError(f"Invalid quarter date: {as_of_date!r}")

    prev_month = quarter_month(month) - 3
    if prev_month <= 0:
        return year - 1, 12
    return year, prev_month


def _by_code(holdings: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    mapped = {}
    for h in holdings or []:
        code = str(h.get('stock_code') or '').strip()
        if code:
            mapped[code] = h
    return mapped


def compare_holdings(
    current: List[Dict[str, Any]],
    previous: List[Dict[str, Any]]
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Compare two holding lists by stock code.

    - added: in current only (prev weight None), largest current weight first
    - removed: in previous only (current weight None), largest previous weight first
    - changed: in both, delta = curr - prev, largest |delta| first

    Example:
        previous {A: 5, B: 3}, current {B: 4, C: 2}
        -> added [C], removed [A], changed [B (+1)]

    Returns:
        Dictionary with 'added', 'removed' and 'changed' item lists
    """
    curr_map = _by_code(current)
    prev_map = _by_code(previous)

    added = []
    changed = []
    for code, curr in curr_map.items():
        prev = prev_map.get(code)
        curr_weight = round2(curr.get('weight_pct'))
        if prev is None:
            added.append({
                'stock_code': code,
                'stock_name': str(curr.get('stock_name') or '').strip(),
                'prev_weight_pct': None,
                'curr_weight_pct': curr_weight,
                'delta_weight_pct': None,
            })
            continue

        prev_weight = round2(prev.get('weight_pct'))
        changed.append({
            'stock_code': code,
            'stock_name': str(curr.get('stock_name') or prev.get('stock_name') or '').strip(),
            'prev_weight_pct': prev_weight,
            'curr_weight_pct': curr_weight,
            'delta_weight_pct': round2(curr_weight - prev_weight),
        })

    removed = [
        {
            'stock_code': code,
            'stock_name': str(prev.get('stock_name') or '').strip(),
            'prev_weight_pct': round2(prev.get('weight_pct')),
            'curr_weight_pct': None,
            'delta_weight_pct': None,
        }
        for code, prev in prev_map.items()
        if code not in curr_map
    ]

    added.sort(key=lambda item: item['curr_weight_pct'], reverse=True)
    removed.sort(key=lambda item: item['prev_weight_pct'], reverse=True)
    changed.sort(key=lambda item: abs(item['delta_weight_pct']), reverse=True)

    return {'added': added, 'removed': removed, 'changed': changed}


def empty_snapshot(as_of_date: Optional[str] = None) -> Dict[str, Any]:
    """Placeholder for a quarter whose disclosure is unavailable."""
    return {'as_of_date': as_of_date, 'holdings': []}
