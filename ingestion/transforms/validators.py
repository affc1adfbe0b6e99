"""
Core validators for request parameters and canonical data rows.
Pure functions - no IO, network, or side effects.
"""

import re
import math
from typing import Dict, Any, List, Optional

from errors import InvalidParams, UpstreamFormatError


FUND_CODE_PATTERN = re.compile(r'^\d{6}$')
YMD_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


class ValidationError(UpstreamFormatError):
    """Raised when a canonical row fails validation."""
    pass


def validate_fund_code(code: Any) -> str:
    """
    Validate and normalize a fund code.

    Args:
        code: Six-digit fund code (surrounding whitespace allowed)

    Returns:
        Stripped fund code

    Raises:
        InvalidParams: If the code is missing or not six digits
    """
    text = str(code or '').strip()
    if not text:
        raise InvalidParams("Missing fund code")
    if not FUND_CODE_PATTERN.match(text):
        raise InvalidParams(f"Invalid fund code: {text!r}. Expected 6 digits")
    return text


def validate_quarter_params(year: Optional[int], month: Optional[int]) -> None:
    """
    Validate an optional (year, month) disclosure quarter selector.

    Raises:
        InvalidParams: If only one is given or either is out of range
    """
    if year is None and month is None:
        return
    if year is None or month is None:
        raise InvalidParams("year and month must be given together")
    if not isinstance(year, int) or not 1990 <= year <= 2100:
        raise InvalidParams(f"Invalid year: {year}")
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidParams(f"Invalid month: {month}")


def _require_keys(row: Dict[str, Any], required_keys: set) -> None:
    missing = required_keys - set(row.keys())
    if missing:
        raise ValidationError(f"Missing required keys: {missing}")


def _require_number(row: Dict[str, Any], field: str, positive: bool = False) -> None:
    value = row[field]
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric, got {type(value)}")
    if not math.isfinite(value):
        raise ValidationError(f"{field} must be finite, got {value}")
    if positive and value <= 0:
        raise ValidationError(f"{field} must be positive, got {value}")


def validate_nav_points(points: List[Dict[str, float]]) -> None:
    """
    Validate a normalized NAV series.

    Raises:
        ValidationError: If a point is malformed or timestamps are not
            strictly increasing
    """
    prev_ms = None
    for point in points:
        _require_keys(point, {'ms', 'nav'})
        _require_number(point, 'ms')
        _require_number(point, 'nav', positive=True)

        if prev_ms is not None and point['ms'] <= prev_ms:
            raise ValidationError(
                f"NAV timestamps not monotonic: {prev_ms} >= {point['ms']}"
            )
        prev_ms = point['ms']


def validate_quote_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical fund quote.

    Raises:
        ValidationError: If validation fails
    """
    _require_keys(row, {
        'fund_code', 'nav', 'nav_date', 'change', 'change_percent',
        'updated_at', 'source'
    })

    _require_number(row, 'nav', positive=True)
    _require_number(row, 'change')
    _require_number(row, 'change_percent')

    if not YMD_PATTERN.match(str(row['nav_date'])):
        raise ValidationError(f"nav_date must be YYYY-MM-DD, got {row['nav_date']!r}")

    if 'estimated_nav' in row:
        _require_number(row, 'estimated_nav', positive=True)


def validate_holding_row(row: Dict[str, Any]) -> None:
    """
    Validate one top-holding row.

    Raises:
        ValidationError: If validation fails
    """
    _require_keys(row, {
        'stock_code', 'stock_name', 'weight_pct', 'shares_wan', 'market_value_wan'
    })

    for field in ['stock_code', 'stock_name']:
        if not isinstance(row[field], str) or not row[field]:
            raise ValidationError(f"{field} must be non-empty string, got {row[field]!r}")

    for field in ['weight_pct', 'shares_wan', 'market_value_wan']:
        _require_number(row, field)
