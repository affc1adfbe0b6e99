"""
Monthly return decomposition.
Splits a daily return series into 12 contiguous buckets whose rounded values
sum exactly to an authoritative total.
"""

from typing import List, Sequence

from utils.precision import round2

MONTHS = 12


def bucket_sizes(n_days: int, months: int = MONTHS) -> List[int]:
    """
    Split ``n_days`` into ``months`` contiguous bucket lengths.

    Each bucket holds floor(n/months) days; the first ``n mod months``
    buckets hold one more.

    Example:
        bucket_sizes(26) -> [3, 3, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2]
    """
    base, remainder = divmod(max(0, int(n_days)), months)
    return [base + 1 if m < remainder else base for m in range(months)]


def build_monthly_returns(daily_return_pcts: Sequence[float], target_total_pct: float) -> List[float]:
    """
    Decompose daily return percents into 12 monthly return percents.

    Each bucket is the sum of its daily percents, rounded to 2 decimals.
    The rounding and compounding residual against ``target_total_pct`` is
    added to the last bucket, so the 12 values sum to round2(target).

    Args:
        daily_return_pcts: Daily returns in percent, chronological
        target_total_pct: Authoritative cumulative return of the window in percent

    Returns:
        List of 12 percentages
    """
    monthly = []
    idx = 0
    for size in bucket_sizes(len(daily_return_pcts)):
        monthly.append(round2(sum(daily_return_pcts[idx:idx + size])))
        idx += size

    residual = round2(round2(target_total_pct) - sum(monthly))
    monthly[-1] = round2(monthly[-1] + residual)
    return monthly
