"""
Metrics aggregator - composes NAV calculations into AnalysisResult and NavHistory points.
Pure functions combining returns, drawdown, volatility, monthly decomposition
and an optional benchmark curve.
"""

import math
import pandas as pd
from datetime import date
from typing import Dict, Any, Optional, List

from analysis.calculations.returns import point_returns, daily_returns, cumulative_returns
from analysis.calculations.volatility import annualized_volatility_pct, sharpe_ratio
from analysis.calculations.drawdown import drawdown_curve, max_drawdown, recovery_stats
from analysis.calculations.monthly import build_monthly_returns
from errors import InsufficientData
from ingestion.transforms.normalizers import ms_to_date
from utils.precision import round2, round4, round2_or_none


HORIZONS = ('1y', '3y', 'since')
DEFAULT_HORIZON = '1y'

# Grand-total series preferred as the benchmark curve
PREFERRED_BENCHMARK = '沪深300'


def normalize_horizon(horizon: Any) -> str:
    """Lower-case a horizon, mapping unknown values to 1y."""
    key = str(horizon or '').strip().lower()
    return key if key in HORIZONS else DEFAULT_HORIZON


def build_nav_history_points(window: List[Dict[str, float]]) -> List[Dict[str, Any]]:
    """
    Turn a NAV window into NavHistory points.

    ``return_pct`` is versus the previous point (0 for the first) and
    ``cumulative_pct`` versus the first point of the window.
    """
    if not window:
        return []

    navs = [p['nav'] for p in window]
    returns = point_returns(navs)
    cumulative = cumulative_returns(navs)

    return [
        {
            'date': ms_to_date(p['ms']).isoformat(),
            'nav': round4(p['nav']),
            'return_pct': round2(r * 100),
            'cumulative_pct': round2(c * 100),
        }
        for p, r, c in zip(window, returns, cumulative)
    ]


def select_benchmark_series(grand_total: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Pick the index series from a GrandTotal record.

    The CSI 300 series is preferred; otherwise the last series that is not
    the fund's own (first) series. None when there is nothing to compare.
    """
    series = (grand_total or {}).get('series') or []
    for s in series:
        if PREFERRED_BENCHMARK in s.get('name', ''):
            return s
    if len(series) > 1:
        return series[-1]
    return None


def align_benchmark(dates: List[str], benchmark: Optional[Dict[str, Any]]) -> List[Optional[float]]:
    """
    Rebase a benchmark cumulative series onto the fund's dates.

    The benchmark is re-anchored to its value at the first fund date it
    covers, so both curves start at 0. Dates the benchmark does not cover
    are None.

    Args:
        dates: Fund window dates (``YYYY-MM-DD``)
        benchmark: ``{'name', 'points': [{'date', 'value_pct'}]}`` or None

    Returns:
        One value per fund date
    """
    if not benchmark or not benchmark.get('points') or not dates:
        return [None] * len(dates)

    bench = pd.Series(
        [p['value_pct'] for p in benchmark['points']],
        index=[p['date'] for p in benchmark['points']],
        dtype=float,
    )
    # Upstream occasionally repeats a date; keep the latest value
    bench = bench[~bench.index.duplicated(keep='last')]
    aligned = bench.reindex(dates)

    covered = aligned.dropna()
    if covered.empty:
        return [None] * len(dates)

    anchor_growth = 1 + covered.iloc[0] / 100
    if anchor_growth <= 0:
        return [None] * len(dates)

    rebased = ((1 + aligned / 100) / anchor_growth - 1) * 100
    return [None if math.isnan(v) else round2(v) for v in rebased.tolist()]


def compose_analysis_result(
    fund_code: str,
    horizon: str,
    window: List[Dict[str, float]],
    ranking: Optional[Dict[str, Any]] = None,
    benchmark: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Compose all NAV metrics into an AnalysisResult.

    Statistics run on the unrounded window NAVs; rounding happens only here,
    when values leave the engine.

    Args:
        fund_code: Fund identifier
        horizon: Normalized horizon label
        window: NavPoints of the horizon window, chronological
        ranking: Optional SimilarRanking record
        benchmark: Optional grand-total series used as benchmark curve

    Returns:
        Complete AnalysisResult dictionary

    Raises:
        InsufficientData: If the window has fewer than two points
    """
    if len(window) < 2:
        raise InsufficientData(
            f"Not enough NAV history for {fund_code}: need 2 points, have {len(window)}"
        )

    navs = [p['nav'] for p in window]
    dates: List[date] = [ms_to_date(p['ms']) for p in window]
    date_labels = [d.isoformat() for d in dates]

    history = build_nav_history_points(window)
    last = history[-1]

    rates = daily_returns(navs)
    recovery = recovery_stats(navs, dates)
    cumulative_total_pct = float(cumulative_returns(navs)[-1] * 100)

    ranking = ranking or {}

    metrics = {
        'nav': last['nav'],
        'nav_change_pct': last['return_pct'],
        'year_return_pct': round2(cumulative_total_pct),
        'sharpe_ratio': round2_or_none(sharpe_ratio(rates)),
        'max_drawdown_pct': round2(max_drawdown(navs) * 100),
        'volatility_pct': round2(annualized_volatility_pct(rates)),
        'max_drawdown_recovery_days': recovery['recovery_days'],
        'recovery_status': recovery['recovery_status'],
        'similar_rank': ranking.get('rank'),
        'similar_total': ranking.get('total'),
        'similar_percentile': ranking.get('percentile'),
    }

    series = {
        'dates': date_labels,
        'fund_cumulative_pct': [p['cumulative_pct'] for p in history],
        'benchmark_cumulative_pct': align_benchmark(date_labels, benchmark),
        'drawdown_pct': [round2(dd * 100) for dd in drawdown_curve(navs)],
        'monthly_return_pct': build_monthly_returns(
            [r * 100 for r in rates], cumulative_total_pct
        ),
    }

    return {
        'fund_code': fund_code,
        'horizon': horizon,
        'metrics': metrics,
        'series': series,
    }
