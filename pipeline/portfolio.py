"""
Portfolio orchestration - batch queries with per-item outcomes, portfolio
summary and profit trend.

Batch fetches never fail as a whole: each item reports its own success or
error kind. Summary math is pure.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Awaitable, Iterable, Tuple

from errors import error_kind
from utils.precision import round2, round4

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = '未知'


@dataclass
class FetchOutcome:
    """Result of one item in a batch fetch."""
    key: str
    ok: bool
    value: Any = None
    error_kind: Optional[str] = None
    message: Optional[str] = None


async def gather_outcomes(calls: Iterable[Tuple[str, Awaitable]]) -> List[FetchOutcome]:
    """
    Await ``(key, awaitable)`` pairs concurrently.

    Returns:
        One FetchOutcome per pair, in input order
    """
    calls = list(calls)
    results = await asyncio.gather(*(aw for _, aw in calls), return_exceptions=True)

    outcomes = []
    for (key, _), result in zip(calls, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, Exception):
            logger.warning(f"Batch item {key} failed: {result}")
            outcomes.append(FetchOutcome(
                key=key, ok=False, error_kind=error_kind(result), message=str(result)
            ))
        else:
            outcomes.append(FetchOutcome(key=key, ok=True, value=result))
    return outcomes


async def fetch_quotes(service, codes: List[str], force: bool = False) -> List[FetchOutcome]:
    """Fetch quotes for many funds; one outcome per code."""
    return await gather_outcomes((code, service.get_quote(code, force=force)) for code in codes)


async def fetch_histories(
    service,
    codes: List[str],
    range: str = '30d',
    end_date: Optional[str] = None,
    force: bool = False
) -> List[FetchOutcome]:
    """Fetch NAV histories for many funds; one outcome per code."""
    return await gather_outcomes(
        (code, service.get_nav_history(code, range, end_date, force=force)) for code in codes
    )


def successful_values(outcomes: List[FetchOutcome]) -> Dict[str, Any]:
    """Map key -> value for the successful outcomes."""
    return {o.key: o.value for o in outcomes if o.ok}


def _holding_numbers(holding: Dict[str, Any]) -> Tuple[float, float]:
    shares = float(holding.get('hold_shares') or 0)
    buy_price = float(holding.get('buy_price') or 0)
    return shares, buy_price


def build_fund_view(holding: Dict[str, Any], quote: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Value and profit of one holding at its latest official NAV.

    Without a quote the buy price stands in for the NAV.
    """
    shares, buy_price = _holding_numbers(holding)
    nav = float(quote['nav']) if quote else buy_price

    hold_value = nav * shares
    cost = buy_price * shares
    profit = hold_value - cost

    return {
        'code': holding['code'],
        'name': holding.get('name', ''),
        'type': holding.get('type') or UNKNOWN_TYPE,
        'nav': round4(nav),
        'nav_date': quote.get('nav_date', '') if quote else '',
        'change': round4(quote.get('change', 0)) if quote else 0.0,
        'change_percent': round2(quote.get('change_percent', 0)) if quote else 0.0,
        'estimated_nav': quote.get('estimated_nav') if quote else None,
        'hold_shares': shares,
        'buy_price': round4(buy_price),
        'hold_value': round2(hold_value),
        'profit': round2(profit),
        'profit_percent': round2(profit / cost * 100) if cost else 0.0,
    }


def build_portfolio_summary(
    holdings: List[Dict[str, Any]],
    quotes: Dict[str, Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Portfolio totals from holdings and their quotes.

    Today's profit is ``sum(shares × official change)`` over the funds whose
    ``nav_date`` equals the most recent ``nav_date`` in the portfolio.
    Funds still showing an older trading day are listed in
    ``stale_fund_codes`` and excluded, as are funds without a quote.
    Estimates never contribute.

    Args:
        holdings: ``{'code', 'name', 'hold_shares', 'buy_price', 'type'?}`` dicts
        quotes: Fund code -> FundQuote for the funds that have one

    Returns:
        Summary dict with totals, per-fund views and allocation by type
    """
    funds = [build_fund_view(h, quotes.get(h['code'])) for h in holdings]

    total_assets = sum(f['hold_value'] for f in funds)
    total_profit = sum(f['profit'] for f in funds)

    quoted = [h for h in holdings if h['code'] in quotes]
    latest_date = max((quotes[h['code']].get('nav_date', '') for h in quoted), default='')

    today_profit = 0.0
    stale = []
    for h in quoted:
        quote = quotes[h['code']]
        if quote.get('nav_date', '') != latest_date:
            stale.append(h['code'])
            continue
        shares, _ = _holding_numbers(h)
        today_profit += shares * float(quote.get('change') or 0)

    allocation: Dict[str, float] = {}
    for f in funds:
        allocation[f['type']] = allocation.get(f['type'], 0.0) + f['hold_value']

    return {
        'total_assets': round2(total_assets),
        'today_profit': round2(today_profit),
        'total_profit': round2(total_profit),
        'profit_rate': round2(total_profit / total_assets * 100) if total_assets else 0.0,
        'nav_date': latest_date or None,
        'stale_fund_codes': stale,
        'funds': funds,
        'allocation_by_type': {
            k: round2(v / total_assets * 100) for k, v in allocation.items()
        } if total_assets > 0 else {},
    }


def build_profit_trend(
    holdings: List[Dict[str, Any]],
    histories: Dict[str, Dict[str, Any]],
    quotes: Optional[Dict[str, Dict[str, Any]]] = None
) -> Dict[str, List[Any]]:
    """
    Portfolio profit on each date of the first available NAV history.

    A fund without a NAV on a date is valued at its quote NAV, then at its
    buy price.

    Returns:
        ``{'dates': [...], 'profits': [...]}``; both empty without histories
    """
    quotes = quotes or {}

    base = next((histories[h['code']] for h in holdings if h['code'] in histories), None)
    base_points = base['points'] if base else []
    if not base_points:
        return {'dates': [], 'profits': []}

    nav_maps = {
        code: {p['date']: p['nav'] for p in history.get('points', [])}
        for code, history in histories.items()
    }

    cost_total = sum(shares * price for shares, price in map(_holding_numbers, holdings))

    dates = [p['date'] for p in base_points]
    profits = []
    for day in dates:
        total_value = 0.0
        for h in holdings:
            shares, buy_price = _holding_numbers(h)
            nav = nav_maps.get(h['code'], {}).get(day)
            if not nav:
                quote = quotes.get(h['code'])
                nav = (quote or {}).get('nav') or buy_price
            total_value += shares * float(nav)
        profits.append(round2(total_value - cost_total))

    return {'dates': dates, 'profits': profits}
