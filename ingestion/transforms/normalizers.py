"""
Normalizers for transforming parsed upstream payloads to canonical shape.
Pure functions - no IO, network, or side effects.
Every normalizer fails with UpstreamFormatError when a required field is
absent instead of propagating None silently.
"""

from datetime import date, datetime
from typing import Dict, Any, List, Optional

from dateutil import tz

from errors import UpstreamFormatError, InvalidParams
from ingestion.transforms.extractors import lookup_label, normalize_date_text, safe_number
from ingestion.transforms.labelers import infer_risk_level
from utils.precision import round2, round4


# Upstream timestamps label the exchange's local (UTC+8) trading date
CHINA_TZ = tz.tzoffset('UTC+8', 8 * 3600)

MS_PER_DAY = 24 * 60 * 60 * 1000


def ms_to_date(ms: float) -> date:
    """Convert epoch milliseconds to the UTC+8 civil date."""
    return datetime.fromtimestamp(float(ms) / 1000.0, tz=CHINA_TZ).date()


def ms_to_ymd(ms: Any) -> str:
    """Epoch milliseconds to ``YYYY-MM-DD`` (UTC+8), or '' when not numeric."""
    number = safe_number(ms)
    if number is None:
        return ''
    return ms_to_date(number).isoformat()


def ymd_end_of_day_ms(ymd: str) -> int:
    """
    Last millisecond of a ``YYYY-MM-DD`` day in UTC+8.

    Raises:
        InvalidParams: If the text is not a valid ISO date
    """
    try:
        day = date.fromisoformat(str(ymd).strip())
    except ValueError:
        raise InvalidParams(f"Invalid date: {ymd!r}. Expected YYYY-MM-DD")
    start = datetime(day.year, day.month, day.day, tzinfo=CHINA_TZ)
    return int(start.timestamp() * 1000) + MS_PER_DAY - 1


def normalize_nav_trend(raw_points: Any) -> List[Dict[str, float]]:
    """
    Transform ``Data_netWorthTrend`` items to NavPoints.

    - Items with non-finite timestamps or non-positive/non-finite NAV are dropped
    - Sorted by timestamp
    - Deduplicated by timestamp (keep last to handle corrections)

    Args:
        raw_points: Parsed list of ``{"x": ms, "y": nav, ...}`` objects

    Returns:
        List of ``{'ms', 'nav'}`` dicts in strictly increasing ``ms`` order

    Raises:
        UpstreamFormatError: If the payload is not a list
    """
    if not isinstance(raw_points, list):
        raise UpstreamFormatError("Data_netWorthTrend is not a list")

    seen: Dict[float, float] = {}
    for raw in raw_points:
        if not isinstance(raw, dict):
            continue
        ms = safe_number(raw.get('x'))
        nav = safe_number(raw.get('y'))
        if ms is None or nav is None or nav <= 0:
            continue
        seen[ms] = nav

    return [{'ms': ms, 'nav': seen[ms]} for ms in sorted(seen)]


def normalize_estimate(payload: Any) -> Optional[Dict[str, Any]]:
    """
    Transform the intraday estimate JSONP payload.

    Returns:
        ``{'estimated_nav', 'estimated_change_percent', 'estimate_time'}`` or
        None when the payload carries no usable estimate
    """
    if not isinstance(payload, dict):
        return None

    gsz = safe_number(payload.get('gsz'))
    if gsz is None or gsz <= 0:
        return None

    return {
        'estimated_nav': round4(gsz),
        'estimated_change_percent': round2(safe_number(payload.get('gszzl')) or 0.0),
        'estimate_time': str(payload.get('gztime') or '').strip() or None,
    }


def normalize_basic_profile(mapping: Dict[str, str]) -> Dict[str, Any]:
    """
    Transform the F10 profile label map into profile fields.

    Labels are the upstream's Chinese field names.
    """
    short_name = lookup_label(mapping, '基金简称')
    full_name = lookup_label(mapping, '基金全称')
    fund_type = lookup_label(mapping, '基金类型')
    company = lookup_label(mapping, '基金管理人')
    inception_raw = lookup_label(mapping, '成立日期/规模', '成立日期')
    benchmark = lookup_label(mapping, '业绩比较基准')
    track_index = lookup_label(mapping, '跟踪标的')

    tags: List[str] = []
    for tag in (track_index, benchmark, full_name):
        if tag and tag not in tags:
            tags.append(tag)

    return {
        'short_name': short_name,
        'full_name': full_name,
        'type': fund_type,
        'company': company,
        'inception_date': normalize_date_text(inception_raw),
        'risk_level': infer_risk_level(fund_type),
        'tags': tags,
    }


def normalize_holdings(
    block: Dict[str, Any],
    *,
    fund_code: str,
    limit: int,
    source: str
) -> Dict[str, Any]:
    """
    Transform a parsed holdings block to a TopHoldingsSnapshot.

    Args:
        block: ``{'as_of_date', 'holdings'}`` from the table extractor
        fund_code: Fund identifier
        limit: Maximum number of holdings kept (at least 1)
        source: Data provider tag

    Returns:
        Canonical snapshot dict
    """
    limit = max(1, int(limit or 10))
    holdings = [
        {
            'stock_code': str(h['stock_code']).strip(),
            'stock_name': str(h['stock_name']).strip(),
            'weight_pct': round2(h.get('weight_pct')),
            'shares_wan': round2(h.get('shares_wan')),
            'market_value_wan': round2(h.get('market_value_wan')),
        }
        for h in block.get('holdings', [])[:limit]
    ]

    return {
        'fund_code': fund_code,
        'as_of_date': block.get('as_of_date') or '',
        'holdings': holdings,
        'source': source,
    }


def normalize_asset_allocation(payload: Any, *, fund_code: str, source: str) -> Dict[str, Any]:
    """
    Transform ``Data_assetAllocation`` into per-quarter percentages.

    Series are matched by name substring (股票 / 债券 / 现金); the remainder
    is reported as ``other_pct`` (never negative).

    Raises:
        UpstreamFormatError: If categories are missing
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('categories'), list):
        raise UpstreamFormatError("Data_assetAllocation missing categories")

    categories = [str(c or '').strip() for c in payload['categories']]
    series = payload.get('series') if isinstance(payload.get('series'), list) else []

    def series_data(keyword: str) -> List[Any]:
        for s in series:
            if isinstance(s, dict) and keyword in str(s.get('name') or ''):
                data = s.get('data')
                return data if isinstance(data, list) else []
        return []

    stock = series_data('股票')
    bond = series_data('债券')
    cash = series_data('现金')

    def at(data: List[Any], idx: int) -> float:
        value = safe_number(data[idx]) if idx < len(data) else None
        return value if value is not None else 0.0

    quarters = []
    for idx, quarter_date in enumerate(categories):
        if not quarter_date:
            continue
        stock_pct = at(stock, idx)
        bond_pct = at(bond, idx)
        cash_pct = at(cash, idx)
        quarters.append({
            'date': quarter_date,
            'stock_pct': round2(stock_pct),
            'bond_pct': round2(bond_pct),
            'cash_pct': round2(cash_pct),
            'other_pct': max(0.0, round2(100 - stock_pct - bond_pct - cash_pct)),
        })

    return {
        'fund_code': fund_code,
        'as_of_date': quarters[-1]['date'] if quarters else '',
        'quarters': quarters,
        'source': source,
    }


def normalize_industry_config(payload: Any, *, fund_code: str, source: str) -> Dict[str, Any]:
    """
    Transform the HYPZ industry JSON into the latest quarter's industry mix.

    Uses the first quarter that has industry rows (upstream lists newest
    first). Industries are sorted by weight, largest first.

    Raises:
        UpstreamFormatError: If upstream reports an error code
    """
    if not isinstance(payload, dict):
        raise UpstreamFormatError("Industry config payload is not an object")

    err_code = safe_number(payload.get('ErrCode'))
    if err_code is not None and err_code != 0:
        raise UpstreamFormatError(
            f"Upstream industry config error: {payload.get('ErrMsg') or int(err_code)}"
        )

    data = payload.get('Data') if isinstance(payload.get('Data'), dict) else {}
    quarter_infos = data.get('QuarterInfos') if isinstance(data.get('QuarterInfos'), list) else []

    latest = next(
        (q for q in quarter_infos if isinstance(q, dict) and q.get('HYPZInfo')),
        None
    )
    rows = latest.get('HYPZInfo') if latest and isinstance(latest.get('HYPZInfo'), list) else []

    as_of_date = ''
    if latest:
        as_of_date = str(latest.get('JZRQ') or '').strip()
        if not as_of_date and rows and isinstance(rows[0], dict):
            as_of_date = str(rows[0].get('FSRQ') or '').strip()

    industries = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        name = str(row.get('HYMC') or '').strip()
        if not name:
            continue
        pct = safe_number(row.get('ZJZBL'))
        if pct is None:
            pct = safe_number(row.get('ZJZBLDesc'))
        industries.append({'name': name, 'pct': round2(pct or 0.0)})

    industries.sort(key=lambda i: i['pct'], reverse=True)

    return {
        'fund_code': fund_code,
        'as_of_date': as_of_date,
        'industries': industries,
        'source': source,
    }


def normalize_grand_total(payload: Any, *, fund_code: str, source: str) -> Dict[str, Any]:
    """
    Transform ``Data_grandTotal`` into named cumulative-return series.

    Series without a name or without any dated point are dropped.

    Raises:
        UpstreamFormatError: If the payload is not a list
    """
    if not isinstance(payload, list):
        raise UpstreamFormatError("Data_grandTotal is not a list")

    series = []
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        name = str(raw.get('name') or '').strip()
        data = raw.get('data') if isinstance(raw.get('data'), list) else []

        points = []
        for row in data:
            if not isinstance(row, list) or len(row) < 2:
                continue
            day = ms_to_ymd(row[0])
            if not day:
                continue
            points.append({'date': day, 'value_pct': round2(safe_number(row[1]) or 0.0)})

        if name and points:
            series.append({'name': name, 'points': points})

    first = series[0]['points'] if series else []

    return {
        'fund_code': fund_code,
        'start_date': first[0]['date'] if first else '',
        'end_date': first[-1]['date'] if first else '',
        'series': series,
        'source': source,
    }


def normalize_similar_ranking(
    rank_items: Any,
    percent_items: Any,
    *,
    fund_code: str,
    source: str
) -> Dict[str, Any]:
    """
    Transform the peer-ranking literals into the latest rank snapshot.

    Args:
        rank_items: ``Data_rateInSimilarType`` (``[{"x": ms, "y": rank, "sc": total}]``) or None
        percent_items: ``Data_rateInSimilarPersent`` (``[[ms, percentile]]``) or None

    Returns:
        Ranking dict; parts that cannot be read are None
    """
    as_of_date = ''
    rank = None
    total = None
    percentile = None

    if isinstance(rank_items, list) and rank_items and isinstance(rank_items[-1], dict):
        last = rank_items[-1]
        as_of_date = ms_to_ymd(last.get('x'))
        rank = safe_number(last.get('y'))
        total = safe_number(last.get('sc'))

    if isinstance(percent_items, list) and percent_items and isinstance(percent_items[-1], list):
        last = percent_items[-1]
        if not as_of_date and last:
            as_of_date = ms_to_ymd(last[0])
        percentile = safe_number(last[1]) if len(last) > 1 else None

    return {
        'fund_code': fund_code,
        'as_of_date': as_of_date,
        'rank': int(rank) if rank is not None else None,
        'total': int(total) if total is not None else None,
        'percentile': percentile,
        'source': source,
    }
