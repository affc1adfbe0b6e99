"""
Fund market service - public query functions over the Eastmoney sources.
Composes: Provider → Extract → Normalize → Validate → Cache.

Every query validates its parameters before any IO, is cached under a
kind-specific key and deduplicated while in flight.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Awaitable

from analysis.calculations.holdings_diff import (
    HoldingsDiffError,
    compare_holdings,
    empty_snapshot,
    previous_quarter,
    quarter_end_from_year_month,
)
from analysis.calculations.returns import normalize_range, slice_window
from analysis.metrics_aggregator import (
    build_nav_history_points,
    compose_analysis_result,
    normalize_horizon,
    select_benchmark_series,
)
from errors import InvalidParams, UpstreamFormatError
from ingestion.providers import eastmoney_adapter as eastmoney
from ingestion.providers.fetch_client import fetch_text
from ingestion.transforms.extractors import (
    extract_var_literal,
    extract_var_string,
    parse_holdings_tables,
    parse_key_value_table,
    select_quarter,
)
from ingestion.transforms.labelers import infer_fund_type, infer_risk_level
from ingestion.transforms.normalizers import (
    ms_to_ymd,
    normalize_asset_allocation,
    normalize_basic_profile,
    normalize_estimate,
    normalize_grand_total,
    normalize_holdings,
    normalize_industry_config,
    normalize_nav_trend,
    normalize_similar_ranking,
    ymd_end_of_day_ms,
)
from ingestion.transforms.validators import (
    validate_fund_code,
    validate_holding_row,
    validate_nav_points,
    validate_quarter_params,
    validate_quote_row,
)
from storage.cache import CacheManager, ttl_for
from utils.precision import round2, round4

logger = logging.getLogger(__name__)

MAX_TOPLINE = 50


def _validate_topline(topline: Any) -> int:
    if isinstance(topline, bool) or not isinstance(topline, int):
        raise InvalidParams(f"topline must be an integer, got {topline!r}")
    if not 1 <= topline <= MAX_TOPLINE:
        raise InvalidParams(f"topline must be between 1 and {MAX_TOPLINE}, got {topline}")
    return topline


class FundMarketService:
    """
    Async query facade for fund market data.

    Args:
        cache: Shared CacheManager (a private one is created when omitted)
        fetcher: ``fetch_text`` compatible coroutine used for all upstream IO
    """

    def __init__(self, cache: Optional[CacheManager] = None, fetcher=fetch_text):
        self.cache = cache if cache is not None else CacheManager()
        self.fetcher = fetcher

    async def _cached(self, kind: str, key: str, compute_fn, force: bool = False):
        return await self.cache.get_or_compute(
            f"{kind}:{key}", ttl_for(kind), compute_fn, force=force
        )

    async def _best_effort(self, label: str, awaitable: Awaitable) -> Optional[Any]:
        """Await an optional enrichment; failures degrade to None."""
        try:
            return await awaitable
        except Exception as e:
            logger.warning(f"{label} unavailable: {e}")
            return None

    # ------------------------------------------------------------------
    # Shared upstream payloads
    # ------------------------------------------------------------------

    async def _pingzhong_raw(self, code: str, force: bool = False) -> str:
        async def compute():
            return await eastmoney.fetch_pingzhong_js(code, fetcher=self.fetcher)

        return await self._cached('pingzhong_raw', code, compute, force)

    async def _pingzhong_parsed(self, code: str, force: bool = False) -> Dict[str, Any]:
        """Fund name, code and NAV points from the JS data file."""
        async def compute():
            raw = await self._pingzhong_raw(code, force)
            points = normalize_nav_trend(extract_var_literal(raw, 'Data_netWorthTrend'))
            validate_nav_points(points)
            return {
                'fund_code': extract_var_string(raw, 'fS_code') or code,
                'name': extract_var_string(raw, 'fS_name') or code,
                'points': points,
            }

        return await self._cached('pingzhong_parsed', code, compute, force)

    async def _f10_basic(self, code: str, force: bool = False) -> Dict[str, Any]:
        async def compute():
            html = await eastmoney.fetch_f10_profile_html(code, fetcher=self.fetcher)
            return normalize_basic_profile(parse_key_value_table(html))

        return await self._cached('f10_basic', code, compute, force)

    # ------------------------------------------------------------------
    # Public queries
    # ------------------------------------------------------------------

    async def get_quote(self, code: str, force: bool = False) -> Dict[str, Any]:
        """
        Latest official NAV with an optional intraday estimate.

        The official NAV, date and change come from the last two NAV trend
        points. The estimate feed is best-effort: any failure omits the
        estimate keys instead of failing the quote.

        Raises:
            InvalidParams: If the fund code is malformed
            UpstreamFormatError: If the NAV trend has no points
        """
        code = validate_fund_code(code)

        async def compute():
            parsed = await self._pingzhong_parsed(code, force)
            points = parsed['points']
            if not points:
                raise UpstreamFormatError(f"Upstream missing NAV points for {code}")

            last = points[-1]
            prev_nav = points[-2]['nav'] if len(points) > 1 else None
            nav = last['nav']

            quote = {
                'fund_code': code,
                'nav': round4(nav),
                'nav_date': ms_to_ymd(last['ms']),
                'change': round4(nav - prev_nav) if prev_nav else 0.0,
                'change_percent': round2(nav / prev_nav * 100 - 100) if prev_nav else 0.0,
                'updated_at': datetime.now(timezone.utc).isoformat(),
                'source': eastmoney.SOURCE_PINGZHONG,
            }

            payload = await self._best_effort(
                f"Estimate for {code}",
                eastmoney.fetch_estimate_payload(code, fetcher=self.fetcher)
            )
            estimate = normalize_estimate(payload)
            if estimate:
                quote['estimated_nav'] = estimate['estimated_nav']
                quote['estimated_change_percent'] = estimate['estimated_change_percent']
                if estimate['estimate_time']:
                    quote['estimate_time'] = estimate['estimate_time']
                quote['source'] = eastmoney.SOURCE_QUOTE

            validate_quote_row(quote)
            return quote

        return await self._cached('quote', code, compute, force)

    async def get_nav_history(
        self,
        code: str,
        range: str = '30d',
        end_date: Optional[str] = None,
        force: bool = False
    ) -> Dict[str, Any]:
        """
        NAV points for a range window with per-point and cumulative returns.

        Args:
            code: Six-digit fund code
            range: 30d, 90d, 1y, 3y or since (unknown values read as 30d)
            end_date: Optional ``YYYY-MM-DD`` window end (end of day, UTC+8)

        Raises:
            InvalidParams: If the code or end date is malformed
            InsufficientData: If no point falls inside the window
        """
        code = validate_fund_code(code)
        range_name = normalize_range(range)
        end_ms = ymd_end_of_day_ms(end_date) if end_date else None

        async def compute():
            parsed = await self._pingzhong_parsed(code, force)
            window = slice_window(parsed['points'], range_name, end_ms)
            return {
                'fund_code': code,
                'range': range_name,
                'points': build_nav_history_points(window),
            }

        return await self._cached('nav_history', f"{code}:{range_name}:{end_date or ''}", compute, force)

    async def get_basic_info(self, code: str, force: bool = False) -> Dict[str, Any]:
        """
        Fund name plus profile fields from the F10 page.

        The F10 profile is best-effort. When it is unavailable the type is
        inferred from the fund name and the risk level from that type.
        """
        code = validate_fund_code(code)

        async def compute():
            parsed = await self._pingzhong_parsed(code, force)
            profile = await self._best_effort(f"F10 profile for {code}", self._f10_basic(code, force))
            profile = profile or {}

            info = {'fund_code': parsed['fund_code'], 'name': parsed['name']}

            fund_type = profile.get('type') or infer_fund_type(parsed['name'])
            risk_level = profile.get('risk_level') or infer_risk_level(fund_type)
            optional = {
                'type': fund_type,
                'inception_date': profile.get('inception_date'),
                'company': profile.get('company'),
                'risk_level': risk_level,
                'tags': profile.get('tags'),
            }
            info.update({k: v for k, v in optional.items() if v})
            return info

        return await self._cached('basic_info', code, compute, force)

    async def get_industry_config(self, code: str, force: bool = False) -> Dict[str, Any]:
        """
        Industry mix of the latest quarter with industry rows.

        Raises:
            UpstreamFormatError: If upstream reports a non-zero ErrCode
        """
        code = validate_fund_code(code)

        async def compute():
            payload = await eastmoney.fetch_industry_payload(code, fetcher=self.fetcher)
            return normalize_industry_config(
                payload, fund_code=code, source=eastmoney.SOURCE_INDUSTRY
            )

        return await self._cached('industry', code, compute, force)

    async def get_asset_allocation(self, code: str, force: bool = False) -> Dict[str, Any]:
        code = validate_fund_code(code)

        async def compute():
            raw = await self._pingzhong_raw(code, force)
            return normalize_asset_allocation(
                extract_var_literal(raw, 'Data_assetAllocation'),
                fund_code=code,
                source=eastmoney.SOURCE_ASSET_ALLOCATION,
            )

        return await self._cached('asset_allocation', code, compute, force)

    async def get_top_holdings(
        self,
        code: str,
        topline: int = 10,
        year: Optional[int] = None,
        month: Optional[int] = None,
        force: bool = False
    ) -> Dict[str, Any]:
        """
        Top holdings disclosed for a quarter.

        With ``year``/``month`` the quarter ending in that month is requested;
        when upstream does not return it, the latest quarter on the page is
        used instead.

        Raises:
            InvalidParams: If the code, topline or quarter is malformed
            UpstreamFormatError: If the page carries no holdings table
        """
        code = validate_fund_code(code)
        topline = _validate_topline(topline)
        validate_quarter_params(year, month)

        async def compute():
            html = await eastmoney.fetch_holdings_html(
                code, topline, year, month, fetcher=self.fetcher
            )
            target = quarter_end_from_year_month(year, month) if year is not None else None
            block = select_quarter(parse_holdings_tables(html), target)
            snapshot = normalize_holdings(
                block, fund_code=code, limit=topline, source=eastmoney.SOURCE_HOLDINGS
            )
            for row in snapshot['holdings']:
                validate_holding_row(row)
            return snapshot

        key = f"{code}:{topline}:{year or ''}:{month or ''}"
        return await self._cached('top_holdings', key, compute, force)

    async def get_top_holdings_comparison(
        self,
        code: str,
        topline: int = 10,
        force: bool = False
    ) -> Dict[str, Any]:
        """
        Compare the latest top holdings with the previous quarter.

        A failed previous-quarter fetch, or upstream falling back to the
        current quarter, yields an empty previous snapshot with
        ``as_of_date`` None.
        """
        code = validate_fund_code(code)
        topline = _validate_topline(topline)

        async def compute():
            current = await self.get_top_holdings(code, topline, force=force)
            previous = empty_snapshot()

            try:
                prev_year, prev_month = previous_quarter(current['as_of_date'])
            except HoldingsDiffError as e:
                logger.warning(f"No previous quarter for {code}: {e}")
                prev_year = prev_month = None

            if prev_year is not None:
                snapshot = await self._best_effort(
                    f"Previous holdings for {code} ({prev_year}-{prev_month:02d})",
                    self.get_top_holdings(code, topline, prev_year, prev_month, force=force)
                )
                if snapshot and snapshot['as_of_date'] != current['as_of_date']:
                    previous = {
                        'as_of_date': snapshot['as_of_date'],
                        'holdings': snapshot['holdings'],
                    }

            return {
                'fund_code': code,
                'current': {
                    'as_of_date': current['as_of_date'],
                    'holdings': current['holdings'],
                },
                'previous': previous,
                'changes': compare_holdings(current['holdings'], previous['holdings']),
                'source': eastmoney.SOURCE_HOLDINGS_COMPARE,
            }

        return await self._cached('holdings_compare', f"{code}:{topline}", compute, force)

    async def get_grand_total(
        self, code: str, force: bool = False, refetch_raw: Optional[bool] = None
    ) -> Dict[str, Any]:
        """
        Cumulative-return series of the fund, its peer average and indexes.

        refetch_raw defaults to force; callers that already refreshed the
        pingzhongdata file pass False.
        """
        code = validate_fund_code(code)
        if refetch_raw is None:
            refetch_raw = force

        async def compute():
            raw = await self._pingzhong_raw(code, refetch_raw)
            return normalize_grand_total(
                extract_var_literal(raw, 'Data_grandTotal'),
                fund_code=code,
                source=eastmoney.SOURCE_GRAND_TOTAL,
            )

        return await self._cached('grand_total', code, compute, force)

    async def get_similar_ranking(
        self, code: str, force: bool = False, refetch_raw: Optional[bool] = None
    ) -> Dict[str, Any]:
        """
        Latest peer-group rank and percentile.

        Either ranking literal may be missing or malformed; the affected
        fields are then None. refetch_raw behaves as in get_grand_total.
        """
        code = validate_fund_code(code)
        if refetch_raw is None:
            refetch_raw = force

        async def compute():
            raw = await self._pingzhong_raw(code, refetch_raw)
            literals = {}
            for name in ('Data_rateInSimilarType', 'Data_rateInSimilarPersent'):
                try:
                    literals[name] = extract_var_literal(raw, name)
                except UpstreamFormatError as e:
                    logger.warning(f"Ranking field for {code} unavailable: {e}")
                    literals[name] = None

            return normalize_similar_ranking(
                literals['Data_rateInSimilarType'],
                literals['Data_rateInSimilarPersent'],
                fund_code=code,
                source=eastmoney.SOURCE_PINGZHONG,
            )

        return await self._cached('similar_ranking', code, compute, force)

    async def get_analysis(self, code: str, horizon: str = '1y', force: bool = False) -> Dict[str, Any]:
        """
        Return, risk and drawdown analysis over a horizon.

        Args:
            code: Six-digit fund code
            horizon: 1y, 3y or since (unknown values read as 1y)

        Raises:
            InsufficientData: If the horizon holds fewer than two NAV points
        """
        code = validate_fund_code(code)
        horizon = normalize_horizon(horizon)

        async def compute():
            parsed = await self._pingzhong_parsed(code, force)
            window = slice_window(parsed['points'], horizon)

            ranking = await self._best_effort(
                f"Similar ranking for {code}",
                self.get_similar_ranking(code, force, refetch_raw=False),
            )
            grand_total = await self._best_effort(
                f"Grand total for {code}",
                self.get_grand_total(code, force, refetch_raw=False),
            )

            return compose_analysis_result(
                code,
                horizon,
                window,
                ranking=ranking,
                benchmark=select_benchmark_series(grand_total),
            )

        return await self._cached('analysis', f"{code}:{horizon}", compute, force)
