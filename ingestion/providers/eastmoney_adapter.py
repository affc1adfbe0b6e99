"""
Eastmoney adapter - fetch raw fund payloads from the Eastmoney / 1234567 sites.
Network IO allowed here, but minimal business logic.
Returns upstream text or decoded JSON - no normalization.
"""

import json
import time
import random
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from errors import UpstreamFormatError
from ingestion.providers.fetch_client import fetch_text
from ingestion.transforms.extractors import unwrap_jsonp, extract_apidata_content

logger = logging.getLogger(__name__)

Fetcher = Callable[..., Awaitable[str]]

PINGZHONG_URL = 'https://fund.eastmoney.com/pingzhongdata/{code}.js?v={ms}'
ESTIMATE_URL = 'https://fundgz.1234567.com.cn/js/{code}.js?rt={ms}'
F10_PROFILE_URL = 'https://fundf10.eastmoney.com/jbgk_{code}.html'
INDUSTRY_URL = 'https://api.fund.eastmoney.com/f10/HYPZ/?fundCode={code}&year='
INDUSTRY_REFERER = 'https://fundf10.eastmoney.com/hytz_{code}.html'
HOLDINGS_URL = (
    'https://fundf10.eastmoney.com/FundArchivesDatas.aspx'
    '?type=jjcc&code={code}&topline={topline}&year={year}&month={month}&rt={rt}'
)
HOLDINGS_REFERER = 'https://fundf10.eastmoney.com/ccmx_{code}.html'

# Per-endpoint time bounds in milliseconds
PINGZHONG_TIMEOUT_MS = 15_000
ESTIMATE_TIMEOUT_MS = 8_000
F10_TIMEOUT_MS = 15_000
INDUSTRY_TIMEOUT_MS = 15_000
HOLDINGS_TIMEOUT_MS = 15_000

# The F10 JSON API rejects requests without a browser-like agent
BROWSER_HEADERS = {'User-Agent': 'Mozilla/5.0'}

SOURCE_PINGZHONG = 'eastmoney:pingzhongdata'
SOURCE_QUOTE = 'eastmoney:pingzhongdata+fundgz'
SOURCE_INDUSTRY = 'eastmoney:f10:HYPZ'
SOURCE_HOLDINGS = 'eastmoney:f10:FundArchivesDatas:jjcc'
SOURCE_HOLDINGS_COMPARE = 'eastmoney:f10:FundArchivesDatas:jjcc:compare'
SOURCE_ASSET_ALLOCATION = 'eastmoney:pingzhongdata:Data_assetAllocation'
SOURCE_GRAND_TOTAL = 'eastmoney:pingzhongdata:Data_grandTotal'


def _now_ms() -> int:
    return int(time.time() * 1000)


async def fetch_pingzhong_js(code: str, fetcher: Fetcher = fetch_text) -> str:
    """
    Fetch the per-fund JS data file (NAV trend, ranking, allocation, ...).

    Args:
        code: Validated six-digit fund code
        fetcher: Text fetcher, ``fetch_text`` compatible

    Returns:
        Raw JavaScript text
    """
    url = PINGZHONG_URL.format(code=code, ms=_now_ms())
    return await fetcher(url, timeout_ms=PINGZHONG_TIMEOUT_MS)


async def fetch_estimate_payload(code: str, fetcher: Fetcher = fetch_text) -> Any:
    """
    Fetch the intraday estimate feed and unwrap its JSONP envelope.

    Returns:
        Decoded JSON payload (``gsz``, ``gszzl``, ``gztime``, ...)

    Raises:
        UpstreamFormatError: If the envelope or JSON is malformed
    """
    url = ESTIMATE_URL.format(code=code, ms=_now_ms())
    text = await fetcher(url, timeout_ms=ESTIMATE_TIMEOUT_MS)
    return unwrap_jsonp(text, 'jsonpgz')


async def fetch_f10_profile_html(code: str, fetcher: Fetcher = fetch_text) -> str:
    """Fetch the F10 fund profile page HTML."""
    url = F10_PROFILE_URL.format(code=code)
    return await fetcher(url, timeout_ms=F10_TIMEOUT_MS)


async def fetch_industry_payload(code: str, fetcher: Fetcher = fetch_text) -> Dict[str, Any]:
    """
    Fetch the industry allocation JSON.

    Raises:
        UpstreamFormatError: If the body is not a JSON object
    """
    url = INDUSTRY_URL.format(code=code)
    headers = dict(BROWSER_HEADERS, Referer=INDUSTRY_REFERER.format(code=code))
    text = await fetcher(url, timeout_ms=INDUSTRY_TIMEOUT_MS, headers=headers)

    try:
        payload = json.loads(text)
    except ValueError as e:
        raise UpstreamFormatError(f"Industry config for {code} is not valid JSON") from e

    if not isinstance(payload, dict):
        raise UpstreamFormatError(f"Industry config for {code} is not an object")
    return payload


async def fetch_holdings_html(
    code: str,
    topline: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
    fetcher: Fetcher = fetch_text
) -> str:
    """
    Fetch a quarterly holdings disclosure and return its embedded HTML.

    Empty ``year``/``month`` asks upstream for its default (latest) quarters.

    Returns:
        HTML fragment containing one or more quarter tables
    """
    url = HOLDINGS_URL.format(
        code=code,
        topline=topline,
        year='' if year is None else year,
        month='' if month is None else month,
        rt=random.random(),
    )
    headers = dict(BROWSER_HEADERS, Referer=HOLDINGS_REFERER.format(code=code))
    text = await fetcher(url, timeout_ms=HOLDINGS_TIMEOUT_MS, headers=headers)
    return extract_apidata_content(text)
