"""
Fetch client - single outbound text request with a bounded timeout.
Network IO only. No retries: callers treat failures as authoritative.
"""

import os
import asyncio
import logging
from typing import Dict, Optional

import requests
from dotenv import load_dotenv

from errors import (
    UpstreamHttpError,
    UpstreamTimeout,
    UpstreamConnectionError,
)

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = 'FundMarketEngine/0.1 (+local dev)'
DEFAULT_TIMEOUT_MS = 10_000

# Response bodies attached to errors are truncated to this many characters
MAX_ERROR_BODY_CHARS = 2000


def default_headers() -> Dict[str, str]:
    """Headers sent with every request unless the caller overrides them."""
    return {
        'User-Agent': os.getenv('FUND_HTTP_USER_AGENT', DEFAULT_USER_AGENT),
        'Accept': '*/*',
    }


def default_timeout_ms() -> int:
    """
    Read the default timeout from FUND_HTTP_TIMEOUT_MS.

    Raises:
        ValueError: If the environment value is not a positive integer
    """
    raw = os.getenv('FUND_HTTP_TIMEOUT_MS')
    if not raw:
        return DEFAULT_TIMEOUT_MS
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Invalid FUND_HTTP_TIMEOUT_MS: {raw}. Must be integer.")
    if value <= 0:
        raise ValueError(f"Invalid FUND_HTTP_TIMEOUT_MS: {raw}. Must be positive.")
    return value


def strip_bom(text: str) -> str:
    """Remove a leading UTF-8 byte order mark."""
    if text and text[0] == '\ufeff':
        return text[1:]
    return text


def _get_text(url: str, headers: Dict[str, str], timeout_s: float) -> str:
    """Blocking GET. Runs in a worker thread."""
    try:
        response = requests.get(url, headers=headers, timeout=timeout_s)
    except requests.exceptions.Timeout as e:
        raise UpstreamTimeout(f"Request timed out after {timeout_s:.1f}s: {url}") from e
    except requests.exceptions.RequestException as e:
        raise UpstreamConnectionError(f"Request failed for {url}: {e}") from e

    if not response.ok:
        body = response.text or ''
        raise UpstreamHttpError(
            f"Upstream HTTP {response.status_code} {response.reason}",
            status=response.status_code,
            body=body[:MAX_ERROR_BODY_CHARS],
        )

    # Upstream serves some pages without a charset header
    if response.encoding is None or response.encoding.lower() == 'iso-8859-1':
        response.encoding = response.apparent_encoding or 'utf-8'

    return strip_bom(response.text)


async def fetch_text(
    url: str,
    timeout_ms: Optional[int] = None,
    headers: Optional[Dict[str, str]] = None
) -> str:
    """
    Fetch a URL and return its body as text.

    The socket timeout and the overall wait are both bounded by
    ``timeout_ms``. Cancelling the awaiting task abandons the worker thread's
    result.

    Args:
        url: Absolute URL to fetch
        timeout_ms: Time bound in milliseconds (defaults to FUND_HTTP_TIMEOUT_MS)
        headers: Extra headers, overriding the defaults

    Returns:
        Response body with any BOM removed

    Raises:
        UpstreamHttpError: Non-success status (carries status and body)
        UpstreamTimeout: Request exceeded its bound
        UpstreamConnectionError: Connection could not be established
    """
    timeout_ms = timeout_ms or default_timeout_ms()
    timeout_s = timeout_ms / 1000.0

    merged = default_headers()
    if headers:
        merged.update(headers)

    logger.info(f"GET {url} (timeout={timeout_ms}ms)")

    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_get_text, url, merged, timeout_s),
            timeout=timeout_s,
        )
    except asyncio.TimeoutError as e:
        raise UpstreamTimeout(f"Request timed out after {timeout_s:.1f}s: {url}") from e
