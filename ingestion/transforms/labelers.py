"""
Deterministic label inference for fund profiles.
Keyword rules over upstream type/name text. Used only to fill gaps the
upstream profile leaves empty.
"""

from typing import Iterable


def _includes_any(text: str, keywords: Iterable[str]) -> bool:
    return any(k and k in text for k in keywords)


def infer_risk_level(fund_type: str) -> str:
    """
    Infer a coarse risk level from the upstream fund type.

    Rules (first match wins):
    - money market (货币): 低
    - bond without equity (债券, no 股票): 中
    - hybrid (混合): 中高
    - QDII, equity or index: 高

    Returns:
        Risk level label, or '' when the type gives no signal
    """
    t = str(fund_type or '')
    if not t:
        return ''
    if '货币' in t:
        return '低'
    if '债券' in t and '股票' not in t:
        return '中'
    if '混合' in t:
        return '中高'
    if 'QDII' in t:
        return '高'
    if '股票' in t or '指数' in t:
        return '高'
    return ''


def infer_fund_type(name: str) -> str:
    """Infer a fund type label from the fund name when no profile exists."""
    label = str(name or '')
    if not label:
        return ''

    if 'QDII' in label:
        return 'QDII'
    if '货币' in label:
        return '货币型'
    if '债券' in label:
        return '债券型'
    if _includes_any(label, ['指数', 'ETF', '联接']):
        return '指数型'
    if '股票' in label:
        return '股票型'
    if '混合' in label:
        return '混合型'

    return ''
