"""
Raw format extractors for upstream fund pages.
Pure functions - no IO, network, or side effects.

Four encodings are handled:
- JSONP-wrapped JSON (intraday estimate feed)
- ``var name = <literal>`` blocks embedded in a JS data file
- HTML key/value tables (fund profile page)
- HTML data tables with header-driven column mapping (top holdings)

Extractors fail fast with UpstreamFormatError instead of returning partial
structures.
"""

import re
import json
import math
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from errors import UpstreamFormatError


_BRACKET_PAIRS = {'[': ']', '{': '}'}

_JS_ESCAPES = {
    'n': '\n',
    'r': '\r',
    't': '\t',
    'b': '\b',
    'f': '\f',
}

# Header substrings for the holdings table (compared with whitespace removed)
HOLDINGS_COLUMNS = {
    'stock_code': '股票代码',
    'stock_name': '股票名称',
    'weight_pct': '占净值比例',
    'shares_wan': '持股数',
    'market_value_wan': '持仓市值',
}


# ---------------------------------------------------------------------------
# Numeric and text cleanup
# ---------------------------------------------------------------------------

def clean_number_text(text: Any) -> str:
    """Strip thousands separators and percent signs."""
    if text is None:
        return ''
    return str(text).replace(',', '').replace('%', '').strip()


def safe_number(value: Any) -> Optional[float]:
    """
    Parse a number from upstream text.

    Returns:
        Finite float, or None when the value is missing or not numeric
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    cleaned = clean_number_text(value)
    if not cleaned:
        return None

    try:
        number = float(cleaned)
    except ValueError:
        return None

    return number if math.isfinite(number) else None


def collapse_whitespace(text: Any) -> str:
    """Collapse runs of whitespace (including non-breaking spaces)."""
    return ' '.join(str(text or '').split())


def normalize_date_text(text: Any) -> str:
    """
    Pull a calendar date out of free text.

    Accepts ``2004-3-15`` and ``2004年03月15日`` forms.

    Returns:
        ``YYYY-MM-DD`` or an empty string when no date is present
    """
    raw = str(text or '')

    match = re.search(r'(\d{4})-(\d{1,2})-(\d{1,2})', raw)
    if not match:
        match = re.search(r'(\d{4})年(\d{1,2})月(\d{1,2})日', raw)
    if not match:
        return ''

    year, month, day = match.groups()
    return f"{year}-{int(month):02d}-{int(day):02d}"


# ---------------------------------------------------------------------------
# 1. JSONP
# ---------------------------------------------------------------------------

def unwrap_jsonp(text: str, callback: str = 'jsonpgz') -> Any:
    """
    Unwrap a ``callback(...)`` JSONP envelope and parse the payload.

    Args:
        text: Full response body
        callback: Expected callback name

    Returns:
        Parsed JSON payload

    Raises:
        UpstreamFormatError: If the envelope is absent or payload is not JSON
    """
    trimmed = (text or '').strip()
    pattern = re.compile(rf'{re.escape(callback)}\((.*)\);?', re.DOTALL)
    match = pattern.fullmatch(trimmed)
    if not match:
        raise UpstreamFormatError(f"Invalid JSONP response: missing {callback}(...) envelope")

    payload = match.group(1).strip()
    if not payload:
        raise UpstreamFormatError("Empty JSONP payload")

    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise UpstreamFormatError(f"Invalid JSONP payload: {e}") from e


# ---------------------------------------------------------------------------
# 2. Embedded "var name = literal" blocks
# ---------------------------------------------------------------------------

def find_var_anchor(text: str, name: str) -> int:
    """
    Phase one: locate ``var <name> =``.

    Returns:
        Index just past the ``=`` sign, or -1 when the variable is absent
    """
    match = re.search(rf'\bvar\s+{re.escape(name)}\s*=', text or '')
    return match.end() if match else -1


def scan_balanced(text: str, start: int) -> int:
    """
    Phase two: depth-counted scan for the bracket matching ``text[start]``.

    Only brackets of the opening kind change depth. Characters inside single-
    or double-quoted string literals (including escaped quotes) are skipped,
    so brackets inside string values never close the span.

    Args:
        text: Source text
        start: Index of an opening ``[`` or ``{``

    Returns:
        Index one past the matching closing bracket, or -1 if unbalanced

    Raises:
        ValueError: If ``text[start]`` is not an opening bracket
    """
    if start < 0 or start >= len(text) or text[start] not in _BRACKET_PAIRS:
        raise ValueError(f"No opening bracket at index {start}")

    open_ch = text[start]
    close_ch = _BRACKET_PAIRS[open_ch]
    depth = 0
    quote = None
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]

        if quote is not None:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == quote:
                quote = None
            continue

        if ch == '"' or ch == "'":
            quote = ch
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i + 1

    return -1


def find_var_literal(text: str, name: str) -> Optional[str]:
    """
    Return the raw ``[...]`` or ``{...}`` text assigned to ``var <name>``.

    The search for the opening bracket stops at the statement's ``;`` so a
    scalar assignment never borrows the next variable's literal.
    """
    text = text or ''
    anchor = find_var_anchor(text, name)
    if anchor < 0:
        return None

    start = -1
    for i in range(anchor, len(text)):
        ch = text[i]
        if ch in _BRACKET_PAIRS:
            start = i
            break
        if ch == ';':
            return None
    if start < 0:
        return None

    end = scan_balanced(text, start)
    if end < 0:
        return None

    return text[start:end]


def extract_var_literal(text: str, name: str) -> Any:
    """
    Extract and parse the JSON literal assigned to ``var <name>``.

    Raises:
        UpstreamFormatError: If the variable is missing or not valid JSON
    """
    literal = find_var_literal(text, name)
    if literal is None:
        raise UpstreamFormatError(f"Upstream missing {name}")

    try:
        return json.loads(literal)
    except json.JSONDecodeError as e:
        raise UpstreamFormatError(f"Upstream {name} is not valid JSON: {e}") from e


def extract_var_string(text: str, name: str) -> Optional[str]:
    """Read ``var <name> = "...";`` or return None."""
    match = re.search(rf'\bvar\s+{re.escape(name)}\s*=\s*"([^"]*)"\s*;', text or '')
    return match.group(1) if match else None


def read_js_string(text: str, start: int) -> str:
    """
    Decode a double-quoted JS string body beginning at ``start``.

    ``start`` points just past the opening quote. Decoding stops at the first
    unescaped quote or the end of text.
    """
    out = []
    i = start
    while i < len(text):
        ch = text[i]
        if ch == '"':
            break
        if ch == '\\' and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt == 'u' and re.fullmatch(r'[0-9a-fA-F]{4}', text[i + 2:i + 6]):
                out.append(chr(int(text[i + 2:i + 6], 16)))
                i += 6
                continue
            out.append(_JS_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return ''.join(out)


def extract_apidata_content(js_text: str) -> str:
    """
    Pull the HTML out of ``var apidata={ content:"...", ... }``.

    Raises:
        UpstreamFormatError: If the content field is absent
    """
    raw = js_text or ''
    match = re.search(r'content\s*:\s*"', raw)
    if not match:
        raise UpstreamFormatError("Upstream missing apidata content")
    return read_js_string(raw, match.end())


# ---------------------------------------------------------------------------
# 3. HTML key/value table
# ---------------------------------------------------------------------------

def parse_key_value_table(html: str, selector: str = 'table.info.w790') -> Dict[str, str]:
    """
    Pair each ``<th>`` label with its following ``<td>`` value.

    Args:
        html: Page HTML
        selector: CSS selector for the attributes table

    Returns:
        Mapping of label text to value text (tags and entities stripped)

    Raises:
        UpstreamFormatError: If the table is absent
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    table = soup.select_one(selector)
    if table is None:
        raise UpstreamFormatError(f"Upstream missing table {selector}")

    mapping: Dict[str, str] = {}
    for th in table.find_all('th'):
        label = collapse_whitespace(th.get_text(''))
        if not label:
            continue
        td = th.find_next_sibling('td')
        value = collapse_whitespace(td.get_text('')) if td is not None else ''
        mapping[label] = value

    return mapping


def lookup_label(mapping: Dict[str, str], *labels: str) -> str:
    """
    Find a value by label: exact matches first, then substring matches.

    Labels are tried in the order given.
    """
    for label in labels:
        if mapping.get(label):
            return mapping[label]

    for label in labels:
        for key, value in mapping.items():
            if label in key and value:
                return value

    return ''


# ---------------------------------------------------------------------------
# 4. HTML data tables with header mapping
# ---------------------------------------------------------------------------

def _compact(text: str) -> str:
    return ''.join((text or '').split())


def resolve_columns(headers: List[str], columns: Dict[str, str]) -> Dict[str, int]:
    """
    Map semantic column names to header indices by substring match.

    Columns whose label appears in no header map to -1.
    """
    compact_headers = [_compact(h) for h in headers]
    resolved = {}
    for field, label in columns.items():
        resolved[field] = next(
            (idx for idx, header in enumerate(compact_headers) if label in header),
            -1
        )
    return resolved


def parse_holdings_table(table) -> List[Dict[str, Any]]:
    """
    Parse one holdings table element into raw holding rows.

    Rows without a stock code or stock name are dropped. Numeric cells that
    cannot be parsed read as 0.
    """
    thead = table.find('thead')
    header_row = thead if thead is not None else table.find('tr')
    headers = [th.get_text('') for th in header_row.find_all('th')] if header_row is not None else []
    idx = resolve_columns(headers, HOLDINGS_COLUMNS)

    tbody = table.find('tbody')
    rows = (tbody if tbody is not None else table).find_all('tr')

    def cell(cells: List[str], field: str) -> str:
        i = idx[field]
        if i < 0 or i >= len(cells):
            return ''
        return cells[i]

    holdings = []
    for row in rows:
        cells = [collapse_whitespace(td.get_text('')) for td in row.find_all('td')]
        if not cells:
            continue

        stock_code = cell(cells, 'stock_code')
        stock_name = cell(cells, 'stock_name')
        if not stock_code or not stock_name:
            continue

        holdings.append({
            'stock_code': stock_code,
            'stock_name': stock_name,
            'weight_pct': safe_number(cell(cells, 'weight_pct')) or 0.0,
            'shares_wan': safe_number(cell(cells, 'shares_wan')) or 0.0,
            'market_value_wan': safe_number(cell(cells, 'market_value_wan')) or 0.0,
        })

    return holdings


def _table_as_of_date(table) -> str:
    label = table.find_previous(string=re.compile('截止至'))
    if label is None:
        return ''
    font = label.find_next('font')
    return normalize_date_text(font.get_text() if font is not None else label)


def parse_holdings_tables(html: str) -> List[Dict[str, Any]]:
    """
    Parse every quarter-stamped holdings table in a disclosure page.

    Returns:
        List of ``{'as_of_date', 'holdings'}`` blocks in page order
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    blocks = []
    for table in soup.select('table.tzxq'):
        blocks.append({
            'as_of_date': _table_as_of_date(table),
            'holdings': parse_holdings_table(table),
        })
    return blocks


def select_quarter(blocks: List[Dict[str, Any]], target_as_of: Optional[str] = None) -> Dict[str, Any]:
    """
    Pick the block for ``target_as_of``, falling back to the latest quarter.

    Raises:
        UpstreamFormatError: If there are no blocks at all
    """
    if not blocks:
        raise UpstreamFormatError("Upstream missing holdings tables")

    target = (target_as_of or '').strip()
    if target:
        for block in blocks:
            if block['as_of_date'] == target:
                return block

    return max(blocks, key=lambda b: b['as_of_date'])
