from __future__ import annotations

import codecs
import logging
import os
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import httpx
from selectolax.parser import HTMLParser, Node

from ..base import PageQuery, Record, SourceFetchError, Spider, YearMonthOption, parse_money, ym_number

logger = logging.getLogger(__name__)

TABLE_SEL = ".historyTable table"
YEAR_MONTH_SEL = 'select[name="specifyYearMonth"]'
ROW_CHECK_SEL = 'input[name="printCheck"]'

# Windows-31J: Shift_JIS plus the NEC/IBM extension characters (髙, ①, ㈱)
DEFAULT_ENCODING = "cp932"


def parse_document(html: str) -> HTMLParser:
    return HTMLParser(html or "<html></html>")


def _parse_year_month(value: Optional[str]) -> Optional[Tuple[int, int]]:
    parts = (value or "").strip().split("/")
    if len(parts) < 2:
        return None
    try:
        year, month = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not year or not 1 <= month <= 12:
        return None
    return year, month


def _option_value(node: Node) -> str:
    value = node.attributes.get("value")
    if value is None:
        return node.text(strip=True)
    return value


def year_month_options(doc: HTMLParser) -> List[YearMonthOption]:
    """Return the selectable year-months advertised by the page, newest first."""
    select = doc.css_first(YEAR_MONTH_SEL)
    if select is None:
        return []
    out: List[YearMonthOption] = []
    for node in select.css("option"):
        token = _option_value(node)
        ym = _parse_year_month(token)
        if ym is None:
            continue
        out.append(YearMonthOption(year=ym[0], month=ym[1], token=token))
    return sorted(out, key=lambda o: o.ym, reverse=True)


def selected_year_month(doc: HTMLParser, *, today: Optional[date] = None) -> Tuple[int, int]:
    """Year/month the page was rendered for.

    Uses the selected option, else the first one (what a browser submits), else today.
    """
    select = doc.css_first(YEAR_MONTH_SEL)
    value = None
    if select is not None:
        chosen = select.css_first("option[selected]") or select.css_first("option")
        if chosen is not None:
            value = _option_value(chosen)
    ym = _parse_year_month(value)
    if ym is None:
        today = today or date.today()
        return today.year, today.month
    return ym


def find_option_for_date(d: date, options: Sequence[YearMonthOption]) -> Optional[YearMonthOption]:
    """Pick the newest option not after d's year-month, else the oldest one."""
    target = ym_number(d.year, d.month)
    for opt in options:
        if opt.ym <= target:
            return opt
    return options[-1] if options else None


def _cell_text(cells: List[Node], idx: int) -> str:
    if idx >= len(cells):
        return ""
    return cells[idx].text(strip=True)


def _parse_row(row: Node, *, year: int, month: int) -> Optional[Record]:
    check = row.css_first(ROW_CHECK_SEL)
    if check is None:
        return None
    cells = row.css("td")
    parts = _cell_text(cells, 1).split("/")
    if len(parts) < 2:
        return None
    try:
        m, d = int(parts[0]), int(parts[1])
        # Window straddling a year boundary: months after the context belong to last year
        row_year = year - 1 if m > month else year
        when = date(row_year, m, d)
    except ValueError:
        return None
    return Record(
        date=when,
        type1=_cell_text(cells, 2),
        place1=_cell_text(cells, 3),
        type2=_cell_text(cells, 4),
        place2=_cell_text(cells, 5),
        balance=parse_money(_cell_text(cells, 6)),
        amount=parse_money(_cell_text(cells, 7)),
        entry_id=check.attributes.get("value"),
    )


def extract_records(doc: HTMLParser, *, year: int, month: int) -> List[Record]:
    """Extract usage records from a history document for the given context."""
    table = doc.css_first(TABLE_SEL)
    if table is None:
        logger.debug("history table not found")
        return []
    out: List[Record] = []
    for row in table.css("tr"):
        rec = _parse_row(row, year=year, month=month)
        if rec is not None:
            out.append(rec)
    return out


def form_fields(doc: HTMLParser) -> Tuple[Tuple[str, str], ...]:
    """Successful controls of the page's first form as (name, value) pairs."""
    form = doc.css_first("form")
    if form is None:
        return ()
    fields: List[Tuple[str, str]] = []
    for node in form.css("input, select, textarea"):
        attrs = node.attributes
        name = attrs.get("name")
        if not name or "disabled" in attrs:
            continue
        if node.tag == "select":
            chosen = node.css_first("option[selected]") or node.css_first("option")
            if chosen is not None:
                fields.append((name, _option_value(chosen)))
            continue
        if node.tag == "textarea":
            fields.append((name, node.text()))
            continue
        kind = (attrs.get("type") or "text").lower()
        if kind in ("submit", "button", "image", "reset", "file"):
            continue
        if kind in ("checkbox", "radio") and "checked" not in attrs:
            continue
        fields.append((name, attrs.get("value") or ("on" if kind in ("checkbox", "radio") else "")))
    return tuple(fields)


def decode_body(content: bytes, encoding: str = DEFAULT_ENCODING) -> str:
    """Decode page bytes with the declared encoding; bad sequences become U+FFFD."""
    try:
        codecs.lookup(encoding)
    except LookupError:
        logger.warning("unknown encoding %s, decoding as %s", encoding, DEFAULT_ENCODING)
        encoding = DEFAULT_ENCODING
    return content.decode(encoding, errors="replace")


class HistoryPageSpider(Spider):
    """Fetches usage-history pages by submitting the year-month/day search form.

    Configuration via environment variables (explicit arguments win):

    - HISTORY_SOURCE_URL: page URL, used for the on-load GET and the search POST
    - HISTORY_SOURCE_ENCODING: legacy encoding declared by the page (default: cp932)
    - HISTORY_FETCH_TIMEOUT: per-request timeout in seconds (default: 15)

    One AsyncClient is kept for the spider's lifetime so session cookies persist.
    """

    name = "history_page"

    def __init__(
        self,
        *,
        source_url: Optional[str] = None,
        encoding: Optional[str] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.source_url = source_url or os.getenv("HISTORY_SOURCE_URL")
        self.encoding = encoding or os.getenv("HISTORY_SOURCE_ENCODING") or DEFAULT_ENCODING
        self.timeout = float(timeout or os.getenv("HISTORY_FETCH_TIMEOUT") or 15.0)
        self.headers = headers or {"User-Agent": "SuicaHistory-Crawler/0.1"}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # --- Public API ---
    async def fetch(self, query: PageQuery) -> str:
        return await self._request("POST", data=query.form_data())

    async def fetch_initial(self) -> str:
        return await self._request("GET")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- Internals ---
    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self.headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, *, data: Optional[Dict[str, str]] = None) -> str:
        if not self.source_url:
            raise SourceFetchError("No source URL configured (set HISTORY_SOURCE_URL)")
        try:
            resp = await self._get_client().request(method, self.source_url, data=data)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceFetchError(f"{method} {self.source_url} failed: {exc}") from exc
        return decode_body(resp.content, self.encoding)
