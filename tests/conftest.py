import calendar
from datetime import date, timedelta
from typing import Dict, List, Sequence, Tuple

import pytest

from app.services.crawl.base import PageQuery

# (date, type1, place1, type2, place2, balance text, amount text)
Row = Tuple[date, str, str, str, str, str, str]

DEFAULT_OPTIONS = ("2024/03", "2024/02", "2024/01")


def _render(rows: Sequence[Row], options: Sequence[str] = DEFAULT_OPTIONS, selected: str = None) -> str:
    selected = selected or (options[0] if options else None)
    opts = "".join(
        f'<option value="{o}"{" selected" if o == selected else ""}>{o.replace("/", "年")}月</option>'
        for o in options
    )
    trs = []
    for i, (d, t1, p1, t2, p2, bal, amt) in enumerate(rows):
        trs.append(
            "<tr>"
            f'<td class="check"><input type="checkbox" name="printCheck" value="{i}"></td>'
            f"<td>{d.month:02d}/{d.day:02d}</td>"
            f"<td>{t1}</td><td>{p1}</td><td>{t2}</td><td>{p2}</td>"
            f'<td class="MoneyText">{bal}</td><td class="MoneyText">{amt}</td>'
            "</tr>"
        )
    return (
        "<html><head><meta charset=\"Shift_JIS\"></head><body>"
        '<form name="historyForm" method="post" action="/history">'
        '<input type="hidden" name="token" value="abc123">'
        f'<select name="specifyYearMonth">{opts}</select>'
        '<input type="text" name="specifyDay" value="">'
        '<input type="submit" name="SEARCH" value="検索">'
        '<div class="historyBox"><div class="historyTable"><table>'
        "<tr><th>印刷</th><th>月/日</th><th>種別</th><th>利用場所</th><th>種別</th>"
        "<th>利用場所</th><th>残高</th><th>入金・利用額</th></tr>"
        + "".join(trs)
        + "</table></div></div>"
        '<button type="submit" name="PRINT">印刷</button>'
        "</form></body></html>"
    )


def make_rows(start: date, end: date, *, skip: Sequence[date] = ()) -> List[Row]:
    """One usage row per day from end back to start, newest first."""
    rows: List[Row] = []
    d = end
    balance = 10000
    while d >= start:
        if d not in skip:
            rows.append((d, "入", "品川", "出", f"渋谷{d.day}", f"\\{balance:,}", "-210"))
            balance -= 210
        d -= timedelta(days=1)
    return rows


class DaySource:
    """Fake history source: a query for day D returns the rows of the
    `window` calendar days ending at D, rendered for the queried month."""

    def __init__(self, rows: Sequence[Row], *, options: Sequence[str] = DEFAULT_OPTIONS, window: int = 10) -> None:
        self.rows = list(rows)
        self.options = list(options)
        self.window = window
        self.queries: List[PageQuery] = []

    def page_for(self, q: date, token: str) -> str:
        lo = q - timedelta(days=self.window - 1)
        rows = sorted((r for r in self.rows if lo <= r[0] <= q), key=lambda r: r[0], reverse=True)
        return _render(rows, self.options, selected=token)

    async def __call__(self, query: PageQuery) -> str:
        self.queries.append(query)
        opt = query.option
        last = calendar.monthrange(opt.year, opt.month)[1]
        q = date(opt.year, opt.month, min(int(query.day), last))
        return self.page_for(q, opt.token)


class ScriptedSource:
    """Returns canned responses in order; an Exception instance is raised instead."""

    def __init__(self, responses: Sequence) -> None:
        self.responses = list(responses)
        self.queries: List[PageQuery] = []

    async def __call__(self, query: PageQuery) -> str:
        self.queries.append(query)
        resp = self.responses[min(len(self.queries), len(self.responses)) - 1]
        if isinstance(resp, Exception):
            raise resp
        return resp


@pytest.fixture
def render_page():
    return _render


@pytest.fixture
def rows_between():
    return make_rows


@pytest.fixture
def day_source():
    return DaySource


@pytest.fixture
def scripted_source():
    return ScriptedSource


@pytest.fixture
def sample_rows() -> Dict[str, Row]:
    return {
        "charge": (date(2024, 3, 15), "ｶｰﾄﾞ", "モバイル", "", "", "\\5,000", "+3,000"),
        "ride": (date(2024, 3, 14), "入", "品川", "出", "渋谷", "\\2,000", "-210"),
        "shop": (date(2024, 3, 13), "物販", "", "", "", "\\2,210", "-480"),
    }
