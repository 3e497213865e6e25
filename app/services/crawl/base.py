from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional, Tuple, Union

Amount = Union[int, float]

# Index follows Sunday-first numbering (0 = Sunday)
DAY_CHARS = ("日", "月", "火", "水", "木", "金", "土")

_MONEY_STRIP = re.compile(r"[\\¥￥,\s]")
_MONEY_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_WS = re.compile(r"\s+")


def parse_money(raw: Optional[str]) -> Optional[Amount]:
    """Parse a localized money cell like '\\1,234' or '-210'.

    Returns None for empty or non-numeric text; zero stays zero.
    """
    t = _MONEY_STRIP.sub("", raw or "")
    if not t or not _MONEY_RE.match(t):
        return None
    num = float(t)
    return int(num) if num.is_integer() else num


def normalize_field(s: Optional[str]) -> str:
    return _WS.sub("", s or "")


def dow_index(d: date) -> int:
    return (d.weekday() + 1) % 7


def ym_number(year: int, month: int) -> int:
    return year * 100 + month


@dataclass
class Record:
    """One usage line of the history table."""

    date: date
    type1: str = ""
    place1: str = ""
    type2: str = ""
    place2: str = ""
    balance: Optional[Amount] = None
    amount: Optional[Amount] = None
    entry_id: Optional[str] = field(default=None, compare=False)
    # Display tag set by the filter engine
    is_holiday: bool = field(default=False, compare=False)

    @property
    def ymd(self) -> str:
        return self.date.isoformat()

    @property
    def dow_index(self) -> int:
        return dow_index(self.date)

    @property
    def dow(self) -> str:
        return DAY_CHARS[self.dow_index]

    def natural_key(self) -> Tuple[Any, ...]:
        return (
            self.ymd,
            normalize_field(self.type1),
            normalize_field(self.place1),
            normalize_field(self.type2),
            normalize_field(self.place2),
            self.amount,
            self.balance,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.ymd,
            "dow": self.dow,
            "type1": self.type1,
            "place1": self.place1,
            "type2": self.type2,
            "place2": self.place2,
            "balance": self.balance,
            "amount": self.amount,
            "entry_id": self.entry_id,
            "is_holiday": self.is_holiday,
        }


@dataclass(frozen=True)
class YearMonthOption:
    year: int
    month: int
    token: str

    @property
    def ym(self) -> int:
        return ym_number(self.year, self.month)


@dataclass(frozen=True)
class PageQuery:
    """A single (year-month, day) request against the history form."""

    option: YearMonthOption
    day: str
    form: Tuple[Tuple[str, str], ...] = ()

    def form_data(self) -> Dict[str, str]:
        data = {k: v for k, v in self.form if not k.startswith("se-")}
        data["specifyYearMonth"] = self.option.token
        data["specifyDay"] = self.day
        data["SEARCH"] = "検索"
        return data


class Spider:
    """Minimal spider contract.

    Subclasses implement fetch() returning the decoded markup for a query.
    """

    name: str = "base"

    async def fetch(self, query: PageQuery) -> str:
        raise NotImplementedError


class SourceFetchError(Exception):
    """A history page could not be fetched (network, timeout or non-2xx)."""
