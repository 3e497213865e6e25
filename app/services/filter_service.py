"""Filtering and summary of the session ledger.

apply_filters(entries, criteria) -> FilterResult(visible, summary)

- date bounds are inclusive and optional
- a non-empty type set must contain type1 or type2
- a keyword must be a case-sensitive substring of type1/place1/type2/place2
- holidays only tag records (is_holiday); they never exclude anything
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set

from app.services.crawl.base import Amount, Record


@dataclass
class FilterCriteria:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    types: Set[str] = field(default_factory=set)
    keyword: str = ""
    holidays: Set[str] = field(default_factory=set)
    hide_original: bool = False

    def copy(self) -> "FilterCriteria":
        return replace(self, types=set(self.types), holidays=set(self.holidays))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "types": sorted(self.types),
            "keyword": self.keyword,
            "holidays": sorted(self.holidays),
            "hide_original": self.hide_original,
        }


@dataclass
class Summary:
    count: int = 0
    total: int = 0
    charge_total: Amount = 0
    spend_total: Amount = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "total": self.total,
            "charge_total": self.charge_total,
            "spend_total": self.spend_total,
        }


@dataclass
class FilterResult:
    visible: List[Record]
    summary: Summary


def matches(rec: Record, criteria: FilterCriteria) -> bool:
    if criteria.date_from and rec.date < criteria.date_from:
        return False
    if criteria.date_to and rec.date > criteria.date_to:
        return False
    if criteria.types:
        has_type = (rec.type1 and rec.type1 in criteria.types) or (rec.type2 and rec.type2 in criteria.types)
        if not has_type:
            return False
    if criteria.keyword:
        kw = criteria.keyword
        if not (kw in rec.place1 or kw in rec.place2 or kw in rec.type1 or kw in rec.type2):
            return False
    return True


def summarize(visible: List[Record], total: int) -> Summary:
    amounts = [r.amount or 0 for r in visible]
    return Summary(
        count=len(visible),
        total=total,
        charge_total=sum(v for v in amounts if v > 0),
        spend_total=sum(v for v in amounts if v < 0),
    )


def apply_filters(entries: Iterable[Record], criteria: FilterCriteria) -> FilterResult:
    all_entries = list(entries)
    visible: List[Record] = []
    for rec in all_entries:
        if not matches(rec, criteria):
            continue
        rec.is_holiday = rec.ymd in criteria.holidays
        visible.append(rec)
    return FilterResult(visible=visible, summary=summarize(visible, len(all_entries)))


def known_types(entries: Iterable[Record]) -> Set[str]:
    out: Set[str] = set()
    for rec in entries:
        if rec.type1:
            out.add(rec.type1)
        if rec.type2:
            out.add(rec.type2)
    return out


def default_criteria(entries: Iterable[Record]) -> FilterCriteria:
    """Criteria covering the whole ledger with every seen type selected."""
    recs = list(entries)
    dates = [r.date for r in recs]
    return FilterCriteria(
        date_from=min(dates) if dates else None,
        date_to=max(dates) if dates else None,
        types=known_types(recs),
        hide_original=True,
    )
