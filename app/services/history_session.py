"""In-memory usage-history session.

A session owns everything that lives for one browsing session of the history
page: the on-load document, the ledger seeded from it, the filter criteria,
the crawl controller and the holiday calendar. Nothing is persisted.

Usage:
    session = await HistorySession.load(spider)          # GET the on-load page + holidays
    report = await session.crawl()                        # cover current date bounds
    result = session.apply()                              # visible rows + summary
    text = session.export_csv()
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from app.services.crawl.base import Record
from app.services.crawl.controller import CrawlController, CrawlReport, Fetcher
from app.services.crawl.pipeline import Ledger, export_csv, export_filename
from app.services.crawl.spiders.history_page_spider import (
    HistoryPageSpider,
    extract_records,
    parse_document,
    selected_year_month,
)
from app.services.filter_service import FilterCriteria, FilterResult, apply_filters, default_criteria
from app.services.holiday_service import HolidayService, parse_holidays

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class HistorySession:
    def __init__(
        self,
        html: str,
        *,
        fetch: Optional[Fetcher] = None,
        spider: Optional[HistoryPageSpider] = None,
        holiday_service: Optional[HolidayService] = None,
        today: Optional[date] = None,
    ) -> None:
        self.spider = spider
        self.document = parse_document(html)
        self.year, self.month = selected_year_month(self.document, today=today)

        original = extract_records(self.document, year=self.year, month=self.month)
        self.ledger = Ledger(original)
        self.original_count = len(self.ledger)
        self.defaults = default_criteria(self.ledger)
        self.filters = self.defaults.copy()
        self.holiday_service = holiday_service or HolidayService()
        self.last_report: Optional[CrawlReport] = None

        if fetch is None:
            if spider is None:
                spider = self.spider = HistoryPageSpider()
            fetch = spider.fetch
        self.controller = CrawlController(self.ledger, fetch)
        self.result = self.apply()
        logger.info(
            "session ready: %d on-load records for %04d/%02d", self.original_count, self.year, self.month
        )

    @classmethod
    async def load(
        cls,
        spider: HistoryPageSpider,
        *,
        html: Optional[str] = None,
        refresh_holidays: bool = True,
        **kwargs: Any,
    ) -> "HistorySession":
        """Build a session from the given markup (or the spider's on-load GET), then
        load the holiday calendar. A calendar failure leaves the session untagged."""
        if html is None:
            html = await spider.fetch_initial()
        session = cls(html, spider=spider, **kwargs)
        if refresh_holidays:
            await session.refresh_holidays()
        return session

    async def aclose(self) -> None:
        if self.spider is not None:
            await self.spider.aclose()

    # --- Filters ---
    @property
    def entries(self) -> List[Record]:
        return self.ledger.entries

    @property
    def crawling(self) -> bool:
        return self.controller.running

    def apply(self) -> FilterResult:
        self.result = apply_filters(self.ledger, self.filters)
        return self.result

    async def update_filters(
        self,
        *,
        date_from: Any = _UNSET,
        date_to: Any = _UNSET,
        types: Optional[Iterable[str]] = None,
        keyword: Optional[str] = None,
        hide_original: Optional[bool] = None,
    ) -> FilterResult:
        """Update criteria and re-apply. A changed start date triggers a crawl first."""
        from_changed = False
        if date_from is not _UNSET:
            from_changed = date_from != self.filters.date_from
            self.filters.date_from = date_from
        if date_to is not _UNSET:
            self.filters.date_to = date_to
        if types is not None:
            self.filters.types = set(types)
        if keyword is not None:
            self.filters.keyword = keyword.strip()
        if hide_original is not None:
            self.filters.hide_original = hide_original
        if from_changed:
            await self.crawl()
        return self.apply()

    def reset_filters(self) -> FilterResult:
        """Restore default bounds and every on-load type; clear keyword and holidays."""
        self.filters = self.defaults.copy()
        return self.apply()

    # --- Holidays ---
    async def refresh_holidays(self) -> FilterResult:
        self.filters.holidays = await self.holiday_service.refresh()
        return self.apply()

    def set_holidays_text(self, raw: str) -> FilterResult:
        self.filters.holidays = parse_holidays(raw)
        return self.apply()

    # --- Crawl ---
    async def crawl(self, *, date_from: Any = _UNSET, date_to: Any = _UNSET) -> CrawlReport:
        """Crawl so the ledger covers the given bounds (current filter bounds by default)."""
        start = self.filters.date_from if date_from is _UNSET else date_from
        end = self.filters.date_to if date_to is _UNSET else date_to
        report = await self.controller.crawl(self.document, date_from=start, date_to=end)
        if report.results:
            self.apply()
        self.last_report = report
        return report

    # --- Export ---
    def export_csv(self, records: Optional[Iterable[Record]] = None) -> str:
        return export_csv(self.result.visible if records is None else records)

    def export_filename(self, *, now: Optional[datetime] = None) -> str:
        return export_filename(now=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "original_count": self.original_count,
            "filters": self.filters.to_dict(),
            "summary": self.result.summary.to_dict(),
            "entries": [r.to_dict() for r in self.result.visible],
            "crawling": self.crawling,
            "last_crawl": self.last_report.to_dict() if self.last_report else None,
        }
