"""Bidirectional crawl over the one-window-per-request history source.

The source answers a (year-month, day) query with a bounded window of rows
around that day. To cover a target range [date_from, date_to] we walk twice:

- "older": start at date_to and step backwards past date_from
- "newer": start at date_from and step forwards up to date_to

Each step resolves the query from the year-months advertised by the document
in hand, merges what the page holds into the ledger and moves the cursor one
day beyond the oldest (or newest) date seen. The walk is sequential: older
runs to completion before newer starts, and every fetch is awaited before the
next decision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set

from selectolax.parser import HTMLParser

from .base import PageQuery, Record, SourceFetchError
from .pipeline import Ledger
from .spiders.history_page_spider import (
    extract_records,
    find_option_for_date,
    form_fields,
    parse_document,
    year_month_options,
)

logger = logging.getLogger(__name__)

Fetcher = Callable[[PageQuery], Awaitable[str]]

OLDER = "older"
NEWER = "newer"

# Extra probes allowed beyond one per advertised year-month
ITERATION_SLACK = 6


class StopReason(str, Enum):
    BOUNDARY = "boundary"
    CURSOR_REPEATED = "cursor_repeated"
    NOT_ADVANCED = "not_advanced"
    NO_DATES = "no_dates"
    NO_OPTIONS = "no_options"
    BUDGET = "budget_exhausted"
    FETCH_FAILED = "fetch_failed"


class CrawlStatus(str, Enum):
    ADDED = "added"
    NO_NEW_RECORDS = "no_new_records"
    FAILED = "failed"
    BUSY = "busy"
    MISSING_RANGE = "missing_range"


@dataclass
class CrawlCursor:
    direction: str
    probe: date
    visited: Set[str] = field(default_factory=set)
    added: int = 0

    @property
    def step(self) -> timedelta:
        return timedelta(days=-1 if self.direction == OLDER else 1)

    @property
    def key(self) -> str:
        return self.probe.isoformat()

    def shift(self) -> None:
        self.probe = self.probe + self.step


@dataclass
class DirectionResult:
    direction: str
    added: int = 0
    requests: int = 0
    stop_reason: Optional[StopReason] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.stop_reason is StopReason.FETCH_FAILED

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "added": self.added,
            "requests": self.requests,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
            "error": self.error,
        }


@dataclass
class CrawlReport:
    status: CrawlStatus
    results: List[DirectionResult] = field(default_factory=list)

    @property
    def added(self) -> int:
        return sum(r.added for r in self.results)

    @property
    def message(self) -> str:
        if self.status is CrawlStatus.ADDED:
            return f"added {self.added} records"
        if self.status is CrawlStatus.NO_NEW_RECORDS:
            return "no new records"
        if self.status is CrawlStatus.FAILED:
            return "fetch failed"
        if self.status is CrawlStatus.BUSY:
            return "crawl already running"
        return "set a start or end date"

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "added": self.added,
            "directions": [r.to_dict() for r in self.results],
        }


class CrawlController:
    """Drives the older/newer walks for one session's ledger."""

    def __init__(self, ledger: Ledger, fetch: Fetcher, *, slack: int = ITERATION_SLACK) -> None:
        self.ledger = ledger
        self.fetch = fetch
        self.slack = slack
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def crawl(
        self,
        document: HTMLParser,
        *,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> CrawlReport:
        """Walk older then newer until [date_from, date_to] is covered.

        A trigger while another crawl is in flight returns a BUSY report and
        does nothing.
        """
        if self._running:
            logger.info("crawl already running, ignoring trigger")
            return CrawlReport(status=CrawlStatus.BUSY)
        target_end = date_to or date_from
        if target_end is None:
            return CrawlReport(status=CrawlStatus.MISSING_RANGE)

        self._running = True
        try:
            older = await self.run_direction(
                OLDER, document, start=target_end, date_from=date_from, date_to=target_end
            )
            newer = await self.run_direction(
                NEWER, document, start=date_from or target_end, date_from=date_from, date_to=target_end
            )
        finally:
            self._running = False

        results = [older, newer]
        if older.added + newer.added > 0:
            status = CrawlStatus.ADDED
        elif any(r.failed for r in results):
            status = CrawlStatus.FAILED
        else:
            status = CrawlStatus.NO_NEW_RECORDS
        logger.info("crawl done: older=%d newer=%d status=%s", older.added, newer.added, status.value)
        return CrawlReport(status=status, results=results)

    async def run_direction(
        self,
        direction: str,
        document: HTMLParser,
        *,
        start: date,
        date_from: Optional[date],
        date_to: date,
    ) -> DirectionResult:
        cursor = CrawlCursor(direction=direction, probe=start)
        result = DirectionResult(direction=direction)
        current = document
        budget = len(year_month_options(current)) + self.slack

        result.stop_reason = StopReason.BUDGET
        for i in range(budget):
            if self._crossed_boundary(cursor, date_from, date_to):
                result.stop_reason = StopReason.BOUNDARY
                break
            if cursor.key in cursor.visited:
                logger.info("fetch %s stop: cursor repeated %s", direction, cursor.key)
                result.stop_reason = StopReason.CURSOR_REPEATED
                break
            cursor.visited.add(cursor.key)

            # The document in hand may advertise different months than at start
            opt = find_option_for_date(cursor.probe, year_month_options(current))
            if opt is None:
                result.stop_reason = StopReason.NO_OPTIONS
                break
            # A page without a form keeps the on-load form's hidden fields
            form = form_fields(current) or form_fields(document)
            query = PageQuery(option=opt, day=f"{cursor.probe.day:02d}", form=form)
            logger.info("fetch %s #%d ym=%s day=%s", direction, i + 1, opt.token, query.day)
            result.requests += 1
            try:
                html = await self.fetch(query)
            except SourceFetchError as exc:
                logger.warning("fetch %s failed: %s", direction, exc)
                result.stop_reason = StopReason.FETCH_FAILED
                result.error = str(exc)
                break

            current = parse_document(html)
            records = extract_records(current, year=opt.year, month=opt.month)
            if not records:
                logger.info("fetch %s #%d: no entries, shift day", direction, i + 1)
                cursor.shift()
                continue

            added = self.ledger.merge(records)
            cursor.added += len(added)
            basis = added or records
            logger.debug("sample dates: first=%s last=%s", records[0].ymd, records[-1].ymd)

            next_probe = self._next_probe(direction, basis)
            if next_probe is None:
                logger.info("fetch %s stop: no valid dates", direction)
                result.stop_reason = StopReason.NO_DATES
                break
            if next_probe == cursor.probe:
                logger.info("fetch %s stop: cursor not advanced", direction)
                result.stop_reason = StopReason.NOT_ADVANCED
                break
            cursor.probe = next_probe

        result.added = cursor.added
        return result

    @staticmethod
    def _crossed_boundary(cursor: CrawlCursor, date_from: Optional[date], date_to: date) -> bool:
        if date_from is not None and cursor.probe < date_from:
            return True
        return cursor.direction == NEWER and cursor.probe > date_to

    @staticmethod
    def _next_probe(direction: str, basis: List[Record]) -> Optional[date]:
        dates = [r.date for r in basis if r.date is not None]
        if not dates:
            return None
        if direction == OLDER:
            return min(dates) - timedelta(days=1)
        return max(dates) + timedelta(days=1)
