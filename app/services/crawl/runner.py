from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import date
from typing import Optional

from app.services.history_session import HistorySession

from .base import SourceFetchError
from .pipeline import write_csv
from .spiders.history_page_spider import HistoryPageSpider


async def run_history(
    *,
    url: Optional[str],
    html_file: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
    keyword: str,
    holidays: bool,
    out_dir: str,
) -> str:
    spider = HistoryPageSpider(source_url=url)
    try:
        html = None
        if html_file:
            with open(html_file, "r", encoding="utf-8") as f:
                html = f.read()
        session = await HistorySession.load(spider, html=html, refresh_holidays=holidays)
        if date_from or date_to:
            session.filters.date_from = date_from or session.filters.date_from
            session.filters.date_to = date_to or session.filters.date_to
            report = await session.crawl()
            print(report.message)
        if keyword:
            session.filters.keyword = keyword
        result = session.apply()
        return write_csv(result.visible, out_dir)
    finally:
        await spider.aclose()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Crawl the usage-history page and export a CSV")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--url", help="History page URL (default: HISTORY_SOURCE_URL)")
    src.add_argument("--file", help="Local on-load HTML file (UTF-8); crawling still uses --url/HISTORY_SOURCE_URL")
    parser.add_argument("--date-from", type=date.fromisoformat, help="Inclusive start date YYYY-MM-DD")
    parser.add_argument("--date-to", type=date.fromisoformat, help="Inclusive end date YYYY-MM-DD")
    parser.add_argument("--keyword", default="", help="Only rows whose type/place contains this text")
    parser.add_argument("--holidays", action="store_true", help="Tag public holidays (fetches the calendar)")
    default_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
    default_out = os.getenv("HISTORY_EXPORT_DIR") or os.path.join(default_root, "data", "exports")
    parser.add_argument("--out-dir", default=default_out, help="Output directory for CSV files")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    if not args.file and not (args.url or os.getenv("HISTORY_SOURCE_URL")):
        parser.error("--url, --file or HISTORY_SOURCE_URL is required")

    try:
        path = asyncio.run(
            run_history(
                url=args.url,
                html_file=args.file,
                date_from=args.date_from,
                date_to=args.date_to,
                keyword=args.keyword,
                holidays=args.holidays,
                out_dir=args.out_dir,
            )
        )
    except SourceFetchError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
