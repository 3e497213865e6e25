"""Usage-history crawling subsystem.

Structure:
- base.py: record/query types and money/field normalization
- spiders/history_page_spider.py: page fetch + decode, record and selector extraction
- pipeline.py: de-duplicating ledger and CSV export
- controller.py: bidirectional (older/newer) crawl over day-windowed queries
- runner.py: tiny CLI entrypoint for manual runs

Fetching uses httpx and parsing uses selectolax.
"""

__all__ = [
    "base",
    "controller",
    "pipeline",
]
