"""Public holiday calendar used to tag ledger rows for display.

The default source is the holidays-jp JSON API, an object keyed by ISO date:

    {"2025-01-01": "元日", "2025-01-13": "成人の日", ...}

Configuration via environment variables:

- HOLIDAYS_URL (default: https://holidays-jp.github.io/api/v1/date.json)

Failures are never fatal: the last known set is kept and the error is logged.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from typing import Any, Optional, Set

import httpx

logger = logging.getLogger(__name__)

DEFAULT_HOLIDAYS_URL = "https://holidays-jp.github.io/api/v1/date.json"

_SPLIT = re.compile(r"[,、\s]+")
_FORMATS = ("%Y-%m-%d", "%Y/%m/%d")


def _norm_date(token: str) -> Optional[str]:
    for fmt in _FORMATS:
        try:
            return datetime.strptime(token, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def parse_holidays(raw: Optional[str]) -> Set[str]:
    """Parse user-entered holiday text like '2025-01-01,2025-02-11'.

    Tokens may be separated by commas, '、' or whitespace; unparseable tokens are ignored.
    """
    out: Set[str] = set()
    for token in _SPLIT.split(raw or ""):
        token = token.strip()
        if not token:
            continue
        iso = _norm_date(token)
        if iso:
            out.add(iso)
    return out


def holidays_from_payload(payload: Any) -> Set[str]:
    if not isinstance(payload, dict):
        raise ValueError(f"Unexpected holiday payload type: {type(payload).__name__}")
    return {iso for iso in (_norm_date(str(k)) for k in payload.keys()) if iso}


class HolidayService:
    def __init__(
        self,
        *,
        url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url or os.getenv("HOLIDAYS_URL") or DEFAULT_HOLIDAYS_URL
        self.timeout = float(timeout)
        self._transport = transport
        self.holidays: Set[str] = set()
        self.last_error: Optional[str] = None

    async def refresh(self) -> Set[str]:
        """Fetch the holiday calendar; on failure keep and return the last known set."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(self.url)
                resp.raise_for_status()
                holidays = holidays_from_payload(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            self.last_error = f"holiday fetch failed: {exc}"
            logger.warning(self.last_error)
            return set(self.holidays)
        self.holidays = holidays
        self.last_error = None
        logger.info("loaded %d holidays", len(holidays))
        return set(holidays)
