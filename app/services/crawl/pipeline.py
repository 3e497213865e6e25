from __future__ import annotations

import csv
import io
import logging
import os
from datetime import datetime
from typing import Any, Iterable, Iterator, List, Optional, Set, Tuple

from .base import Amount, Record

logger = logging.getLogger(__name__)

CSV_HEADER = ["日付", "種別1", "場所1", "種別2", "場所2", "残高", "入金・利用額"]
DEFAULT_EXPORT_PREFIX = "suica_usage"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


class Ledger:
    """De-duplicated, append-only set of usage records for one session.

    Records are keyed by Record.natural_key(); insertion order is preserved.
    """

    def __init__(self, records: Optional[Iterable[Record]] = None) -> None:
        self._entries: List[Record] = []
        self._keys: Set[Tuple[Any, ...]] = set()
        if records:
            self.merge(records)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Record]:
        return iter(self._entries)

    def __contains__(self, rec: object) -> bool:
        return isinstance(rec, Record) and rec.natural_key() in self._keys

    @property
    def entries(self) -> List[Record]:
        return list(self._entries)

    def merge(self, candidates: Iterable[Record]) -> List[Record]:
        """Add candidates whose natural key is unseen; return those added, in order."""
        added: List[Record] = []
        for rec in candidates:
            key = rec.natural_key()
            if key in self._keys:
                continue
            self._keys.add(key)
            self._entries.append(rec)
            added.append(rec)
        logger.info("merge: added %d total %d", len(added), len(self._entries))
        return added


def _money_cell(val: Optional[Amount]) -> str:
    return "" if val is None else str(val)


def csv_rows(records: Iterable[Record]) -> List[List[str]]:
    rows = [list(CSV_HEADER)]
    for r in records:
        rows.append(
            [
                r.ymd,
                r.type1,
                r.place1,
                r.type2,
                r.place2,
                _money_cell(r.balance),
                _money_cell(r.amount),
            ]
        )
    return rows


def export_csv(records: Iterable[Record]) -> str:
    """Serialize records to CSV text: fixed header, one row per record."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerows(csv_rows(records))
    return buf.getvalue()


def export_filename(prefix: Optional[str] = None, *, now: Optional[datetime] = None) -> str:
    prefix = prefix or os.getenv("HISTORY_EXPORT_PREFIX") or DEFAULT_EXPORT_PREFIX
    ts = (now or datetime.now()).strftime("%Y%m%d_%H%M")
    return f"{prefix}_{ts}.csv"


def write_csv(
    records: Iterable[Record],
    out_dir: str,
    *,
    prefix: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Write records to <out_dir>/<prefix>_YYYYMMDD_HHMM.csv and return the path.

    An existing file with the same name is overwritten.
    """
    ensure_dir(out_dir)
    path = os.path.join(out_dir, export_filename(prefix, now=now))
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(export_csv(records))
    return path
