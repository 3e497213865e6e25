import csv
import io
import os
import tempfile
from datetime import date, datetime

from app.services.crawl.base import Record
from app.services.crawl.pipeline import CSV_HEADER, export_csv, export_filename, write_csv


def _records():
    return [
        Record(date=date(2024, 3, 1), type1="入", place1="品川", type2="出", place2="渋谷", balance=2790, amount=-210),
        Record(date=date(2024, 3, 2), type1="物販", place1='売店 "東口", 2F', balance=None, amount=None),
        Record(date=date(2024, 3, 3), type1="ｶｰﾄﾞ", place1="モバイル\n(再)", balance=5790, amount=3000),
    ]


def test_export_csv_round_trips_through_csv_reader():
    text = export_csv(_records())
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == CSV_HEADER
    assert rows[1] == ["2024-03-01", "入", "品川", "出", "渋谷", "2790", "-210"]
    assert rows[2] == ["2024-03-02", "物販", '売店 "東口", 2F', "", "", "", ""]
    assert rows[3] == ["2024-03-03", "ｶｰﾄﾞ", "モバイル\n(再)", "", "", "5790", "3000"]
    assert len(rows) == 4


def test_export_csv_quotes_only_fields_that_need_it():
    lines = export_csv(_records()[:2]).split("\r\n")
    assert lines[0] == "日付,種別1,場所1,種別2,場所2,残高,入金・利用額"
    assert lines[1] == "2024-03-01,入,品川,出,渋谷,2790,-210"
    assert lines[2] == '2024-03-02,物販,"売店 ""東口"", 2F",,,,'


def test_export_empty_set_has_header_only():
    rows = list(csv.reader(io.StringIO(export_csv([]))))
    assert rows == [CSV_HEADER]


def test_export_filename_uses_prefix_and_timestamp(monkeypatch):
    monkeypatch.delenv("HISTORY_EXPORT_PREFIX", raising=False)
    now = datetime(2025, 1, 7, 9, 5, 59)
    assert export_filename(now=now) == "suica_usage_20250107_0905.csv"
    assert export_filename("pasmo", now=now) == "pasmo_20250107_0905.csv"
    monkeypatch.setenv("HISTORY_EXPORT_PREFIX", "card")
    assert export_filename(now=now) == "card_20250107_0905.csv"


def test_write_csv_creates_file(monkeypatch):
    monkeypatch.delenv("HISTORY_EXPORT_PREFIX", raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        out_dir = os.path.join(tmpdir, "exports")
        path = write_csv(_records(), out_dir, now=datetime(2025, 1, 7, 9, 5))
        assert os.path.basename(path) == "suica_usage_20250107_0905.csv"
        with open(path, "r", encoding="utf-8", newline="") as f:
            rows = list(csv.reader(f))
        assert len(rows) == 4
        assert rows[3][2] == "モバイル\n(再)"


def test_export_csv_quotes_lone_carriage_return():
    rec = Record(date=date(2024, 3, 1), place1="a\rb", balance=100, amount=-210)
    rows = list(csv.reader(io.StringIO(export_csv([rec]), newline="")))
    assert rows[1] == ["2024-03-01", "", "a\rb", "", "", "100", "-210"]
    assert len(rows) == 2
