from datetime import date

from app.services.crawl.base import Record
from app.services.crawl.pipeline import Ledger
from app.services.crawl.spiders.history_page_spider import extract_records, parse_document


def _rec(day, place="品川", amount=-210, balance=1000, **kw):
    return Record(date=date(2024, 3, day), type1="入", place1=place, type2="出", place2="渋谷", amount=amount, balance=balance, **kw)


def test_merge_returns_only_new_records_in_order():
    ledger = Ledger([_rec(1)])
    added = ledger.merge([_rec(3), _rec(1), _rec(2)])
    assert [r.date.day for r in added] == [3, 2]
    assert [r.date.day for r in ledger] == [1, 3, 2]


def test_merge_is_idempotent():
    ledger = Ledger()
    batch = [_rec(1), _rec(2, amount=3000), _rec(2, balance=None, amount=None)]
    assert len(ledger.merge(batch)) == 3
    assert ledger.merge(batch) == []
    assert len(ledger) == 3


def test_natural_key_ignores_whitespace_and_entry_id():
    ledger = Ledger([_rec(5, place="品 川", entry_id="a")])
    added = ledger.merge([_rec(5, place="品川　", entry_id="b")])
    assert added == []
    assert len(ledger) == 1


def test_null_and_zero_amounts_are_distinct_keys():
    ledger = Ledger()
    added = ledger.merge([_rec(5, amount=None), _rec(5, amount=0)])
    assert len(added) == 2


def test_same_row_on_two_pages_is_stored_once(render_page, sample_rows):
    page_a = render_page([sample_rows["charge"], sample_rows["ride"]])
    page_b = render_page([sample_rows["ride"], sample_rows["shop"]])
    ledger = Ledger()
    ledger.merge(extract_records(parse_document(page_a), year=2024, month=3))
    added = ledger.merge(extract_records(parse_document(page_b), year=2024, month=3))
    assert [r.place1 for r in added] == [""]
    rides = [r for r in ledger if r.place1 == "品川"]
    assert len(rides) == 1
    keys = [r.natural_key() for r in ledger]
    assert len(keys) == len(set(keys)) == 3


def test_membership_uses_natural_key():
    ledger = Ledger([_rec(7)])
    assert _rec(7, place=" 品川 ") in ledger
    assert _rec(8) not in ledger
