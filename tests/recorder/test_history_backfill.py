from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from recorder.errors import ParseError
from recorder.history_backfill import DEFAULT_BACKFILL_DAYS, run_history_backfill
from recorder.market_contract import Company
from recorder.run_context import RunContext
from tests.recorder.utils import FakeArchive, FakeMarket, FakeParser, InMemoryStore


SHANGHAI = ZoneInfo("Asia/Shanghai")
NEWEST = datetime(2026, 3, 9, tzinfo=SHANGHAI)
ALPHA = Company(code="600001", name="Alpha")
BETA = Company(code="600002", name="Beta")
WINDOW = ["20260309", "20260308", "20260307", "20260306", "20260305"]


def _context(store: InMemoryStore, parser: FakeParser) -> RunContext:
    return RunContext(archive=FakeArchive(), connections=store, parser=parser, fan_out_capacity=4)


def test_default_window_is_ninety_days() -> None:
    assert DEFAULT_BACKFILL_DAYS == 90


def test_failing_middle_day_rolls_back_whole_company_window() -> None:
    store = InMemoryStore()
    market = FakeMarket(companies=(ALPHA, BETA))
    parser = FakeParser(raises={("600001", "20260307"): ParseError("truncated payload")})

    summary = run_history_backfill(market, SHANGHAI, _context(store, parser), newest_day=NEWEST, window_days=5)

    assert summary.run_kind == "BACKFILL"
    assert summary.resolved is True
    assert summary.newest_date_key == "20260309"
    assert (summary.companies_total, summary.companies_committed, summary.companies_failed) == (2, 1, 1)

    assert market.crawls_for("600001") == ["20260309", "20260308", "20260307"]
    assert store.keys_for("600001") == []
    assert store.rollbacks["600001"] == 1
    assert store.commits["600001"] == 0

    assert market.crawls_for("600002") == WINDOW
    assert store.keys_for("600002") == sorted(WINDOW)
    assert store.commits["600002"] == 1


def test_rerun_resumes_only_missing_days() -> None:
    store = InMemoryStore()
    first_market = FakeMarket(companies=(ALPHA, BETA), crawl_error_keys=[("600001", "20260306")])
    run_history_backfill(first_market, SHANGHAI, _context(store, FakeParser()), newest_day=NEWEST, window_days=5)
    assert store.keys_for("600001") == []

    second_market = FakeMarket(companies=(ALPHA, BETA))
    summary = run_history_backfill(
        second_market, SHANGHAI, _context(store, FakeParser()), newest_day=NEWEST, window_days=5
    )

    assert summary.companies_committed == 2
    assert second_market.crawls_for("600001") == WINDOW
    assert second_market.crawls_for("600002") == []
    assert store.keys_for("600001") == sorted(WINDOW)


def test_unsuccessful_days_are_recorded_and_not_retried() -> None:
    store = InMemoryStore()
    parser = FakeParser(failures={("600001", "20260308"): "no intraday data for 20260308"})
    market = FakeMarket(companies=(ALPHA,))
    run_history_backfill(market, SHANGHAI, _context(store, parser), newest_day=NEWEST, window_days=3)

    assert store.status[("Test", "600001", "20260308")] is False
    assert store.errors[("Test", "600001", "20260308")] == "no intraday data for 20260308"

    again = FakeMarket(companies=(ALPHA,))
    run_history_backfill(again, SHANGHAI, _context(store, FakeParser()), newest_day=NEWEST, window_days=3)
    assert again.crawl_calls == []


def test_unresolvable_company_list_aborts_run() -> None:
    market = FakeMarket(companies_error=OSError("down"))
    store = InMemoryStore()
    summary = run_history_backfill(market, SHANGHAI, _context(store, FakeParser()), newest_day=NEWEST, window_days=5)

    assert summary.resolved is False
    assert summary.companies_total == 0
    assert market.crawl_calls == []
    assert store.opened == 0


def test_window_must_be_positive() -> None:
    with pytest.raises(ValueError, match="Backfill window must be >= 1"):
        run_history_backfill(
            FakeMarket(), SHANGHAI, _context(InMemoryStore(), FakeParser()), newest_day=NEWEST, window_days=0
        )
