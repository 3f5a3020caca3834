"""Recorder test utilities."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
import threading
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from recorder.common import date_key
from recorder.errors import ResolveError
from recorder.market_contract import (
    Company,
    Market,
    PriceObservation,
    PricePeriod,
    ProcessingResult,
    SessionKind,
)
from recorder.storage import CompanyUnitOfWork


class FakeDB:
    """Small in-memory DB double for unit-of-work tests."""

    def __init__(self) -> None:
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.one_responses: dict[str, Mapping[str, Any] | None] = {}
        self.fail_on: str | None = None

    def set_one(self, marker: str, value: Mapping[str, Any] | None) -> None:
        self.one_responses[marker] = value

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError("forced db failure")
        for marker, value in self.one_responses.items():
            if marker in sql:
                return value
        return None

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        if self.fail_on and self.fail_on in sql:
            raise RuntimeError("forced db failure")
        self.executed.append((sql, dict(params)))

    def statements(self, marker: str) -> list[dict[str, Any]]:
        return [params for sql, params in self.executed if marker in sql]


def observation(minute: int, price: str = "10.5", volume: int = 100) -> PriceObservation:
    return PriceObservation(
        observed_at_utc=datetime(2026, 3, 9, 14, minute, tzinfo=timezone.utc),
        open_price=Decimal(price),
        high_price=Decimal(price),
        low_price=Decimal(price),
        close_price=Decimal(price),
        volume=volume,
    )


def success_result() -> ProcessingResult:
    return ProcessingResult(
        success=True,
        pre=PricePeriod(SessionKind.PRE, (observation(0),)),
        regular=PricePeriod(SessionKind.REGULAR, (observation(1), observation(2))),
        post=PricePeriod(SessionKind.POST, (observation(3),)),
    )


class FixedClock:
    """Clock double; returns queued instants, then repeats the last one."""

    def __init__(self, *instants: datetime) -> None:
        if not instants:
            raise ValueError("FixedClock needs at least one instant")
        self._instants = list(instants)
        self._lock = threading.Lock()

    def now_utc(self) -> datetime:
        with self._lock:
            if len(self._instants) > 1:
                return self._instants.pop(0)
            return self._instants[0]


class FakeMarket(Market):
    """Market double recording every crawl call."""

    def __init__(
        self,
        *,
        name: str = "Test",
        timezone_name: str = "Asia/Shanghai",
        companies: Sequence[Company] = (),
        companies_error: Exception | None = None,
        crawl_error_keys: Iterable[tuple[str, str]] = (),
        crawl_hook: Callable[[str, datetime], None] | None = None,
    ) -> None:
        self._name = name
        self._timezone_name = timezone_name
        self._companies = tuple(companies)
        self._companies_error = companies_error
        self._crawl_error_keys = set(crawl_error_keys)
        self._crawl_hook = crawl_hook
        self._lock = threading.Lock()
        self.companies_calls = 0
        self.crawl_calls: list[tuple[str, str]] = []

    def name(self) -> str:
        return self._name

    def timezone(self) -> str:
        return self._timezone_name

    def companies(self) -> Sequence[Company]:
        with self._lock:
            self.companies_calls += 1
        if self._companies_error is not None:
            raise self._companies_error
        return self._companies

    def crawl(self, company_code: str, day: datetime) -> str:
        key = date_key(day)
        with self._lock:
            self.crawl_calls.append((company_code, key))
        if self._crawl_hook is not None:
            self._crawl_hook(company_code, day)
        if (company_code, key) in self._crawl_error_keys:
            raise OSError(f"upstream unavailable for {company_code}")
        return f"{company_code}|{key}"

    def crawls_for(self, company_code: str) -> list[str]:
        with self._lock:
            return [key for code, key in self.crawl_calls if code == company_code]


class FakeParser:
    """Parser double; successful by default, scripted per (company, day)."""

    def __init__(
        self,
        *,
        failures: Mapping[tuple[str, str], str] | None = None,
        raises: Mapping[tuple[str, str], Exception] | None = None,
    ) -> None:
        self._failures = dict(failures or {})
        self._raises = dict(raises or {})
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str, str]] = []

    def parse(self, market_name: str, company_code: str, day: datetime, raw: str) -> ProcessingResult:
        key = date_key(day)
        with self._lock:
            self.calls.append((market_name, company_code, key))
        if (company_code, key) in self._raises:
            raise self._raises[(company_code, key)]
        if (company_code, key) in self._failures:
            return ProcessingResult.failed(self._failures[(company_code, key)])
        return success_result()


class FakeArchive:
    """In-memory company archive."""

    def __init__(self, seeded: Mapping[str, Sequence[Company]] | None = None) -> None:
        self.lists: dict[str, tuple[Company, ...]] = {name: tuple(items) for name, items in (seeded or {}).items()}
        self.saves: list[tuple[str, int]] = []
        self.save_error: Exception | None = None

    def load(self, market_name: str) -> tuple[Company, ...]:
        if market_name not in self.lists:
            raise ResolveError(f"No company archive for market {market_name}")
        return self.lists[market_name]

    def save(self, market_name: str, companies: Sequence[Company]) -> None:
        if self.save_error is not None:
            raise self.save_error
        self.saves.append((market_name, len(companies)))
        self.lists[market_name] = tuple(companies)


class _StagedDB:
    """RecorderDatabase view over one open InMemoryStore transaction."""

    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store
        self.status: dict[tuple[str, str, str], bool] = {}
        self.errors: dict[tuple[str, str, str], str] = {}
        self.prices: list[dict[str, Any]] = []

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        key = (params["market_name"], params["company_code"], params["date_key"])
        if key in self.status or self._store.has_status(key):
            return {"processed": 1}
        return None

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        key = (params["market_name"], params["company_code"], params["date_key"])
        if "INSERT INTO crawl_status" in sql:
            self.status.setdefault(key, bool(params["success"]))
        elif "INSERT INTO crawl_error" in sql:
            self.errors.setdefault(key, str(params["message"]))
        elif "INSERT INTO price_observation" in sql:
            self.prices.append(dict(params))
        else:
            raise AssertionError(f"unexpected statement: {sql}")


class _InMemoryConnection:
    def __init__(self, store: "InMemoryStore", market_name: str, company_code: str) -> None:
        self._store = store
        self._market_name = market_name
        self._company_code = company_code
        self.closed = False

    def begin(self) -> CompanyUnitOfWork:
        staged = _StagedDB(self._store)
        return CompanyUnitOfWork(
            staged,
            market_name=self._market_name,
            company_code=self._company_code,
            on_commit=lambda: self._store.apply(self._company_code, staged),
            on_rollback=lambda: self._store.record_rollback(self._company_code),
        )

    def close(self) -> None:
        self.closed = True
        self._store.record_close()


class InMemoryStore:
    """Connection factory whose writes become visible only on commit."""

    def __init__(self, *, fail_open_for: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._fail_open_for = set(fail_open_for)
        self.status: dict[tuple[str, str, str], bool] = {}
        self.errors: dict[tuple[str, str, str], str] = {}
        self.prices: list[dict[str, Any]] = []
        self.commits: dict[str, int] = defaultdict(int)
        self.rollbacks: dict[str, int] = defaultdict(int)
        self.opened = 0
        self.closed = 0

    def open_connection(self, market_name: str, company_code: str) -> _InMemoryConnection:
        if company_code in self._fail_open_for:
            raise ConnectionError(f"cannot connect for {company_code}")
        with self._lock:
            self.opened += 1
        return _InMemoryConnection(self, market_name, company_code)

    def has_status(self, key: tuple[str, str, str]) -> bool:
        with self._lock:
            return key in self.status

    def apply(self, company_code: str, staged: _StagedDB) -> None:
        with self._lock:
            self.commits[company_code] += 1
            for key, success in staged.status.items():
                self.status.setdefault(key, success)
            for key, message in staged.errors.items():
                self.errors.setdefault(key, message)
            self.prices.extend(staged.prices)

    def record_rollback(self, company_code: str) -> None:
        with self._lock:
            self.rollbacks[company_code] += 1

    def record_close(self) -> None:
        with self._lock:
            self.closed += 1

    def keys_for(self, company_code: str) -> list[str]:
        with self._lock:
            return sorted(key[2] for key in self.status if key[1] == company_code)
