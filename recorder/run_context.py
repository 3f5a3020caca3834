"""Collaborators and result payloads shared by daily and backfill runs."""

from __future__ import annotations

from dataclasses import dataclass
import threading

from recorder.company_archive import CompanyArchive
from recorder.fan_out import DEFAULT_CAPACITY, BoundedFanOut
from recorder.market_contract import PayloadParser
from recorder.storage import ConnectionFactory


@dataclass(frozen=True)
class RunContext:
    """Everything a run needs besides the market itself."""

    archive: CompanyArchive
    connections: ConnectionFactory
    parser: PayloadParser
    fan_out_capacity: int = DEFAULT_CAPACITY
    crawl_timeout_seconds: float | None = None

    def new_fan_out(self, name: str) -> BoundedFanOut:
        return BoundedFanOut(capacity=self.fan_out_capacity, name=name)


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one daily or backfill run for one market."""

    market_name: str
    run_kind: str
    newest_date_key: str
    resolved: bool
    companies_total: int = 0
    companies_committed: int = 0
    companies_failed: int = 0


class RunTally:
    """Thread-safe commit/failure counter for fan-out tasks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.committed = 0
        self.failed = 0

    def record(self, committed: bool) -> None:
        with self._lock:
            if committed:
                self.committed += 1
            else:
                self.failed += 1
