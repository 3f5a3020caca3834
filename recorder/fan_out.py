"""Bounded concurrent dispatch of one operation across a company set."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
import logging
import threading
from typing import Callable, Sequence

from recorder.market_contract import Company

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 64


@dataclass(frozen=True)
class FanOutResult:
    """Summary of one ``run_all`` invocation."""

    task_count: int
    raised_count: int
    peak_in_flight: int


class BoundedFanOut:
    """Runs one task per company with at most ``capacity`` in flight.

    A permit is acquired before a task is handed to the pool and released
    when that task finishes, whatever the outcome. ``run_all`` returns only
    after every task has completed.
    """

    def __init__(self, *, capacity: int = DEFAULT_CAPACITY, name: str = "fanout") -> None:
        if capacity < 1:
            raise ValueError(f"Fan-out capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._name = name
        self._permits = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak_in_flight = 0
        self._permits_acquired = 0
        self._permits_released = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        with self._lock:
            return self._peak_in_flight

    @property
    def permits_acquired(self) -> int:
        with self._lock:
            return self._permits_acquired

    @property
    def permits_released(self) -> int:
        with self._lock:
            return self._permits_released

    def _acquire(self) -> None:
        self._permits.acquire()
        with self._lock:
            self._permits_acquired += 1
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)

    def _release(self) -> None:
        with self._lock:
            self._permits_released += 1
            self._in_flight -= 1
        self._permits.release()

    def _run_one(self, company: Company, unit_of_work: Callable[[Company], None]) -> bool:
        try:
            unit_of_work(company)
        except Exception:
            logger.exception("[%s] task for %s raised", self._name, company.code)
            return False
        finally:
            self._release()
        return True

    def run_all(self, companies: Sequence[Company], unit_of_work: Callable[[Company], None]) -> FanOutResult:
        """Dispatch ``unit_of_work`` for every company and wait for all of them."""
        with self._lock:
            self._peak_in_flight = self._in_flight
        futures: list[Future[bool]] = []
        with ThreadPoolExecutor(max_workers=self._capacity, thread_name_prefix=self._name) as pool:
            for company in companies:
                self._acquire()
                try:
                    futures.append(pool.submit(self._run_one, company, unit_of_work))
                except BaseException:
                    self._release()
                    raise
            wait(futures)

        raised = sum(1 for future in futures if not future.result())
        return FanOutResult(
            task_count=len(futures),
            raised_count=raised,
            peak_in_flight=self.peak_in_flight,
        )
