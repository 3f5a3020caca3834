"""Per-market daily trigger at the market's local midnight."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import enum
import logging
import threading
from zoneinfo import ZoneInfo

from recorder.common import RecorderClock, date_key
from recorder.company_resolver import resolve_companies
from recorder.crawl_pipeline import process_unit, run_in_transaction
from recorder.errors import ResolveError
from recorder.market_clock import delay_until_next_local_midnight, local_yesterday_midnight, next_local_midnight
from recorder.market_contract import Company, Market
from recorder.run_context import RunContext, RunSummary, RunTally

logger = logging.getLogger(__name__)


class SchedulerState(str, enum.Enum):
    """Lifecycle of a daily scheduler."""

    IDLE = "IDLE"
    ARMED_FOR_MIDNIGHT = "ARMED_FOR_MIDNIGHT"
    FIRING = "FIRING"
    WAITING_NEXT_TICK = "WAITING_NEXT_TICK"
    STOPPED = "STOPPED"


def run_daily_task(
    market: Market,
    zone: ZoneInfo,
    context: RunContext,
    *,
    now_utc: datetime,
) -> RunSummary:
    """Process the market-local "yesterday" of ``now_utc`` for every company."""
    market_name = market.name()
    day = local_yesterday_midnight(zone, now_utc)
    key = date_key(day)
    logger.info("[%s] daily task for %s started", market_name, key)

    try:
        companies = resolve_companies(market, context.archive)
    except ResolveError as exc:
        logger.error("[%s] daily task for %s aborted: %s", market_name, key, exc)
        return RunSummary(market_name=market_name, run_kind="DAILY", newest_date_key=key, resolved=False)

    tally = RunTally()

    def _company_task(company: Company) -> None:
        committed = run_in_transaction(
            context.connections,
            market,
            company,
            lambda uow: process_unit(
                uow,
                market,
                context.parser,
                company,
                day,
                crawl_timeout_seconds=context.crawl_timeout_seconds,
            ),
        )
        tally.record(committed)

    context.new_fan_out(f"daily-{market_name}").run_all(companies, _company_task)

    logger.info(
        "[%s] daily task for %s finished: committed=%d failed=%d",
        market_name,
        key,
        tally.committed,
        tally.failed,
    )
    return RunSummary(
        market_name=market_name,
        run_kind="DAILY",
        newest_date_key=key,
        resolved=True,
        companies_total=len(companies),
        companies_committed=tally.committed,
        companies_failed=tally.failed,
    )


class DailyScheduler:
    """Fires the daily task at every market-local midnight."""

    def __init__(
        self,
        *,
        market: Market,
        zone: ZoneInfo,
        context: RunContext,
        stop_event: threading.Event,
        clock: RecorderClock | None = None,
    ) -> None:
        self._market = market
        self._zone = zone
        self._context = context
        self._stop_event = stop_event
        self._clock = clock or RecorderClock()
        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.fire_count = 0

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    @property
    def thread(self) -> threading.Thread | None:
        return self._thread

    def _set_state(self, state: SchedulerState) -> None:
        with self._state_lock:
            self._state = state

    def first_fire_delay(self) -> timedelta:
        return delay_until_next_local_midnight(self._zone, self._clock.now_utc())

    def _next_midnight(self, now_utc: datetime) -> datetime:
        return next_local_midnight(self._zone, now_utc).astimezone(timezone.utc)

    def start(self) -> threading.Thread:
        if self._thread is not None:
            raise RuntimeError(f"Scheduler for {self._market.name()} already started")
        self._thread = threading.Thread(
            target=self.run_forever,
            name=f"daily-{self._market.name()}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def _fire(self, fire_at: datetime) -> None:
        self._set_state(SchedulerState.FIRING)
        self.fire_count += 1
        try:
            run_daily_task(self._market, self._zone, self._context, now_utc=fire_at)
        except Exception:
            logger.exception("[%s] daily task crashed", self._market.name())

    def run_forever(self) -> None:
        """Blocking scheduler loop; returns once the stop event is set.

        Every tick is armed for the next market-local midnight, so ticks stay
        on midnight across DST changes. Midnights passed while a run overran
        are dropped, not replayed.
        """
        market_name = self._market.name()
        now_utc = self._clock.now_utc()
        target = self._next_midnight(now_utc)
        self._set_state(SchedulerState.ARMED_FOR_MIDNIGHT)
        logger.info("[%s] daily schedule armed, first run in %s", market_name, target - now_utc)
        while True:
            if self._stop_event.wait(max((target - now_utc).total_seconds(), 0.0)):
                self._set_state(SchedulerState.STOPPED)
                return
            # the wait may end slightly before the wall clock reaches midnight
            fire_at = max(self._clock.now_utc(), target)
            self._fire(fire_at)
            self._set_state(SchedulerState.WAITING_NEXT_TICK)
            now_utc = max(self._clock.now_utc(), fire_at)
            target = self._next_midnight(now_utc)
