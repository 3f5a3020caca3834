"""Process entry point: market registry and the per-market control loop."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
import time
from types import MappingProxyType
from typing import Mapping
from zoneinfo import ZoneInfo

from recorder.common import RecorderClock
from recorder.daily_scheduler import DailyScheduler
from recorder.history_backfill import DEFAULT_BACKFILL_DAYS, run_history_backfill
from recorder.market_clock import load_market_zone, local_yesterday_midnight, timezone_offset_seconds
from recorder.market_contract import Market
from recorder.run_context import RunContext

logger = logging.getLogger(__name__)


class MarketRegistry:
    """Markets under supervision, keyed by name."""

    def __init__(self) -> None:
        self._markets: dict[str, Market] = {}

    def add(self, market: Market) -> None:
        name = market.name()
        if name in self._markets:
            logger.warning("[%s] market re-registered, replacing previous instance", name)
        self._markets[name] = market
        logger.info("[%s] added to monitor list", name)

    def markets(self) -> tuple[Market, ...]:
        return tuple(self._markets.values())

    def __len__(self) -> int:
        return len(self._markets)


@dataclass(frozen=True)
class MonitorSettings:
    """Switches and sizes for the monitor loop."""

    backfill_days: int = DEFAULT_BACKFILL_DAYS
    enable_daily: bool = True
    enable_backfill: bool = True


@dataclass(frozen=True)
class MonitorPlan:
    """Validated startup state, built once and then only read."""

    markets: tuple[Market, ...]
    zones: Mapping[str, ZoneInfo]
    offsets: Mapping[str, int]
    schedulers: tuple[DailyScheduler, ...] = ()
    backfill_threads: tuple[threading.Thread, ...] = field(default=())


class Monitor:
    """Starts one daily scheduler and one backfill run per registered market."""

    def __init__(
        self,
        *,
        registry: MarketRegistry,
        context: RunContext,
        settings: MonitorSettings | None = None,
        clock: RecorderClock | None = None,
        host_zone: ZoneInfo | None = None,
    ) -> None:
        self._registry = registry
        self._context = context
        self._settings = settings or MonitorSettings()
        self._clock = clock or RecorderClock()
        self._host_zone = host_zone
        self._stop_event = threading.Event()
        self._plan: MonitorPlan | None = None

    @property
    def plan(self) -> MonitorPlan | None:
        return self._plan

    def build_plan(self) -> MonitorPlan:
        """Resolve every market zone before anything is started."""
        markets = self._registry.markets()
        now_utc = self._clock.now_utc()
        zones: dict[str, ZoneInfo] = {}
        offsets: dict[str, int] = {}
        for market in markets:
            zone = load_market_zone(market.timezone())
            zones[market.name()] = zone
            offsets[market.name()] = timezone_offset_seconds(zone, now_utc, self._host_zone)
        return MonitorPlan(
            markets=markets,
            zones=MappingProxyType(zones),
            offsets=MappingProxyType(offsets),
        )

    def _backfill(self, market: Market, zone: ZoneInfo) -> None:
        try:
            run_history_backfill(
                market,
                zone,
                self._context,
                newest_day=local_yesterday_midnight(zone, self._clock.now_utc()),
                window_days=self._settings.backfill_days,
            )
        except Exception:
            logger.exception("[%s] history backfill crashed", market.name())

    def start(self) -> MonitorPlan:
        """Validate configuration, then launch every market's tasks.

        Raises ConfigError, with nothing started, when any market's timezone
        cannot be resolved.
        """
        if self._plan is not None:
            raise RuntimeError("Monitor already started")
        logger.info("starting monitor for %d markets", len(self._registry))
        plan = self.build_plan()

        schedulers: list[DailyScheduler] = []
        backfill_threads: list[threading.Thread] = []
        for market in plan.markets:
            zone = plan.zones[market.name()]
            logger.info("[%s] timezone offset to host: %ds", market.name(), plan.offsets[market.name()])
            if self._settings.enable_daily:
                scheduler = DailyScheduler(
                    market=market,
                    zone=zone,
                    context=self._context,
                    stop_event=self._stop_event,
                    clock=self._clock,
                )
                scheduler.start()
                schedulers.append(scheduler)
            if self._settings.enable_backfill:
                thread = threading.Thread(
                    target=self._backfill,
                    args=(market, zone),
                    name=f"backfill-{market.name()}",
                    daemon=True,
                )
                thread.start()
                backfill_threads.append(thread)

        self._plan = MonitorPlan(
            markets=plan.markets,
            zones=plan.zones,
            offsets=plan.offsets,
            schedulers=tuple(schedulers),
            backfill_threads=tuple(backfill_threads),
        )
        return self._plan

    def stop(self) -> None:
        """Signal every scheduler to exit at its next wait."""
        self._stop_event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() is called; returns True when stopped."""
        return self._stop_event.wait(timeout)

    def join(self, timeout: float | None = None) -> tuple[str, ...]:
        """Join every started thread within one shared timeout.

        Returns the names of threads still running when the timeout expires.
        """
        if self._plan is None:
            return ()
        threads = list(self._plan.backfill_threads)
        threads.extend(scheduler.thread for scheduler in self._plan.schedulers if scheduler.thread is not None)
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            thread.join(None if deadline is None else max(deadline - time.monotonic(), 0.0))
        return tuple(thread.name for thread in threads if thread.is_alive())
