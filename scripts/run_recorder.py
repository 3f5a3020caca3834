#!/usr/bin/env python3
"""Stock recorder CLI: monitor markets or run one daily/backfill pass."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Sequence

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from recorder.common import RecorderClock
from recorder.company_archive import ParquetCompanyArchive
from recorder.company_resolver import resolve_companies
from recorder.daily_scheduler import run_daily_task
from recorder.errors import ConfigError, ResolveError
from recorder.history_backfill import run_history_backfill
from recorder.log_setup import configure_logging
from recorder.market_clock import load_market_zone, local_yesterday_midnight
from recorder.market_contract import Market
from recorder.monitor import MarketRegistry, Monitor, MonitorSettings
from recorder.recorder_config import RecorderConfig, load_recorder_config
from recorder.run_context import RunContext, RunSummary
from recorder.storage import PsycopgConnectionFactory
from recorder.yahoo_market import build_markets
from recorder.yahoo_parser import YahooChartParser

logger = logging.getLogger("recorder.cli")

SHUTDOWN_JOIN_SECONDS = 10.0


def _build_context(cfg: RecorderConfig) -> RunContext:
    return RunContext(
        archive=ParquetCompanyArchive(cfg.archive_dir),
        connections=PsycopgConnectionFactory(cfg.db_dsn),
        parser=YahooChartParser(),
        fan_out_capacity=cfg.max_concurrent_companies,
        crawl_timeout_seconds=cfg.crawl_timeout_seconds,
    )


def _select_market(markets: Sequence[Market], name: str) -> Market:
    for market in markets:
        if market.name() == name:
            return market
    raise ConfigError(f"Market {name} is not configured (RECORDER_MARKETS)")


def _summary_json(summary: RunSummary) -> str:
    return json.dumps(
        {
            "market_name": summary.market_name,
            "run_kind": summary.run_kind,
            "newest_date_key": summary.newest_date_key,
            "resolved": summary.resolved,
            "companies_total": summary.companies_total,
            "companies_committed": summary.companies_committed,
            "companies_failed": summary.companies_failed,
        },
        sort_keys=True,
    )


def _positive_int(value: str) -> int:
    parsed = int(value)
    if parsed < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Multi-market intraday stock price recorder")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("monitor", help="Run daily schedulers and startup backfill until interrupted")

    daily = subparsers.add_parser("daily", help="Record yesterday for one market now")
    daily.add_argument("--market", required=True)

    backfill = subparsers.add_parser("backfill", help="Run one history backfill for one market")
    backfill.add_argument("--market", required=True)
    backfill.add_argument("--days", type=_positive_int, default=None)

    companies = subparsers.add_parser("companies", help="Resolve and print a market's company list")
    companies.add_argument("--market", required=True)

    return parser


def _run_monitor(cfg: RecorderConfig, markets: Sequence[Market], context: RunContext) -> int:
    registry = MarketRegistry()
    for market in markets:
        registry.add(market)
    monitor = Monitor(
        registry=registry,
        context=context,
        settings=MonitorSettings(
            backfill_days=cfg.backfill_days,
            enable_daily=cfg.enable_daily,
            enable_backfill=cfg.enable_backfill,
        ),
    )
    monitor.start()
    try:
        monitor.wait()
    except KeyboardInterrupt:
        logger.info("interrupted, stopping monitor")
    finally:
        monitor.stop()
        still_running = monitor.join(SHUTDOWN_JOIN_SECONDS)
        if still_running:
            # daemon threads die with the process; their open transactions never commit
            logger.warning(
                "abandoning %d unfinished threads after %.0fs: %s",
                len(still_running),
                SHUTDOWN_JOIN_SECONDS,
                ", ".join(still_running),
            )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = load_recorder_config()
        configure_logging(cfg.log_level, cfg.log_file)
        markets = build_markets(cfg)
        context = _build_context(cfg)

        if args.command == "monitor":
            return _run_monitor(cfg, markets, context)

        market = _select_market(markets, args.market)
        zone = load_market_zone(market.timezone())

        if args.command == "daily":
            summary = run_daily_task(market, zone, context, now_utc=RecorderClock().now_utc())
            print(_summary_json(summary))
            return 0 if summary.resolved else 1

        if args.command == "backfill":
            summary = run_history_backfill(
                market,
                zone,
                context,
                newest_day=local_yesterday_midnight(zone, RecorderClock().now_utc()),
                window_days=args.days if args.days is not None else cfg.backfill_days,
            )
            print(_summary_json(summary))
            return 0 if summary.resolved else 1

        if args.command == "companies":
            try:
                resolved = resolve_companies(market, context.archive)
            except ResolveError as exc:
                print(str(exc), file=sys.stderr)
                return 1
            print(json.dumps([{"code": c.code, "name": c.name} for c in resolved], ensure_ascii=False))
            return 0

        raise SystemExit(f"Unknown command: {args.command}")
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
