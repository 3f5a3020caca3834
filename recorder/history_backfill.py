"""Startup backfill of a fixed window of past days per company."""

from __future__ import annotations

from datetime import datetime
import logging
from zoneinfo import ZoneInfo

from recorder.common import date_key
from recorder.company_resolver import resolve_companies
from recorder.crawl_pipeline import process_unit, run_in_transaction
from recorder.errors import RecorderError, ResolveError
from recorder.market_clock import days_back
from recorder.market_contract import Company, Market
from recorder.run_context import RunContext, RunSummary, RunTally
from recorder.storage import CompanyUnitOfWork

logger = logging.getLogger(__name__)

# Upstream intraday history does not reach further back than this.
DEFAULT_BACKFILL_DAYS = 90


def _walk_window(
    uow: CompanyUnitOfWork,
    market: Market,
    company: Company,
    window: tuple[datetime, ...],
    context: RunContext,
) -> None:
    for day in window:
        try:
            process_unit(
                uow,
                market,
                context.parser,
                company,
                day,
                crawl_timeout_seconds=context.crawl_timeout_seconds,
            )
        except RecorderError as exc:
            raise type(exc)(f"backfill stopped at {date_key(day)}: {exc}") from exc


def run_history_backfill(
    market: Market,
    zone: ZoneInfo,
    context: RunContext,
    *,
    newest_day: datetime,
    window_days: int = DEFAULT_BACKFILL_DAYS,
) -> RunSummary:
    """Backfill ``window_days`` days ending at ``newest_day`` for every company.

    Each company's window runs newest-first inside one transaction. The first
    failing day stops the walk and rolls back every day of this run for that
    company; a complete walk commits them all.
    """
    if window_days < 1:
        raise ValueError(f"Backfill window must be >= 1 day, got {window_days}")

    market_name = market.name()
    window = days_back(zone, newest_day, window_days)
    newest_key = date_key(window[0])

    try:
        companies = resolve_companies(market, context.archive)
    except ResolveError as exc:
        logger.error("[%s] history backfill aborted: %s", market_name, exc)
        return RunSummary(market_name=market_name, run_kind="BACKFILL", newest_date_key=newest_key, resolved=False)

    logger.info(
        "[%s] backfilling %d companies for %d days up to %s",
        market_name,
        len(companies),
        window_days,
        newest_key,
    )

    tally = RunTally()

    def _company_task(company: Company) -> None:
        committed = run_in_transaction(
            context.connections,
            market,
            company,
            lambda uow: _walk_window(uow, market, company, window, context),
        )
        tally.record(committed)

    context.new_fan_out(f"backfill-{market_name}").run_all(companies, _company_task)

    logger.info(
        "[%s] history backfill finished: committed=%d failed=%d",
        market_name,
        tally.committed,
        tally.failed,
    )
    return RunSummary(
        market_name=market_name,
        run_kind="BACKFILL",
        newest_date_key=newest_key,
        resolved=True,
        companies_total=len(companies),
        companies_committed=tally.committed,
        companies_failed=tally.failed,
    )
