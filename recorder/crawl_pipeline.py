"""Exactly-once processing of one (market, company, day) crawl unit."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from recorder.common import date_key
from recorder.errors import CrawlError, ParseError, PersistError
from recorder.market_contract import Company, Market, PayloadParser
from recorder.storage import CompanyUnitOfWork, ConnectionFactory

logger = logging.getLogger(__name__)


def _crawl_with_timeout(market: Market, company_code: str, day: datetime, timeout_seconds: float | None) -> str:
    if timeout_seconds is None or timeout_seconds <= 0:
        return market.crawl(company_code, day)

    outcome: dict[str, object] = {}

    def _target() -> None:
        try:
            outcome["payload"] = market.crawl(company_code, day)
        except BaseException as exc:  # re-raised in the calling thread
            outcome["error"] = exc

    worker = threading.Thread(
        target=_target,
        name=f"crawl-{market.name()}-{company_code}",
        daemon=True,
    )
    worker.start()
    worker.join(timeout_seconds)
    if worker.is_alive():
        raise CrawlError(f"crawl of {company_code}@{date_key(day)} timed out after {timeout_seconds}s")
    if "error" in outcome:
        raise outcome["error"]  # type: ignore[misc]
    return str(outcome["payload"])


def process_unit(
    uow: CompanyUnitOfWork,
    market: Market,
    parser: PayloadParser,
    company: Company,
    day: datetime,
    *,
    crawl_timeout_seconds: float | None = None,
) -> bool:
    """Crawl, parse and persist one unit inside the caller's transaction.

    Returns False when the unit was already processed and nothing was done.
    Payload-level failures are persisted as ``success=false`` with their
    message, so they are skipped by later idempotency checks.
    """
    key = date_key(day)
    if uow.is_processed(key):
        return False

    try:
        raw = _crawl_with_timeout(market, company.code, day, crawl_timeout_seconds)
    except CrawlError:
        raise
    except Exception as exc:
        raise CrawlError(f"crawl of {company.code}@{key} failed: {exc}") from exc

    try:
        result = parser.parse(market.name(), company.code, day, raw)
    except ParseError:
        raise
    except Exception as exc:
        raise ParseError(f"parse of {company.code}@{key} failed: {exc}") from exc

    uow.save_status(key, result.success)
    if not result.success:
        uow.save_error(key, result.message or "")
        return True

    for period in result.periods():
        uow.save_period(key, period.kind, period)
    return True


def run_in_transaction(
    connections: ConnectionFactory,
    market: Market,
    company: Company,
    work: Callable[[CompanyUnitOfWork], None],
) -> bool:
    """Run ``work`` in one company transaction and commit or roll back.

    Returns True only when the transaction was committed. Every failure is
    logged here; nothing propagates to the caller.
    """
    market_name = market.name()
    try:
        connection = connections.open_connection(market_name, company.code)
    except Exception as exc:
        logger.error("[%s] failed to open connection for %s: %s", market_name, company.code, exc)
        return False

    try:
        try:
            uow = connection.begin()
        except Exception as exc:
            logger.error("[%s] failed to start transaction for %s: %s", market_name, company.code, exc)
            return False

        try:
            work(uow)
        except Exception as exc:
            logger.error("[%s] %s: %s", market_name, company.code, exc)
            try:
                uow.rollback()
            except PersistError as rollback_exc:
                logger.error("[%s] %s", market_name, rollback_exc)
            return False

        try:
            uow.commit()
        except PersistError as exc:
            logger.error("[%s] %s", market_name, exc)
            return False
        return True
    finally:
        try:
            connection.close()
        except Exception as exc:
            logger.warning("[%s] failed to close connection for %s: %s", market_name, company.code, exc)
