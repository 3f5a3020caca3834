"""Company list resolution with archive fallback."""

from __future__ import annotations

import logging

from recorder.company_archive import CompanyArchive
from recorder.errors import ResolveError
from recorder.market_contract import Company, Market

logger = logging.getLogger(__name__)


def resolve_companies(market: Market, archive: CompanyArchive) -> tuple[Company, ...]:
    """Return the market's companies, preferring the live source.

    A fresh list is only returned once it has been archived, so a later
    fallback always has something to read. When the live call fails the
    archived list is returned as-is, however old it is.
    """
    market_name = market.name()
    logger.info("[%s] refreshing company list", market_name)
    try:
        companies = tuple(market.companies())
    except Exception as live_exc:
        logger.warning("[%s] company list refresh failed, reading archive: %s", market_name, live_exc)
        try:
            archived = tuple(archive.load(market_name))
        except Exception as archive_exc:
            raise ResolveError(
                f"[{market_name}] company list unavailable: live={live_exc}; archive={archive_exc}"
            ) from archive_exc
        logger.info("[%s] loaded %d companies from archive", market_name, len(archived))
        return archived

    try:
        archive.save(market_name, companies)
    except Exception as exc:
        raise ResolveError(f"[{market_name}] failed to archive company list: {exc}") from exc

    logger.info("[%s] company list refreshed, %d companies", market_name, len(companies))
    return companies
