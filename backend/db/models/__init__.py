"""Model module imports for SQLAlchemy metadata registration."""

from __future__ import annotations

import logging

from backend.db.models.price_data import CrawlError, CrawlStatus, PriceObservation

logger = logging.getLogger(__name__)

__all__ = [
    "CrawlError",
    "CrawlStatus",
    "PriceObservation",
]
