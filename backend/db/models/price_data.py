"""Crawl unit status and intraday price observation models."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKeyConstraint,
    Index,
    Numeric,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.db.base import Base
from backend.db.enums import session_kind_enum
from recorder.market_contract import SessionKind

logger = logging.getLogger(__name__)


class CrawlStatus(Base):
    """One row per attempted crawl unit; its presence is the idempotency flag."""

    __tablename__ = "crawl_status"
    __table_args__ = (
        PrimaryKeyConstraint(
            "market_name",
            "company_code",
            "date_key",
            name="pk_crawl_status",
        ),
        CheckConstraint("date_key ~ '^[0-9]{8}$'", name="ck_crawl_status_date_key_format"),
        CheckConstraint("length(btrim(company_code)) > 0", name="ck_crawl_status_company_not_blank"),
        Index("idx_crawl_status_market_date", "market_name", "date_key"),
    )

    market_name: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    company_code: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    date_key: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    recorded_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    row_hash: Mapped[str] = mapped_column(Text, nullable=False)


class CrawlError(Base):
    """Failure message of an unsuccessful crawl unit."""

    __tablename__ = "crawl_error"
    __table_args__ = (
        PrimaryKeyConstraint(
            "market_name",
            "company_code",
            "date_key",
            name="pk_crawl_error",
        ),
        ForeignKeyConstraint(
            ["market_name", "company_code", "date_key"],
            ["crawl_status.market_name", "crawl_status.company_code", "crawl_status.date_key"],
            name="fk_crawl_error_crawl_status",
            onupdate="RESTRICT",
            ondelete="CASCADE",
        ),
    )

    market_name: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    company_code: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    date_key: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    row_hash: Mapped[str] = mapped_column(Text, nullable=False)


class PriceObservation(Base):
    """Intraday bar addressed by crawl unit and session kind."""

    __tablename__ = "price_observation"
    __table_args__ = (
        PrimaryKeyConstraint(
            "market_name",
            "company_code",
            "date_key",
            "session_kind",
            "observed_at_utc",
            name="pk_price_observation",
        ),
        ForeignKeyConstraint(
            ["market_name", "company_code", "date_key"],
            ["crawl_status.market_name", "crawl_status.company_code", "crawl_status.date_key"],
            name="fk_price_observation_crawl_status",
            onupdate="RESTRICT",
            ondelete="CASCADE",
        ),
        CheckConstraint("open_price > 0", name="ck_price_observation_open_pos"),
        CheckConstraint("high_price > 0", name="ck_price_observation_high_pos"),
        CheckConstraint("low_price > 0", name="ck_price_observation_low_pos"),
        CheckConstraint("close_price > 0", name="ck_price_observation_close_pos"),
        CheckConstraint("high_price >= low_price", name="ck_price_observation_high_low"),
        CheckConstraint("volume >= 0", name="ck_price_observation_volume_nonneg"),
    )

    market_name: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    company_code: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    date_key: Mapped[str] = mapped_column(Text, nullable=False, primary_key=True)
    session_kind: Mapped[SessionKind] = mapped_column(session_kind_enum, nullable=False, primary_key=True)
    observed_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        primary_key=True,
    )
    open_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    high_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    low_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    close_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    volume: Mapped[int] = mapped_column(BigInteger, nullable=False)
    row_hash: Mapped[str] = mapped_column(Text, nullable=False)
