"""Initial price store schema for the stock recorder."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


ENUM_DDL: tuple[str, ...] = (
    "CREATE TYPE session_kind_enum AS ENUM ('pre', 'regular', 'post');",
)

TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE crawl_status (
        market_name TEXT NOT NULL,
        company_code TEXT NOT NULL,
        date_key TEXT NOT NULL,
        success BOOLEAN NOT NULL,
        recorded_at_utc TIMESTAMPTZ NOT NULL,
        row_hash TEXT NOT NULL,
        CONSTRAINT pk_crawl_status PRIMARY KEY (market_name, company_code, date_key),
        CONSTRAINT ck_crawl_status_date_key_format CHECK (date_key ~ '^[0-9]{8}$'),
        CONSTRAINT ck_crawl_status_company_not_blank CHECK (length(btrim(company_code)) > 0)
    );
    """,
    """
    CREATE TABLE crawl_error (
        market_name TEXT NOT NULL,
        company_code TEXT NOT NULL,
        date_key TEXT NOT NULL,
        message TEXT NOT NULL,
        row_hash TEXT NOT NULL,
        CONSTRAINT pk_crawl_error PRIMARY KEY (market_name, company_code, date_key),
        CONSTRAINT fk_crawl_error_crawl_status FOREIGN KEY (market_name, company_code, date_key)
            REFERENCES crawl_status (market_name, company_code, date_key)
            ON UPDATE RESTRICT ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE price_observation (
        market_name TEXT NOT NULL,
        company_code TEXT NOT NULL,
        date_key TEXT NOT NULL,
        session_kind session_kind_enum NOT NULL,
        observed_at_utc TIMESTAMPTZ NOT NULL,
        open_price NUMERIC(20,8) NOT NULL,
        high_price NUMERIC(20,8) NOT NULL,
        low_price NUMERIC(20,8) NOT NULL,
        close_price NUMERIC(20,8) NOT NULL,
        volume BIGINT NOT NULL,
        row_hash TEXT NOT NULL,
        CONSTRAINT pk_price_observation PRIMARY KEY (
            market_name, company_code, date_key, session_kind, observed_at_utc
        ),
        CONSTRAINT fk_price_observation_crawl_status FOREIGN KEY (market_name, company_code, date_key)
            REFERENCES crawl_status (market_name, company_code, date_key)
            ON UPDATE RESTRICT ON DELETE CASCADE,
        CONSTRAINT ck_price_observation_open_pos CHECK (open_price > 0),
        CONSTRAINT ck_price_observation_high_pos CHECK (high_price > 0),
        CONSTRAINT ck_price_observation_low_pos CHECK (low_price > 0),
        CONSTRAINT ck_price_observation_close_pos CHECK (close_price > 0),
        CONSTRAINT ck_price_observation_high_low CHECK (high_price >= low_price),
        CONSTRAINT ck_price_observation_volume_nonneg CHECK (volume >= 0)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_crawl_status_market_date ON crawl_status (market_name, date_key);",
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Create the price store schema."""

    logger.info("Starting price store schema upgrade.")
    _execute_all(ENUM_DDL)
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    logger.info("Completed price store schema upgrade.")


def downgrade() -> None:
    """Drop the price store schema."""

    logger.info("Starting price store schema downgrade.")
    _execute_all(
        (
            "DROP TABLE IF EXISTS price_observation;",
            "DROP TABLE IF EXISTS crawl_error;",
            "DROP TABLE IF EXISTS crawl_status;",
            "DROP TYPE IF EXISTS session_kind_enum;",
        )
    )
    logger.info("Completed price store schema downgrade.")
