"""Transactional per-company storage for crawl units."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

import psycopg
from psycopg.rows import dict_row

from recorder.common import stable_hash
from recorder.errors import PersistError
from recorder.market_contract import PricePeriod, SessionKind

logger = logging.getLogger(__name__)

_NAMED_PARAM_RE = re.compile(r"(?<!:):([a-zA-Z_][a-zA-Z0-9_]*)")


def _convert_named_params(sql: str) -> str:
    return _NAMED_PARAM_RE.sub(r"%(\1)s", sql)


class RecorderDatabase(Protocol):
    """Minimal DB protocol used by the unit of work."""

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        """Fetch one row."""

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        """Execute mutation statement."""


class PsycopgRecorderDB:
    """psycopg adapter accepting ``:name`` style parameters."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self.conn = conn

    def fetch_one(self, sql: str, params: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(_convert_named_params(sql), dict(params))
            row = cur.fetchone()
            return dict(row) if row is not None else None

    def execute(self, sql: str, params: Mapping[str, Any]) -> None:
        with self.conn.cursor() as cur:
            cur.execute(_convert_named_params(sql), dict(params))


class CompanyUnitOfWork:
    """All reads and writes of one company inside one transaction.

    The idempotency key is the day's ``YYYYMMDD`` string; market and company
    are fixed by the connection the unit of work was opened on. Commit and
    rollback are left to the orchestrating caller.
    """

    def __init__(
        self,
        db: RecorderDatabase,
        *,
        market_name: str,
        company_code: str,
        on_commit: Callable[[], None],
        on_rollback: Callable[[], None],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self.market_name = market_name
        self.company_code = company_code
        self._on_commit = on_commit
        self._on_rollback = on_rollback
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def _key_params(self, date_key: str) -> dict[str, Any]:
        return {
            "market_name": self.market_name,
            "company_code": self.company_code,
            "date_key": date_key,
        }

    def is_processed(self, date_key: str) -> bool:
        try:
            row = self._db.fetch_one(
                """
                SELECT 1 AS processed
                FROM crawl_status
                WHERE market_name = :market_name
                  AND company_code = :company_code
                  AND date_key = :date_key
                """,
                self._key_params(date_key),
            )
        except Exception as exc:
            raise PersistError(f"Failed to read crawl status for {self.company_code}@{date_key}: {exc}") from exc
        return row is not None

    def save_status(self, date_key: str, success: bool) -> None:
        params = self._key_params(date_key)
        params.update(
            {
                "success": success,
                "recorded_at_utc": self._clock(),
                "row_hash": stable_hash(("crawl_status", self.market_name, self.company_code, date_key, success)),
            }
        )
        self._write(
            """
            INSERT INTO crawl_status (
                market_name, company_code, date_key,
                success, recorded_at_utc, row_hash
            ) VALUES (
                :market_name, :company_code, :date_key,
                :success, :recorded_at_utc, :row_hash
            )
            ON CONFLICT (market_name, company_code, date_key) DO NOTHING
            """,
            params,
            what="status",
            date_key=date_key,
        )

    def save_error(self, date_key: str, message: str) -> None:
        params = self._key_params(date_key)
        params.update(
            {
                "message": message,
                "row_hash": stable_hash(("crawl_error", self.market_name, self.company_code, date_key, message)),
            }
        )
        self._write(
            """
            INSERT INTO crawl_error (
                market_name, company_code, date_key, message, row_hash
            ) VALUES (
                :market_name, :company_code, :date_key, :message, :row_hash
            )
            ON CONFLICT (market_name, company_code, date_key) DO NOTHING
            """,
            params,
            what="error",
            date_key=date_key,
        )

    def save_period(self, date_key: str, kind: SessionKind, period: PricePeriod) -> int:
        written = 0
        for observation in period.observations:
            params = self._key_params(date_key)
            params.update(
                {
                    "session_kind": kind.value,
                    "observed_at_utc": observation.observed_at_utc,
                    "open_price": observation.open_price,
                    "high_price": observation.high_price,
                    "low_price": observation.low_price,
                    "close_price": observation.close_price,
                    "volume": observation.volume,
                    "row_hash": stable_hash(
                        (
                            "price_observation",
                            self.market_name,
                            self.company_code,
                            date_key,
                            kind.value,
                            observation.observed_at_utc,
                            observation.open_price,
                            observation.high_price,
                            observation.low_price,
                            observation.close_price,
                            observation.volume,
                        )
                    ),
                }
            )
            self._write(
                """
                INSERT INTO price_observation (
                    market_name, company_code, date_key, session_kind, observed_at_utc,
                    open_price, high_price, low_price, close_price, volume, row_hash
                ) VALUES (
                    :market_name, :company_code, :date_key, :session_kind, :observed_at_utc,
                    :open_price, :high_price, :low_price, :close_price, :volume, :row_hash
                )
                ON CONFLICT (market_name, company_code, date_key, session_kind, observed_at_utc) DO NOTHING
                """,
                params,
                what=f"{kind.value} period",
                date_key=date_key,
            )
            written += 1
        return written

    def _write(self, sql: str, params: Mapping[str, Any], *, what: str, date_key: str) -> None:
        try:
            self._db.execute(sql, params)
        except Exception as exc:
            raise PersistError(f"Failed to save {what} for {self.company_code}@{date_key}: {exc}") from exc

    def commit(self) -> None:
        try:
            self._on_commit()
        except Exception as exc:
            raise PersistError(f"Failed to commit transaction for {self.company_code}: {exc}") from exc

    def rollback(self) -> None:
        try:
            self._on_rollback()
        except Exception as exc:
            raise PersistError(f"Failed to roll back transaction for {self.company_code}: {exc}") from exc


class CompanyConnection(Protocol):
    """Storage connection scoped to one (market, company)."""

    def begin(self) -> CompanyUnitOfWork:
        """Start a transaction and return its unit of work."""

    def close(self) -> None:
        """Release the connection."""


class ConnectionFactory(Protocol):
    """Opens per-company storage connections."""

    def open_connection(self, market_name: str, company_code: str) -> CompanyConnection:
        """Open a connection; raise PersistError on failure."""


class PsycopgCompanyConnection:
    """One psycopg connection serving a single company's transactions."""

    def __init__(self, conn: psycopg.Connection[Any], *, market_name: str, company_code: str) -> None:
        self._conn = conn
        self._market_name = market_name
        self._company_code = company_code

    def begin(self) -> CompanyUnitOfWork:
        # psycopg opens the transaction implicitly on the first statement when autocommit is off.
        if self._conn.closed:
            raise PersistError(f"Connection for {self._company_code} is closed")
        return CompanyUnitOfWork(
            PsycopgRecorderDB(self._conn),
            market_name=self._market_name,
            company_code=self._company_code,
            on_commit=self._conn.commit,
            on_rollback=self._conn.rollback,
        )

    def close(self) -> None:
        self._conn.close()


class PsycopgConnectionFactory:
    """Connection factory backed by a PostgreSQL DSN."""

    def __init__(self, dsn: str, *, connect_timeout_seconds: int = 30) -> None:
        self._dsn = dsn
        self._connect_timeout_seconds = connect_timeout_seconds

    def open_connection(self, market_name: str, company_code: str) -> PsycopgCompanyConnection:
        try:
            conn = psycopg.connect(
                self._dsn,
                autocommit=False,
                connect_timeout=self._connect_timeout_seconds,
                application_name=f"recorder:{market_name}",
            )
        except psycopg.Error as exc:
            raise PersistError(f"Failed to connect for {market_name}/{company_code}: {exc}") from exc
        return PsycopgCompanyConnection(conn, market_name=market_name, company_code=company_code)
