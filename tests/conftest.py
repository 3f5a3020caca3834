"""Pytest fixtures shared across unit and integration tests."""

from __future__ import annotations

import importlib.util
import os
from pathlib import Path
import sys
import types
from typing import Any

import psycopg
import pytest

from recorder.storage import PsycopgRecorderDB


MIGRATION_PATH = (
    Path(__file__).resolve().parents[1]
    / "backend"
    / "db"
    / "migrations"
    / "versions"
    / "0001_initial_schema.py"
)


class RecordingOp:
    """Stands in for ``alembic.op``; records DDL and can reject one statement."""

    def __init__(self) -> None:
        self.statements: list[str] = []
        self.reject: str | None = None

    def execute(self, statement: str) -> None:
        self.statements.append(statement)
        if self.reject is not None and self.reject in statement:
            raise RuntimeError(f"rejected: {self.reject}")


def import_migration(module_name: str, op: Any = None) -> Any:
    """Import the initial migration with ``alembic.op`` bound to ``op``."""
    previous = sys.modules.get("alembic")
    sys.modules["alembic"] = types.SimpleNamespace(op=op)  # type: ignore[assignment]
    try:
        spec = importlib.util.spec_from_file_location(module_name, MIGRATION_PATH)
        assert spec is not None and spec.loader is not None
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    finally:
        if previous is None:
            sys.modules.pop("alembic", None)
        else:
            sys.modules["alembic"] = previous
    return module


@pytest.fixture
def migration_op() -> RecordingOp:
    return RecordingOp()


@pytest.fixture
def migration(migration_op: RecordingOp) -> Any:
    """Initial migration module wired to a recording op."""
    return import_migration("migration_0001_under_test", migration_op)


@pytest.fixture(scope="session")
def pg_conn() -> Any:
    """Session-scoped psycopg connection for integration tests."""
    dsn = os.getenv("TEST_DB_DSN")
    if not dsn:
        pytest.skip("TEST_DB_DSN is not set; integration tests need a PostgreSQL database")

    conn = psycopg.connect(dsn, autocommit=False)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def price_store(pg_conn: Any) -> Any:
    """Fresh price store schema inside a transaction that is always rolled back."""
    module = import_migration("migration_0001_integration")
    with pg_conn.cursor() as cur:
        cur.execute("CREATE SCHEMA recorder_it")
        cur.execute("SET LOCAL search_path TO recorder_it")
        for statement in (*module.ENUM_DDL, *module.TABLE_DDL, *module.INDEX_DDL):
            cur.execute(statement)
    try:
        yield pg_conn
    finally:
        pg_conn.rollback()


@pytest.fixture
def recorder_db(price_store: Any) -> PsycopgRecorderDB:
    """Recorder DB adapter bound to the throwaway schema."""
    return PsycopgRecorderDB(price_store)
