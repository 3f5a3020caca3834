from __future__ import annotations

from pathlib import Path

import pytest

from recorder.errors import ConfigError
from recorder.recorder_config import load_recorder_config


_REQUIRED_ENV = {
    "RECORDER_DB_DSN": "postgresql://recorder@localhost/prices",
    "RECORDER_ARCHIVE_DIR": "./data/archive",
}

_OPTIONAL_KEYS = (
    "RECORDER_MARKETS",
    "RECORDER_BACKFILL_DAYS",
    "RECORDER_MAX_CONCURRENT_COMPANIES",
    "RECORDER_CRAWL_TIMEOUT_SECONDS",
    "RECORDER_ENABLE_DAILY",
    "RECORDER_ENABLE_BACKFILL",
    "RECORDER_HTTP_RETRY_ATTEMPTS",
    "RECORDER_HTTP_RETRY_PAUSE_SECONDS",
    "RECORDER_YAHOO_BASE_URL",
    "RECORDER_NASDAQ_BASE_URL",
    "RECORDER_STATIC_COMPANY_DIR",
    "RECORDER_LOG_LEVEL",
    "RECORDER_LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _OPTIONAL_KEYS:
        monkeypatch.delenv(key, raising=False)
    for key, value in _REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)


def test_defaults() -> None:
    cfg = load_recorder_config()
    assert cfg.db_dsn == "postgresql://recorder@localhost/prices"
    assert cfg.archive_dir == Path("./data/archive").resolve()
    assert cfg.markets == ("America",)
    assert cfg.backfill_days == 90
    assert cfg.max_concurrent_companies == 64
    assert cfg.crawl_timeout_seconds == 120.0
    assert cfg.enable_daily is True
    assert cfg.enable_backfill is True
    assert cfg.http_retry_attempts == 3
    assert cfg.http_retry_pause_seconds == 10.0
    assert cfg.yahoo_base_url == "https://query1.finance.yahoo.com"
    assert cfg.nasdaq_base_url == "https://api.nasdaq.com"
    assert cfg.static_company_dir is None
    assert cfg.log_level == "INFO"
    assert cfg.log_file is None


def test_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("RECORDER_MARKETS", "America, China,America,,HongKong")
    monkeypatch.setenv("RECORDER_BACKFILL_DAYS", "30")
    monkeypatch.setenv("RECORDER_MAX_CONCURRENT_COMPANIES", "8")
    monkeypatch.setenv("RECORDER_CRAWL_TIMEOUT_SECONDS", "0")
    monkeypatch.setenv("RECORDER_ENABLE_BACKFILL", "off")
    monkeypatch.setenv("RECORDER_STATIC_COMPANY_DIR", str(tmp_path))
    monkeypatch.setenv("RECORDER_LOG_LEVEL", "debug")
    monkeypatch.setenv("RECORDER_LOG_FILE", str(tmp_path / "logs" / "recorder.log"))

    cfg = load_recorder_config()
    assert cfg.markets == ("America", "China", "HongKong")
    assert cfg.backfill_days == 30
    assert cfg.max_concurrent_companies == 8
    assert cfg.crawl_timeout_seconds is None
    assert cfg.enable_backfill is False
    assert cfg.static_company_dir == tmp_path.resolve()
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file == (tmp_path / "logs" / "recorder.log").resolve()


@pytest.mark.parametrize("key", sorted(_REQUIRED_ENV))
def test_missing_required_value(monkeypatch: pytest.MonkeyPatch, key: str) -> None:
    monkeypatch.setenv(key, "  ")
    with pytest.raises(ConfigError, match=key):
        load_recorder_config()


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("RECORDER_BACKFILL_DAYS", "0", "must be >= 1"),
        ("RECORDER_BACKFILL_DAYS", "ninety", "Invalid integer"),
        ("RECORDER_MAX_CONCURRENT_COMPANIES", "0", "must be >= 1"),
        ("RECORDER_ENABLE_DAILY", "maybe", "Invalid boolean"),
        ("RECORDER_HTTP_RETRY_PAUSE_SECONDS", "soon", "Invalid float"),
        ("RECORDER_MARKETS", " , ", "at least one market"),
        ("RECORDER_LOG_LEVEL", "VERBOSE", "Invalid log level"),
    ],
)
def test_invalid_values(monkeypatch: pytest.MonkeyPatch, key: str, value: str, message: str) -> None:
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigError, match=message):
        load_recorder_config()
