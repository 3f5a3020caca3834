"""Environment-backed configuration for the stock recorder."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from recorder.errors import ConfigError


@dataclass(frozen=True)
class RecorderConfig:
    """Canonical configuration surface for the recorder process."""

    db_dsn: str
    archive_dir: Path
    markets: tuple[str, ...]
    backfill_days: int
    max_concurrent_companies: int
    crawl_timeout_seconds: float | None
    enable_daily: bool
    enable_backfill: bool
    http_retry_attempts: int
    http_retry_pause_seconds: float
    yahoo_base_url: str
    nasdaq_base_url: str
    static_company_dir: Path | None
    log_level: str
    log_file: Path | None


_REQUIRED_KEYS: tuple[str, ...] = (
    "RECORDER_DB_DSN",
    "RECORDER_ARCHIVE_DIR",
)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _read_env(name: str, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if value is None or value.strip() == "":
        raise ConfigError(f"Missing required environment variable: {name}")
    return value.strip()


def _read_optional_path(name: str) -> Path | None:
    raw = os.getenv(name, "").strip()
    return Path(raw).resolve() if raw else None


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean value for {name}: {raw}")


def _read_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"Invalid integer value for {name}: {raw}") from exc
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _read_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"Invalid float value for {name}: {raw}") from exc
    return value


def _read_markets(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    markets = tuple(dict.fromkeys(token.strip() for token in raw.split(",") if token.strip()))
    if not markets:
        raise ConfigError(f"{name} must name at least one market")
    return markets


def load_recorder_config() -> RecorderConfig:
    """Load and validate recorder configuration from environment."""
    for key in _REQUIRED_KEYS:
        _read_env(key)

    log_level = os.getenv("RECORDER_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"Invalid log level for RECORDER_LOG_LEVEL: {log_level}")

    crawl_timeout = _read_float("RECORDER_CRAWL_TIMEOUT_SECONDS", 120.0)

    return RecorderConfig(
        db_dsn=_read_env("RECORDER_DB_DSN"),
        archive_dir=Path(_read_env("RECORDER_ARCHIVE_DIR")).resolve(),
        markets=_read_markets("RECORDER_MARKETS", "America"),
        backfill_days=_read_int("RECORDER_BACKFILL_DAYS", 90, minimum=1),
        max_concurrent_companies=_read_int("RECORDER_MAX_CONCURRENT_COMPANIES", 64, minimum=1),
        crawl_timeout_seconds=crawl_timeout if crawl_timeout > 0 else None,
        enable_daily=_read_bool("RECORDER_ENABLE_DAILY", True),
        enable_backfill=_read_bool("RECORDER_ENABLE_BACKFILL", True),
        http_retry_attempts=_read_int("RECORDER_HTTP_RETRY_ATTEMPTS", 3, minimum=1),
        http_retry_pause_seconds=_read_float("RECORDER_HTTP_RETRY_PAUSE_SECONDS", 10.0),
        yahoo_base_url=os.getenv("RECORDER_YAHOO_BASE_URL", "https://query1.finance.yahoo.com").strip(),
        nasdaq_base_url=os.getenv("RECORDER_NASDAQ_BASE_URL", "https://api.nasdaq.com").strip(),
        static_company_dir=_read_optional_path("RECORDER_STATIC_COMPANY_DIR"),
        log_level=log_level,
        log_file=_read_optional_path("RECORDER_LOG_FILE"),
    )
