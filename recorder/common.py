"""Shared helpers for recorder orchestration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from hashlib import sha256
from pathlib import Path
from typing import Any, Iterable

NUMERIC_8 = Decimal("0.00000001")


def normalize_token(value: Any) -> str:
    """Serialize primitive values deterministically for hashing."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Decimal):
        return format(value.quantize(NUMERIC_8, rounding=ROUND_HALF_EVEN), "f")
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return str(value)


def stable_hash(tokens: Iterable[Any]) -> str:
    """Compute a stable SHA256 hash over canonical token serialization."""
    preimage = "|".join(normalize_token(token) for token in tokens)
    return sha256(preimage.encode("utf-8")).hexdigest()


def date_key(day: date | datetime) -> str:
    """Canonical YYYYMMDD key of a market-local day."""
    return day.strftime("%Y%m%d")


def ensure_dir(path: Path) -> None:
    """Create directory tree if missing."""
    path.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class RecorderClock:
    """Injectable UTC clock for deterministic testing."""

    def now_utc(self) -> datetime:
        """Return current UTC timestamp."""
        return datetime.now(tz=timezone.utc)
