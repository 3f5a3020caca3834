"""Local last-known-good company list archive."""

from __future__ import annotations

import logging
import os
from pathlib import Path
import tempfile
from typing import Protocol, Sequence

import pandas as pd

from recorder.common import ensure_dir
from recorder.errors import ResolveError
from recorder.market_contract import Company

logger = logging.getLogger(__name__)

_ARCHIVE_FILE_NAME = "companies.parquet"


class CompanyArchive(Protocol):
    """Fallback source of truth for a market's company list."""

    def load(self, market_name: str) -> tuple[Company, ...]:
        """Load the archived list; raise on failure."""

    def save(self, market_name: str, companies: Sequence[Company]) -> None:
        """Replace the archived list; raise on failure."""


class ParquetCompanyArchive:
    """Stores one parquet snapshot per market under ``base_dir``."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    def path_for(self, market_name: str) -> Path:
        return self._base_dir / market_name / _ARCHIVE_FILE_NAME

    def load(self, market_name: str) -> tuple[Company, ...]:
        path = self.path_for(market_name)
        if not path.exists():
            raise ResolveError(f"No company archive for market {market_name} at {path}")
        try:
            frame = pd.read_parquet(path)
        except Exception as exc:
            raise ResolveError(f"Unreadable company archive {path}: {exc}") from exc
        if not {"code", "name"}.issubset(frame.columns):
            raise ResolveError(f"Company archive {path} is missing code/name columns")
        return tuple(
            Company(code=str(code), name="" if pd.isna(name) else str(name))
            for code, name in zip(frame["code"], frame["name"])
        )

    def save(self, market_name: str, companies: Sequence[Company]) -> None:
        path = self.path_for(market_name)
        ensure_dir(path.parent)
        frame = pd.DataFrame(
            {
                "code": [company.code for company in companies],
                "name": [company.name for company in companies],
            },
            columns=["code", "name"],
        )
        # temp file is unique per writer
        with tempfile.NamedTemporaryFile(dir=path.parent, suffix=".parquet", delete=False) as handle:
            temp_path = Path(handle.name)
        try:
            frame.to_parquet(temp_path, index=False)
            os.replace(temp_path, path)
        finally:
            if temp_path.exists():
                temp_path.unlink()
        logger.debug("[%s] archived %d companies to %s", market_name, len(companies), path)
