"""Yahoo Finance backed market adapters."""

from __future__ import annotations

import abc
from datetime import datetime, timedelta
import json
import logging
from pathlib import Path
import time
from typing import Any, Callable, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

import pandas as pd

from recorder.common import date_key
from recorder.errors import ConfigError, CrawlError
from recorder.market_clock import load_market_zone, local_midnight
from recorder.market_contract import Company, Market
from recorder.recorder_config import RecorderConfig

logger = logging.getLogger(__name__)

_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) stock-recorder/1.0"

Requester = Callable[[str, dict[str, Any]], str]


class YahooChartMarket(Market):
    """Market whose intraday data comes from the Yahoo v8 chart endpoint."""

    symbol_suffix: str = ""

    def __init__(
        self,
        *,
        base_url: str,
        retry_attempts: int = 3,
        retry_pause_seconds: float = 10.0,
        requester: Optional[Requester] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._retry_attempts = max(1, retry_attempts)
        self._retry_pause_seconds = retry_pause_seconds
        self._requester = requester
        self._sleep = sleep

    def _request_text(self, url: str, params: dict[str, Any]) -> str:
        if self._requester is not None:
            return self._requester(url, params)

        request = Request(
            url=f"{url}?{urlencode(params)}" if params else url,
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
            method="GET",
        )
        last_error: Exception | None = None
        for attempt in range(1, self._retry_attempts + 1):
            try:
                with urlopen(request, timeout=20.0) as response:
                    return response.read().decode("utf-8")
            except HTTPError as exc:
                # 404 is a definitive answer for unknown symbols; let the parser see it.
                if exc.code == 404:
                    return exc.read().decode("utf-8", errors="replace")
                last_error = exc
            except (URLError, TimeoutError) as exc:
                last_error = exc
            if attempt < self._retry_attempts:
                self._sleep(self._retry_pause_seconds)

        raise CrawlError(f"{self.name()} request to {url} failed after {self._retry_attempts} attempts: {last_error}")

    def yahoo_symbol(self, company_code: str) -> str:
        return f"{company_code}{self.symbol_suffix}"

    def crawl(self, company_code: str, day: datetime) -> str:
        zone = load_market_zone(self.timezone())
        start = local_midnight(zone, day.astimezone(zone).date())
        end = local_midnight(zone, start.date() + timedelta(days=1))
        logger.debug("[%s] crawling %s for %s", self.name(), company_code, date_key(start))
        return self._request_text(
            f"{self._base_url}/v8/finance/chart/{quote(self.yahoo_symbol(company_code))}",
            {
                "period1": int(start.timestamp()),
                "period2": int(end.timestamp()),
                "interval": "1m",
                "includePrePost": "true",
            },
        )

    @abc.abstractmethod
    def companies(self) -> Sequence[Company]:
        """Listed companies of this market."""


class AmericaMarket(YahooChartMarket):
    """NASDAQ, NYSE and AMEX listings via the Nasdaq screener."""

    exchanges: tuple[str, ...] = ("nasdaq", "nyse", "amex")

    def __init__(self, *, nasdaq_base_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._nasdaq_base_url = nasdaq_base_url.rstrip("/")

    def name(self) -> str:
        return "America"

    def timezone(self) -> str:
        return "America/New_York"

    @staticmethod
    def _normalize_code(symbol: str) -> str:
        return symbol.strip().upper().replace("/", "-").replace("^", "-P")

    def companies(self) -> Sequence[Company]:
        by_code: dict[str, Company] = {}
        for exchange in self.exchanges:
            raw = self._request_text(
                f"{self._nasdaq_base_url}/api/screener/stocks",
                {"exchange": exchange, "download": "true"},
            )
            payload = json.loads(raw)
            rows = ((payload.get("data") or {}).get("rows")) or []
            if not rows:
                raise CrawlError(f"Nasdaq screener returned no rows for {exchange}")
            for row in rows:
                code = self._normalize_code(str(row.get("symbol", "")))
                if code and code not in by_code:
                    by_code[code] = Company(code=code, name=str(row.get("name", "")).strip())
        return tuple(sorted(by_code.values(), key=lambda item: item.code))


class StaticListMarket(YahooChartMarket):
    """Market whose company list is maintained as a local CSV file."""

    def __init__(
        self,
        *,
        market_name: str,
        timezone_name: str,
        csv_path: Path,
        symbol_suffix: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._market_name = market_name
        self._timezone_name = timezone_name
        self._csv_path = Path(csv_path)
        self.symbol_suffix = symbol_suffix

    def name(self) -> str:
        return self._market_name

    def timezone(self) -> str:
        return self._timezone_name

    def companies(self) -> Sequence[Company]:
        frame = pd.read_csv(self._csv_path, dtype=str, keep_default_na=False)
        if "code" not in frame.columns:
            raise ValueError(f"{self._csv_path} has no 'code' column")
        names = frame["name"] if "name" in frame.columns else [""] * len(frame)
        return tuple(
            Company(code=code.strip(), name=name.strip())
            for code, name in zip(frame["code"], names)
            if code.strip()
        )


# name -> (IANA zone, Yahoo symbol suffix)
STATIC_MARKETS: dict[str, tuple[str, str]] = {
    "China": ("Asia/Shanghai", ".SS"),
    "Shenzhen": ("Asia/Shanghai", ".SZ"),
    "HongKong": ("Asia/Hong_Kong", ".HK"),
}


def build_markets(config: RecorderConfig) -> tuple[Market, ...]:
    """Instantiate the configured markets."""
    transport = dict(
        base_url=config.yahoo_base_url,
        retry_attempts=config.http_retry_attempts,
        retry_pause_seconds=config.http_retry_pause_seconds,
    )
    markets: list[Market] = []
    for name in config.markets:
        if name == "America":
            markets.append(AmericaMarket(nasdaq_base_url=config.nasdaq_base_url, **transport))
            continue
        if name not in STATIC_MARKETS:
            raise ConfigError(f"Unknown market: {name}")
        if config.static_company_dir is None:
            raise ConfigError(f"RECORDER_STATIC_COMPANY_DIR is required for market {name}")
        timezone_name, suffix = STATIC_MARKETS[name]
        markets.append(
            StaticListMarket(
                market_name=name,
                timezone_name=timezone_name,
                csv_path=config.static_company_dir / f"{name}.csv",
                symbol_suffix=suffix,
                **transport,
            )
        )
    return tuple(markets)
