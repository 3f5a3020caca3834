"""Parser for Yahoo Finance v8 chart payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import json
import logging
from typing import Any, Mapping, Sequence

from recorder.common import date_key
from recorder.errors import ParseError
from recorder.market_contract import PriceObservation, PricePeriod, ProcessingResult, SessionKind

logger = logging.getLogger(__name__)

_Window = tuple[int, int]


def _windows_from_meta(meta: Mapping[str, Any]) -> dict[SessionKind, list[_Window]]:
    windows: dict[SessionKind, list[_Window]] = {kind: [] for kind in SessionKind}
    trading_periods = meta.get("tradingPeriods")
    if isinstance(trading_periods, Mapping):
        for kind in SessionKind:
            for group in trading_periods.get(kind.value) or ():
                entries = group if isinstance(group, list) else [group]
                for entry in entries:
                    windows[kind].append((int(entry["start"]), int(entry["end"])))
    if any(windows.values()):
        return windows

    current = meta.get("currentTradingPeriod") or {}
    for kind in SessionKind:
        entry = current.get(kind.value)
        if entry:
            windows[kind].append((int(entry["start"]), int(entry["end"])))
    return windows


def _classify(ts: int, windows: Mapping[SessionKind, Sequence[_Window]]) -> SessionKind | None:
    for kind in SessionKind:
        for start, end in windows[kind]:
            if start <= ts < end:
                return kind
    return None


def _to_decimal(value: Any) -> Decimal:
    return Decimal(str(value))


class YahooChartParser:
    """Splits one day of 1-minute chart bars into pre/regular/post periods.

    Payloads that are not JSON, or whose structure cannot be walked, raise
    ParseError. An upstream error object or an empty day (weekends,
    holidays, delisted symbols) is a readable answer and becomes an
    unsuccessful ProcessingResult instead.
    """

    def parse(self, market_name: str, company_code: str, day: datetime, raw: str) -> ProcessingResult:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ParseError(f"{market_name}/{company_code}@{date_key(day)}: payload is not JSON: {exc}") from exc

        try:
            return self._parse_payload(payload, day)
        except (AttributeError, KeyError, IndexError, TypeError, ValueError, InvalidOperation) as exc:
            raise ParseError(
                f"{market_name}/{company_code}@{date_key(day)}: unexpected chart structure: {exc!r}"
            ) from exc

    def _parse_payload(self, payload: Mapping[str, Any], day: datetime) -> ProcessingResult:
        chart = payload["chart"]
        error = chart.get("error")
        if error:
            code = error.get("code", "error") if isinstance(error, Mapping) else "error"
            description = error.get("description", "") if isinstance(error, Mapping) else str(error)
            return ProcessingResult.failed(f"{code}: {description}".strip())

        results = chart.get("result") or []
        if not results:
            return ProcessingResult.failed(f"no chart result for {date_key(day)}")

        result = results[0]
        timestamps = result.get("timestamp") or []
        if not timestamps:
            return ProcessingResult.failed(f"no intraday data for {date_key(day)}")

        quote = result["indicators"]["quote"][0]
        windows = _windows_from_meta(result.get("meta") or {})

        buckets: dict[SessionKind, list[PriceObservation]] = {kind: [] for kind in SessionKind}
        dropped = 0
        for index, ts in enumerate(timestamps):
            values = [quote[field][index] for field in ("open", "high", "low", "close")]
            if any(value is None for value in values):
                dropped += 1
                continue
            kind = _classify(int(ts), windows)
            if kind is None:
                dropped += 1
                continue
            volume = quote.get("volume", [None] * len(timestamps))[index]
            buckets[kind].append(
                PriceObservation(
                    observed_at_utc=datetime.fromtimestamp(int(ts), tz=timezone.utc),
                    open_price=_to_decimal(values[0]),
                    high_price=_to_decimal(values[1]),
                    low_price=_to_decimal(values[2]),
                    close_price=_to_decimal(values[3]),
                    volume=int(volume or 0),
                )
            )
        if dropped:
            logger.debug("dropped %d incomplete or out-of-session bars for %s", dropped, date_key(day))
        if dropped == len(timestamps):
            return ProcessingResult.failed(f"no in-session bars for {date_key(day)}")

        for kind in SessionKind:
            buckets[kind].sort(key=lambda item: item.observed_at_utc)
        return ProcessingResult(
            success=True,
            pre=PricePeriod(SessionKind.PRE, tuple(buckets[SessionKind.PRE])),
            regular=PricePeriod(SessionKind.REGULAR, tuple(buckets[SessionKind.REGULAR])),
            post=PricePeriod(SessionKind.POST, tuple(buckets[SessionKind.POST])),
        )
