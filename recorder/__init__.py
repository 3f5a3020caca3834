"""Multi-market intraday stock price recorder."""

from recorder.errors import ConfigError, CrawlError, ParseError, PersistError, RecorderError, ResolveError
from recorder.fan_out import BoundedFanOut, FanOutResult
from recorder.market_contract import (
    Company,
    Market,
    PayloadParser,
    PriceObservation,
    PricePeriod,
    ProcessingResult,
    SessionKind,
)
from recorder.monitor import MarketRegistry, Monitor, MonitorPlan, MonitorSettings
from recorder.run_context import RunContext, RunSummary

__all__ = [
    "BoundedFanOut",
    "Company",
    "ConfigError",
    "CrawlError",
    "FanOutResult",
    "Market",
    "MarketRegistry",
    "Monitor",
    "MonitorPlan",
    "MonitorSettings",
    "ParseError",
    "PayloadParser",
    "PersistError",
    "PriceObservation",
    "PricePeriod",
    "ProcessingResult",
    "RecorderError",
    "ResolveError",
    "RunContext",
    "RunSummary",
    "SessionKind",
]
