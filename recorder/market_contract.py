"""Market capability and normalized intraday price types."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import enum
from typing import Protocol, Sequence


@dataclass(frozen=True)
class Company:
    """Listed entity within one market."""

    code: str
    name: str


class SessionKind(str, enum.Enum):
    """Trading session of a price period."""

    PRE = "pre"
    REGULAR = "regular"
    POST = "post"


@dataclass(frozen=True)
class PriceObservation:
    """One intraday price bar."""

    observed_at_utc: datetime
    open_price: Decimal
    high_price: Decimal
    low_price: Decimal
    close_price: Decimal
    volume: int


@dataclass(frozen=True)
class PricePeriod:
    """Time-ordered observations of one session."""

    kind: SessionKind
    observations: tuple[PriceObservation, ...] = ()

    def __len__(self) -> int:
        return len(self.observations)


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of parsing one crawl unit's raw payload."""

    success: bool
    message: str | None = None
    pre: PricePeriod = PricePeriod(SessionKind.PRE)
    regular: PricePeriod = PricePeriod(SessionKind.REGULAR)
    post: PricePeriod = PricePeriod(SessionKind.POST)

    @classmethod
    def failed(cls, message: str) -> "ProcessingResult":
        return cls(success=False, message=message)

    def periods(self) -> tuple[PricePeriod, PricePeriod, PricePeriod]:
        """Return pre, regular and post periods in persistence order."""
        return (self.pre, self.regular, self.post)


class Market(abc.ABC):
    """Upstream data source for one exchange domain.

    Instances are registered once at startup and then read concurrently by
    every scheduled task of the market, so implementations must not mutate
    shared state from these methods.
    """

    @abc.abstractmethod
    def name(self) -> str:
        """Unique market identifier."""

    @abc.abstractmethod
    def timezone(self) -> str:
        """IANA timezone name of the exchange."""

    @abc.abstractmethod
    def companies(self) -> Sequence[Company]:
        """Fetch the current listed companies."""

    @abc.abstractmethod
    def crawl(self, company_code: str, day: datetime) -> str:
        """Fetch the raw intraday payload of one company for one local day."""


class PayloadParser(Protocol):
    """Turns a raw crawl payload into a processing result."""

    def parse(self, market_name: str, company_code: str, day: datetime, raw: str) -> ProcessingResult:
        """Parse raw payload; raise ParseError only for uninterpretable input."""
