"""Error taxonomy for the stock recorder."""

from __future__ import annotations


class RecorderError(RuntimeError):
    """Base class for all recorder failures."""


class ConfigError(RecorderError):
    """Invalid startup configuration (for example an unknown timezone)."""


class ResolveError(RecorderError):
    """Company list unavailable from both the live source and the archive."""


class CrawlError(RecorderError):
    """Transport failure while fetching one crawl unit."""


class ParseError(RecorderError):
    """Raw payload could not be interpreted at all."""


class PersistError(RecorderError):
    """Storage failure: connection, transaction or write."""
