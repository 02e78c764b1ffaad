"""Exception hierarchy shared by the crawler modules."""
from __future__ import annotations

from typing import Optional


class ScraperError(Exception):
    """Base class for every error raised by the crawler."""


class ConfigurationError(ScraperError):
    """A configuration value is missing or malformed."""


class FetchError(ScraperError):
    """A page could not be fetched or did not reach the expected state."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class NavigationTimeout(FetchError):
    """Navigation did not finish within the timeout."""


class NavigationFailed(FetchError):
    """Navigation failed for a reason other than a timeout (network, DNS, ...)."""


class SelectorNotFound(FetchError):
    """A required selector never appeared on the page."""

    def __init__(self, selector: str, url: Optional[str] = None, message: Optional[str] = None):
        super().__init__(message or f"Selector not found: {selector}", url)
        self.selector = selector


class ParseFailure(ScraperError):
    """A numeric field could not be parsed."""


class IOFailure(ScraperError):
    """Reading or writing a persisted list or an output sink failed."""
