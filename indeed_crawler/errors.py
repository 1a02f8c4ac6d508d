"""Indeed Crawler — Error Taxonomy.

  ConfigError    → bad or missing input, raised before any network activity
  TransportError → timeout, connection failure, non-2xx response
  ChallengeError → bot-detection page persisted after one rotated retry
  EmptyPageError → response with no usable content
  ExtractionError → page content could not be parsed into data
  StorageError   → the record sink refused a write

Transport-level errors are recoverable per detail page and fatal per
listing page; see scraper.crawler.
"""

from __future__ import annotations

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class ConfigError(CrawlerError, ValueError):
    """Raised when configuration or search input is missing or invalid."""


class TransportError(CrawlerError):
    """Raised when a URL could not be fetched."""

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{reason}{status}: {url}")


class ChallengeError(TransportError):
    """Raised when a URL is still challenged after the rotated retry."""

    def __init__(self, url: str) -> None:
        super().__init__(url, "Challenge page persisted after retry")


class EmptyPageError(TransportError):
    """Raised when a response is empty or lacks the expected root container."""

    def __init__(self, url: str, reason: str = "Empty or malformed page") -> None:
        super().__init__(url, reason)


class StorageError(CrawlerError):
    """Raised when the sink fails to persist an item."""


class ExtractionError(CrawlerError):
    """Raised when a fetched page could not be turned into data."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Extraction failed ({reason}): {url}")
