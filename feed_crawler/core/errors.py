"""
Error taxonomy for the crawl pipeline.

Exceptions are used only where a failure aborts a unit of work (a feed, a
provider attempt, a config load). Reader fetch failures are plain values so
the retry loop can inspect them without exception-driven control flow.
"""

from __future__ import annotations

from dataclasses import dataclass
import random


RATE_LIMIT_DELAY_SECONDS = 60.0
SERVER_DELAY_BASE_SECONDS = 5.0
SERVER_DELAY_JITTER_SECONDS = 25.0
DEFAULT_DELAY_SECONDS = 10.0


class CrawlerError(Exception):
    """Base class for crawler errors."""


class FeedError(CrawlerError):
    """Feed could not be fetched or parsed. Fails the whole source."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class AnalysisError(CrawlerError):
    """A provider call or its response parsing failed."""


class ConfigError(CrawlerError):
    """Configuration is missing or invalid."""


@dataclass(frozen=True)
class FetchError:
    """Classified reader fetch failure.

    Attributes:
        status_code: 0 for network errors, 408 for timeouts, otherwise HTTP status
        url: The target URL (not the reader URL)
        message: Diagnostic text
    """

    status_code: int
    url: str
    message: str = ""

    def __str__(self) -> str:
        return self.message or f"Fetch failed with status {self.status_code}: {self.url}"


def classify_status(status_code: int, url: str, message: str = "") -> FetchError:
    """Build a FetchError for a status code (0 = network, 408 = timeout)."""
    if not message:
        if status_code == 0:
            message = f"Network error fetching {url}"
        elif status_code == 408:
            message = f"Timeout fetching {url}"
        else:
            message = f"Fetch failed: {status_code} for {url}"
    return FetchError(status_code=status_code, url=url, message=message)


def is_retryable(err: FetchError) -> bool:
    """Network errors, timeouts, rate limits and 5xx are retryable."""
    code = err.status_code
    return code in (0, 408, 429) or 500 <= code < 600


def retry_delay(err: FetchError, attempt: int = 0, rng: random.Random | None = None) -> float:
    """Seconds to wait before retrying after the given (0-based) attempt.

    429 waits a fixed 60 s; timeouts, network and server errors wait
    5-30 s of jitter. Either base is scaled linearly by attempt + 1.
    """
    code = err.status_code
    if code == 429:
        base = RATE_LIMIT_DELAY_SECONDS
    elif code in (0, 408) or code >= 500:
        uniform = (rng or random).uniform
        base = SERVER_DELAY_BASE_SECONDS + uniform(0, SERVER_DELAY_JITTER_SECONDS)
    else:
        base = DEFAULT_DELAY_SECONDS
    return base * (attempt + 1)
