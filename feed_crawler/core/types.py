"""
Core data types for the feed crawler.

This module defines the fundamental data structures used throughout the pipeline:
- Source: A registered feed endpoint with crawl cadence and health counters
- FeedItem: A single entry parsed from an RSS/Atom feed
- Analysis: Sanitized classification/score for an article
- NormalizedArticle: Article ready to be posted to the ingest sink
- CrawlMetrics / BatchTotals / BatchResult: Crawl accounting

Timestamps are integer milliseconds since the Unix epoch, which is the wire
format used by the source registry and the ingest sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import time
from typing import Any
from urllib.parse import urlparse


SOURCE_TYPES = (
    "article",
    "blog",
    "news",
    "podcast",
    "video",
    "twitter",
    "newsletter",
    "wechat",
)
CONTENT_FORMATS = ("html", "markdown", "text")
SENTIMENTS = ("positive", "neutral", "negative")
LANGUAGES = ("en", "zh")


def now_ms() -> int:
    """Return the current time in epoch milliseconds."""
    return int(time.time() * 1000)


def is_http_url(url: str | None) -> bool:
    """Return True if url is an absolute http(s) URL."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass
class Source:
    """A feed endpoint registered for crawling.

    Attributes:
        id: Registry identifier
        name: Human readable source name
        url: Feed URL (RSS or Atom)
        type: One of SOURCE_TYPES
        category: Optional source category (e.g. "ai_company")
        language: Optional source language hint
        crawl_frequency: Minimum seconds between crawls
        need_crawl: Whether full-text extraction applies to this source
        last_crawled_at: Start time of the last crawl, or None if never crawled
        error_count: Consecutive-failure counter maintained by status updates
        active: Inactive sources are never scheduled
        last_success_at: Start time of the last successful crawl
    """

    id: str
    name: str
    url: str
    type: str = "article"
    category: str | None = None
    language: str | None = None
    crawl_frequency: int = 3600
    need_crawl: bool = False
    last_crawled_at: int | None = None
    error_count: int = 0
    active: bool = True
    last_success_at: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Source":
        """Build a Source from registry JSON (camelCase) or YAML (snake_case)."""

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        last_crawled = pick("lastCrawledAt", "last_crawled_at")
        last_success = pick("lastSuccessAt", "last_success_at")
        return cls(
            id=str(pick("id")),
            name=str(pick("name", default="") or ""),
            url=str(pick("url")),
            type=str(pick("type", default="article")),
            category=_optional_str(pick("category")),
            language=_optional_str(pick("language")),
            crawl_frequency=int(pick("crawlFrequency", "crawl_frequency", default=3600)),
            need_crawl=_as_bool(pick("needCrawl", "need_crawl", default=False)),
            last_crawled_at=int(last_crawled) if last_crawled is not None else None,
            error_count=max(0, int(pick("errorCount", "error_count", default=0))),
            active=_as_bool(pick("isActive", "active", default=True)),
            last_success_at=int(last_success) if last_success is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "type": self.type,
            "category": self.category,
            "language": self.language,
            "crawl_frequency": self.crawl_frequency,
            "need_crawl": self.need_crawl,
            "last_crawled_at": self.last_crawled_at,
            "error_count": self.error_count,
            "active": self.active,
            "last_success_at": self.last_success_at,
        }


@dataclass
class SourceStatusUpdate:
    """Crawl-status update sent back to the source registry.

    Attributes:
        id: Source id
        crawled_at: Crawl start time (ms)
        success: Whether the crawl is considered successful
        error_count_delta: Amount added to error_count on failure
    """

    id: str
    crawled_at: int
    success: bool
    error_count_delta: int = 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "crawledAt": self.crawled_at,
            "success": self.success,
            "errorCountDelta": self.error_count_delta,
        }


@dataclass
class FeedItem:
    """A single item parsed from an RSS 2.0 or Atom feed.

    Field names follow the RSS vocabulary; Atom entries are mapped onto them
    (id -> guid, published/updated -> pub_date, summary -> content_snippet).
    """

    title: str | None = None
    link: str | None = None
    guid: str | None = None
    pub_date: str | None = None
    iso_date: str | None = None
    content_encoded: str | None = None
    content: str | None = None
    content_snippet: str | None = None
    author: str | None = None
    categories: list[str] = field(default_factory=list)


@dataclass
class ParsedFeed:
    """Feed-level metadata plus the flat list of items."""

    format: str
    title: str | None = None
    link: str | None = None
    description: str | None = None
    items: list[FeedItem] = field(default_factory=list)


@dataclass
class Analysis:
    """Sanitized article analysis.

    Instances are produced by analyzers/sanitize.py; providers never build
    them directly, so the length caps and enums always hold.
    """

    summary: str | None = None
    one_line: str | None = None
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    importance: int = 50
    sentiment: str = "neutral"
    language: str = "en"


@dataclass
class NormalizedArticle:
    """Article ready for the ingest sink."""

    url: str
    title: str
    content: str
    content_format: str
    published_at: int
    crawled_at: int
    analysis: Analysis
    source_id: str
    source_name: str
    source_url: str | None = None
    source_type: str | None = None
    source_category: str | None = None
    source_language: str | None = None

    @classmethod
    def create(
        cls,
        source: Source,
        url: str,
        title: str,
        content: str,
        content_format: str,
        published_at: int,
        analysis: Analysis,
        crawled_at: int | None = None,
    ) -> "NormalizedArticle":
        """Build an article, enforcing the url/title invariant.

        Raises:
            ValueError: If title is empty or url is not an absolute http(s) URL
        """
        title = (title or "").strip()
        if not title:
            raise ValueError("Article title is empty")
        if not is_http_url(url):
            raise ValueError(f"Article url is not an absolute http(s) URL: {url!r}")
        if content_format not in CONTENT_FORMATS:
            content_format = "text"
        return cls(
            url=url,
            title=title,
            content=content,
            content_format=content_format,
            published_at=published_at,
            crawled_at=crawled_at if crawled_at is not None else now_ms(),
            analysis=analysis,
            source_id=source.id,
            source_name=source.name,
            source_url=source.url,
            source_type=source.type,
            source_category=source.category,
            source_language=source.language,
        )

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON body expected by the ingest sink."""
        return {
            "url": self.url,
            "title": self.title,
            "sourceId": self.source_id,
            "sourceName": self.source_name,
            "sourceUrl": self.source_url,
            "sourceType": self.source_type,
            "sourceCategory": self.source_category,
            "sourceLanguage": self.source_language,
            "publishedAt": self.published_at,
            "crawledAt": self.crawled_at,
            "summary": self.analysis.summary,
            "oneLine": self.analysis.one_line,
            "content": self.content,
            "contentFormat": self.content_format,
            "category": self.analysis.category,
            "tags": list(self.analysis.tags),
            "importance": self.analysis.importance,
            "sentiment": self.analysis.sentiment,
            "language": self.analysis.language,
        }


@dataclass
class ItemOutcome:
    """Classification of a single feed item after crawling.

    Attributes:
        status: "ok", "skipped" or "failed"
        url: Canonical item URL, if one could be extracted
        reason: Machine-readable reason for skips/failures
        error: Diagnostic text for failures
    """

    status: str
    url: str | None = None
    reason: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, url: str) -> "ItemOutcome":
        return cls(status="ok", url=url)

    @classmethod
    def skipped(cls, url: str | None, reason: str) -> "ItemOutcome":
        return cls(status="skipped", url=url, reason=reason)

    @classmethod
    def failed(cls, url: str | None, reason: str, error: str | None = None) -> "ItemOutcome":
        return cls(status="failed", url=url, reason=reason, error=error)


@dataclass
class CrawlMetrics:
    """Per-source crawl counters.

    Attributes:
        ok: Items ingested
        skipped: Duplicates and items missing url/title
        failed: Items that errored (or 1 for a source-level failure)
        total: Items considered after filter/sort
        duration_ms: Wall time of the source crawl
        error: Source-level error message, if the feed itself failed
    """

    ok: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    duration_ms: int = 0
    error: str | None = None

    def record(self, outcome: ItemOutcome) -> None:
        if outcome.status == "ok":
            self.ok += 1
        elif outcome.status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1


@dataclass
class BatchTotals:
    """Summed counters across every source in a batch."""

    ok: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0

    def add(self, metrics: CrawlMetrics) -> None:
        self.ok += metrics.ok
        self.skipped += metrics.skipped
        self.failed += metrics.failed
        self.total += metrics.total

    def as_dict(self) -> dict[str, int]:
        return {"ok": self.ok, "skipped": self.skipped, "failed": self.failed, "total": self.total}


class CrawlerHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class BatchResult:
    """Outcome of one orchestrated batch."""

    metrics: dict[str, CrawlMetrics] = field(default_factory=dict)
    totals: BatchTotals = field(default_factory=BatchTotals)
    sources: list[Source] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def health(self) -> CrawlerHealth:
        """Unhealthy if every source failed, degraded if anything failed."""
        if not self.metrics:
            return CrawlerHealth.HEALTHY
        failed_sources = sum(1 for m in self.metrics.values() if m.error is not None)
        if failed_sources == len(self.metrics):
            return CrawlerHealth.UNHEALTHY
        if failed_sources or self.totals.failed:
            return CrawlerHealth.DEGRADED
        return CrawlerHealth.HEALTHY


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
