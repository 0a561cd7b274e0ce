"""
Core domain models and business logic.

This package contains data types, the error taxonomy and deduplication
logic that is independent of any specific pipeline stage.
"""

from .types import (
    Analysis,
    BatchResult,
    BatchTotals,
    CrawlMetrics,
    FeedItem,
    ItemOutcome,
    NormalizedArticle,
    ParsedFeed,
    Source,
    SourceStatusUpdate,
    now_ms,
)
from .errors import (
    AnalysisError,
    ConfigError,
    CrawlerError,
    FeedError,
    FetchError,
    is_retryable,
    retry_delay,
)
from .dedup import BatchDeduplicator, content_fingerprint, normalize_url
from .metrics import MetricsAggregator

__all__ = [
    "Analysis",
    "BatchResult",
    "BatchTotals",
    "CrawlMetrics",
    "FeedItem",
    "ItemOutcome",
    "NormalizedArticle",
    "ParsedFeed",
    "Source",
    "SourceStatusUpdate",
    "now_ms",
    "AnalysisError",
    "ConfigError",
    "CrawlerError",
    "FeedError",
    "FetchError",
    "is_retryable",
    "retry_delay",
    "BatchDeduplicator",
    "content_fingerprint",
    "normalize_url",
    "MetricsAggregator",
]
