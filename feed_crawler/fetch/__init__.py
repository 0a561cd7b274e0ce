"""
Article fetching and extraction.

This package handles reader-service fetching with retries, the
feed-content and scrape fallbacks, and HTML text extraction.
"""

from .fetcher import (
    ContentFetcher,
    FetchedContent,
    FetchResult,
    build_reader_url,
    check_reader_health,
    fetch_reader_content,
    scrape_page,
    should_use_reader,
)
from .extractor import clean_scraped_text, extract_text

__all__ = [
    "ContentFetcher",
    "FetchedContent",
    "FetchResult",
    "build_reader_url",
    "check_reader_health",
    "fetch_reader_content",
    "scrape_page",
    "should_use_reader",
    "clean_scraped_text",
    "extract_text",
]
