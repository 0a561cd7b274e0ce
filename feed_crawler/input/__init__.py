"""
Feed input parsing.

This package downloads RSS/Atom feeds and normalizes their entries.
"""

from .feed_parser import (
    extract_content,
    extract_published_at,
    extract_url,
    fetch_feed,
    filter_and_sort_items,
    guess_content_format,
    is_valid_item,
    parse_feed,
    parse_feed_xml,
)

__all__ = [
    "fetch_feed",
    "parse_feed",
    "parse_feed_xml",
    "extract_url",
    "extract_published_at",
    "extract_content",
    "guess_content_format",
    "is_valid_item",
    "filter_and_sort_items",
]
