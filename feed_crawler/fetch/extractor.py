"""
HTML content extraction with multiple fallback strategies.

This module provides a chain of extraction methods used by the
direct-scrape fallback:
1. bs4: Strip boilerplate blocks and tags with BeautifulSoup (default)
2. trafilatura: Purpose-built article content extraction
3. readability: Mozilla's readability algorithm
"""

from __future__ import annotations

import re
from typing import Callable

from bs4 import BeautifulSoup
import trafilatura
from readability import Document


MAX_SCRAPED_CHARS = 10000

_BOILERPLATE_TAGS = ["script", "style", "nav", "header", "footer", "aside", "noscript"]
_WS_RE = re.compile(r"\s+")


def extract_text(html: str, primary: str = "bs4", fallback: list[str] | None = None) -> str | None:
    """Extract plain text from HTML using a chain of extractors.

    Tries each extraction method in order until one produces non-empty
    output.

    Args:
        html: The HTML content to extract text from
        primary: Name of the primary extraction method to try first
        fallback: List of fallback method names to try if primary fails

    Returns:
        Extracted plain text with leading/trailing whitespace stripped,
        or None if all methods fail

    Examples:
        >>> extract_text(html, "bs4", ["trafilatura"])
        "Article content here..."
    """
    if not html:
        return None
    order = [primary] + [name for name in (fallback or []) if name != primary]
    for method in order:
        extractor = _get_extractor(method)
        if not extractor:
            continue
        text = extractor(html)
        if text:
            return text.strip()
    return None


def clean_scraped_text(text: str | None, max_chars: int = MAX_SCRAPED_CHARS) -> str:
    """Collapse whitespace and cap the text length."""
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()[:max_chars]


def _get_extractor(name: str) -> Callable[[str], str | None] | None:
    if name == "bs4":
        return _extract_bs4
    if name == "trafilatura":
        return _extract_trafilatura
    if name == "readability":
        return _extract_readability
    return None


def _extract_bs4(html: str) -> str | None:
    """Remove script/style/navigation blocks and return the remaining text.

    Entities are decoded by the parser.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    text = soup.get_text(separator=" ")
    cleaned = _WS_RE.sub(" ", text).strip()
    return cleaned or None


def _extract_trafilatura(html: str) -> str | None:
    return trafilatura.extract(html)


def _extract_readability(html: str) -> str | None:
    doc = Document(html)
    # readability returns simplified HTML; bs4 turns it into text
    return _extract_bs4(doc.summary())
