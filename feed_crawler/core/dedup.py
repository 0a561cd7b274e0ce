"""
Article deduplication using URL normalization, title similarity and content fingerprints.

This module removes duplicate articles based on:
1. Normalized URL matches (tracking parameters and fragments stripped)
2. Title similarity (Jaccard over significant words, or rapidfuzz ratio)
3. Content fingerprints (sampled word 3-grams) for syndicated copies

The authoritative duplicate gate is the URL-exact existence check against
the source registry; the helpers here are the cheap batch-local pass.
"""

from __future__ import annotations

import hashlib
import re
from typing import Callable, Iterable, TypeVar
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup
from rapidfuzz import fuzz


T = TypeVar("T")

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "msclkid",
        "_ga",
        "ref",
        "ref_source",
        "referrer",
    }
)

FINGERPRINT_SAMPLE_SIZE = 100
# Bodies shorter than this ("Comments", "Read more") carry no signal for near-dup checks
FINGERPRINT_MIN_WORDS = 20
DEFAULT_TITLE_THRESHOLD = 0.7

_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_url(url: str) -> str:
    """Strip tracking parameters and the fragment from a URL.

    Non-tracking query parameters are kept in their original order.
    Input that cannot be parsed as an absolute URL is returned unchanged.

    Examples:
        >>> normalize_url("https://a.com/x?utm_source=y&ref=z#frag")
        "https://a.com/x"
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url

    params = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    query = urlencode(params)
    return urlunparse(parsed._replace(query=query, fragment=""))


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith("utm_")


def generate_content_hash(url: str, title: str) -> str:
    """SHA-256 hex digest over the normalized URL and the normalized title."""
    normalized_title = _WS_RE.sub(" ", (title or "").lower()).strip()
    payload = f"{normalize_url(url)}|{normalized_title}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def id_from_url(url: str) -> str:
    """Article id used by the ingest sink: 16 hex chars of the normalized URL hash."""
    return hashlib.sha256(normalize_url(url).encode("utf-8")).hexdigest()[:16]


def are_urls_similar(url_a: str, url_b: str) -> bool:
    return normalize_url(url_a) == normalize_url(url_b)


def content_fingerprint(content: str) -> str:
    """Compute a 16-hex-char fingerprint over sampled word 3-grams.

    The text is lowercased, punctuation is replaced by spaces and whitespace
    collapsed. Overlapping 3-grams are sampled at a fixed step so that
    long documents hash a bounded number of shingles.
    """
    words = _fingerprint_words(content)
    shingles = [" ".join(words[i : i + 3]) for i in range(len(words) - 2)]

    sample_size = min(len(shingles), FINGERPRINT_SAMPLE_SIZE)
    step = max(1, len(shingles) // sample_size) if sample_size else 1
    sampled = [shingle for idx, shingle in enumerate(shingles) if idx % step == 0]

    return hashlib.sha256("|".join(sampled).encode("utf-8")).hexdigest()[:16]


def is_fingerprintable(content: str) -> bool:
    """True when content has enough words for its fingerprint to mean anything."""
    return len(_fingerprint_words(content)) >= FINGERPRINT_MIN_WORDS


def are_near_duplicates(content_a: str, content_b: str) -> bool:
    if not (is_fingerprintable(content_a) and is_fingerprintable(content_b)):
        return False
    return content_fingerprint(content_a) == content_fingerprint(content_b)


def _fingerprint_words(content: str) -> list[str]:
    normalized = _WS_RE.sub(" ", _PUNCT_RE.sub(" ", (content or "").lower())).strip()
    return normalized.split(" ") if normalized else []


def text_similarity(text_a: str, text_b: str) -> float:
    """Jaccard similarity over lowercased words longer than 3 characters.

    Returns 0.0 when either side has no significant words.
    """
    words_a = _significant_words(text_a)
    words_b = _significant_words(text_b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def _significant_words(text: str) -> set[str]:
    return {word for word in (text or "").lower().split() if len(word) > 3}


def fuzzy_title_similarity(title_a: str, title_b: str) -> float:
    """Levenshtein-based similarity in [0, 1] using rapidfuzz."""
    if not title_a or not title_b:
        return 0.0
    return fuzz.ratio(title_a.lower(), title_b.lower()) / 100.0


def are_titles_similar(
    title_a: str,
    title_b: str,
    threshold: float = DEFAULT_TITLE_THRESHOLD,
    method: str = "jaccard",
) -> bool:
    """Return True if the titles reach the similarity threshold.

    Args:
        title_a: First title
        title_b: Second title
        threshold: Minimum similarity (0-1) to consider titles duplicates
        method: "jaccard" (word overlap) or "fuzzy" (rapidfuzz ratio)
    """
    return _title_measure(method)(title_a, title_b) >= threshold


def _title_measure(method: str) -> Callable[[str, str], float]:
    if method == "fuzzy":
        return fuzzy_title_similarity
    return text_similarity


def extract_canonical_url(html: str, base_url: str) -> str | None:
    """Return the absolute <link rel="canonical"> target of a page, if any."""
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    for link in soup.find_all("link", href=True):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "canonical" in [value.lower() for value in rel]:
            return urljoin(base_url, link["href"].strip())
    return None


def dedup_by_url(items: Iterable[T], get_url: Callable[[T], str]) -> list[T]:
    """Keep the first item for each normalized URL, preserving order."""
    seen: set[str] = set()
    kept: list[T] = []
    for item in items:
        key = normalize_url(get_url(item))
        if key in seen:
            continue
        seen.add(key)
        kept.append(item)
    return kept


def dedup_by_title(
    items: Iterable[T],
    get_title: Callable[[T], str],
    threshold: float = DEFAULT_TITLE_THRESHOLD,
    method: str = "jaccard",
) -> list[T]:
    """Drop items whose title is similar to an already kept title."""
    kept: list[T] = []
    titles: list[str] = []
    for item in items:
        title = get_title(item)
        if any(are_titles_similar(title, existing, threshold, method) for existing in titles):
            continue
        titles.append(title)
        kept.append(item)
    return kept


def dedup_near_duplicates(items: Iterable[T], get_content: Callable[[T], str]) -> list[T]:
    """Drop items whose content fingerprint was already seen.

    Items too short to fingerprint are always kept.
    """
    seen: set[str] = set()
    kept: list[T] = []
    for item in items:
        content = get_content(item)
        if not is_fingerprintable(content):
            kept.append(item)
            continue
        fingerprint = content_fingerprint(content)
        if fingerprint in seen:
            continue
        seen.add(fingerprint)
        kept.append(item)
    return kept


class BatchDeduplicator:
    """Batch-local seen-sets shared by every worker of one batch run.

    claim_url and claim_content check and mark in a single synchronous call,
    so concurrent asyncio workers cannot both claim the same key.
    """

    def __init__(
        self,
        near_duplicates: bool = True,
        title_threshold: float = DEFAULT_TITLE_THRESHOLD,
        title_method: str = "jaccard",
        content_fingerprints: bool = True,
    ):
        self.near_duplicates = near_duplicates
        self.title_threshold = title_threshold
        self.title_method = title_method
        self.content_fingerprints = content_fingerprints
        self._urls: set[str] = set()
        self._titles: list[str] = []
        self._fingerprints: set[str] = set()

    def claim_url(self, url: str, title: str) -> str | None:
        """Mark url/title as seen; return a skip reason if already claimed."""
        key = normalize_url(url)
        if key in self._urls:
            return "duplicate_url"
        if self.near_duplicates and title:
            for existing in self._titles:
                if are_titles_similar(title, existing, self.title_threshold, self.title_method):
                    return "duplicate_title"
        self._urls.add(key)
        if title:
            self._titles.append(title)
        return None

    def claim_content(self, content: str) -> str | None:
        """Mark a content fingerprint as seen; return a skip reason if already claimed.

        Content below FINGERPRINT_MIN_WORDS is never claimed.
        """
        if not (self.near_duplicates and self.content_fingerprints) or not is_fingerprintable(content):
            return None
        fingerprint = content_fingerprint(content)
        if fingerprint in self._fingerprints:
            return "duplicate_content"
        self._fingerprints.add(fingerprint)
        return None

    @property
    def seen_urls(self) -> int:
        return len(self._urls)
