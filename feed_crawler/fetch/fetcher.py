"""
Full-text content fetching through a reader service with retry and fallbacks.

The reader service renders a page and returns markdown when its URL prefix
is followed by the target URL without its scheme. Failures are classified
into FetchError values; retryable ones (network, timeout, 429, 5xx) are
retried with backoff, anything else falls through immediately to the
fallbacks: the feed's own content, then a direct scrape of the page.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
from typing import Awaitable, Callable

import httpx

from ..config import ExtractConfig, FetchConfig
from ..core.errors import FetchError, classify_status, is_retryable, retry_delay
from ..input.feed_parser import guess_content_format
from ..utils.logging import log_event
from .extractor import clean_scraped_text, extract_text


READER_SOURCE_TYPES = frozenset({"article", "blog", "news", "newsletter", "wechat"})
READER_ACCEPT = "text/plain, text/markdown, text/html"

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class FetchResult:
    """Result of a single reader request.

    Either text will be populated (success) or error will be populated (failure),
    but never both.

    Attributes:
        url: The target URL (not the reader URL)
        status_code: HTTP status code, 0 for network errors, 408 for timeouts
        text: The response body, or None on error
        error: Classified failure, None on success
    """

    url: str
    status_code: int
    text: str | None
    error: FetchError | None


@dataclass
class FetchedContent:
    """Content chosen for an item after the reader/fallback chain.

    Attributes:
        content: Article body, empty if every source failed
        content_format: "markdown", "html" or "text"
        origin: "reader", "rss", "scrape", or "none"
        attempts: Number of reader requests made
        error: Last reader failure, if the reader did not succeed
    """

    content: str
    content_format: str
    origin: str
    attempts: int = 0
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return bool(self.content)


def should_use_reader(source_type: str, need_crawl: bool) -> bool:
    """Only opted-in text-oriented sources go through the reader service."""
    return bool(need_crawl) and source_type in READER_SOURCE_TYPES


def build_reader_url(prefix: str, url: str, fmt: str = "markdown") -> str:
    """Build the reader URL: prefix + target with its scheme stripped."""
    target = url
    for scheme in ("https://", "http://"):
        if target.lower().startswith(scheme):
            target = target[len(scheme) :]
            break
    reader_url = f"{prefix}{target}"
    if fmt and fmt != "markdown":
        reader_url = f"{reader_url}?format={fmt}"
    return reader_url


def is_error_content(text: str) -> bool:
    """Detect reader error banners and JavaScript/anti-bot placeholder pages."""
    if "Jina AI" in text and "error" in text.lower():
        return True
    lowered = text.lower()
    if "javascript is disabled" in lowered or "please enable javascript" in lowered:
        return True
    if "enable javascript to continue" in lowered:
        return True
    if "verifying you are human" in lowered:
        return True
    if "checking your browser before accessing" in lowered:
        return True
    # Cloudflare challenge pages are short; real articles behind Cloudflare are not
    if "ray id:" in lowered and len(text.strip()) < 1000:
        return True
    return False


async def fetch_reader_content(
    url: str,
    cfg: FetchConfig,
    client: httpx.AsyncClient | None = None,
) -> FetchResult:
    """Fetch a page through the reader service once, without retries."""
    reader_url = build_reader_url(cfg.reader_prefix, url)
    headers = {"User-Agent": cfg.user_agent, "Accept": READER_ACCEPT}
    try:
        status_code, body = await _get(
            client, reader_url, headers, cfg.reader_timeout_seconds, cfg.trust_env, cfg.max_content_bytes
        )
    except ContentTooLarge as exc:
        # 413 is not retryable, so oversize pages go straight to the fallbacks
        return _failed(classify_status(413, url, f"{exc} for {url}"))
    except httpx.TimeoutException as exc:
        return _failed(classify_status(408, url, f"Timeout after {cfg.reader_timeout_seconds}s: {exc}"))
    except httpx.HTTPError as exc:
        return _failed(classify_status(0, url, f"{type(exc).__name__}: {exc}"))

    if not 200 <= status_code < 300:
        return _failed(classify_status(status_code, url))

    text = body.strip()
    if not text:
        return _failed(classify_status(status_code, url, f"Empty reader response for {url}"))
    if is_error_content(text):
        return _failed(classify_status(status_code, url, f"Reader returned an error page for {url}"))
    return FetchResult(url=url, status_code=status_code, text=text, error=None)


async def scrape_page(
    url: str,
    fetch_cfg: FetchConfig,
    extract_cfg: ExtractConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Fetch the page directly and extract plain text; empty string on any failure."""
    extract_cfg = extract_cfg or ExtractConfig()
    headers = {"User-Agent": fetch_cfg.user_agent, "Accept": "text/html"}
    try:
        status_code, body = await _get(
            client, url, headers, fetch_cfg.scrape_timeout_seconds, fetch_cfg.trust_env, fetch_cfg.max_content_bytes
        )
    except (ContentTooLarge, httpx.HTTPError):
        return ""
    if not 200 <= status_code < 300:
        return ""
    text = extract_text(body, extract_cfg.primary, extract_cfg.fallback)
    return clean_scraped_text(text, extract_cfg.max_chars)


async def check_reader_health(
    prefix: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 5.0,
) -> bool:
    """HEAD request to the reader service; healthy if it answers below 500."""
    check_url = build_reader_url(prefix, "https://example.com")
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                resp = await own_client.head(check_url)
        else:
            resp = await client.head(check_url, timeout=timeout)
    except httpx.HTTPError:
        return False
    return resp.status_code < 500


class ContentFetcher:
    """Reader fetch with classified retries, then feed content, then scrape."""

    def __init__(
        self,
        fetch_cfg: FetchConfig,
        extract_cfg: ExtractConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ):
        self.fetch_cfg = fetch_cfg
        self.extract_cfg = extract_cfg or ExtractConfig()
        self.client = client
        self.sleep = sleep
        self.rng = rng
        self.logger = logger

    async def fetch(self, url: str, rss_content: str = "") -> FetchedContent:
        max_retries = max(0, self.fetch_cfg.max_retries)
        last_error: FetchError | None = None
        attempts = 0

        for attempt in range(max_retries + 1):
            attempts += 1
            result = await fetch_reader_content(url, self.fetch_cfg, client=self.client)
            if result.error is None and result.text:
                return FetchedContent(
                    content=result.text,
                    content_format="markdown",
                    origin="reader",
                    attempts=attempts,
                )

            last_error = result.error
            if last_error is None or not is_retryable(last_error):
                break
            if attempt < max_retries:
                delay = retry_delay(last_error, attempt, self.rng)
                log_event(
                    self.logger,
                    "Reader fetch failed, retrying",
                    level=logging.WARNING,
                    event="reader_retry",
                    url=url,
                    status_code=last_error.status_code,
                    attempt=attempt + 1,
                    delay_seconds=round(delay, 2),
                )
                await self.sleep(delay)

        rss_text = (rss_content or "").strip()
        if rss_text:
            self._log_fallback(url, "rss", last_error)
            return FetchedContent(
                content=rss_text,
                content_format=guess_content_format(rss_text),
                origin="rss",
                attempts=attempts,
                error=last_error,
            )

        scraped = await scrape_page(url, self.fetch_cfg, self.extract_cfg, client=self.client)
        if scraped:
            self._log_fallback(url, "scrape", last_error)
            return FetchedContent(
                content=scraped,
                content_format="text",
                origin="scrape",
                attempts=attempts,
                error=last_error,
            )

        return FetchedContent(
            content="",
            content_format="text",
            origin="none",
            attempts=attempts,
            error=last_error,
        )

    def _log_fallback(self, url: str, origin: str, error: FetchError | None) -> None:
        log_event(
            self.logger,
            "Reader fetch failed, using fallback content",
            event="fetch_fallback",
            url=url,
            origin=origin,
            status_code=error.status_code if error else None,
            error=str(error) if error else None,
        )


def _failed(error: FetchError) -> FetchResult:
    return FetchResult(url=error.url, status_code=error.status_code, text=None, error=error)


class ContentTooLarge(Exception):
    """Response body exceeded the configured size cap."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Content too large: {size} bytes (max {limit})")
        self.size = size
        self.limit = limit


async def _get(
    client: httpx.AsyncClient | None,
    url: str,
    headers: dict[str, str],
    timeout: float,
    trust_env: bool,
    max_bytes: int,
) -> tuple[int, str]:
    """GET a URL and return (status, decoded body), reading at most max_bytes.

    Raises:
        ContentTooLarge: If Content-Length or the streamed body exceeds max_bytes
    """
    if client is not None:
        return await _read_limited(client, url, headers, timeout, max_bytes)
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, trust_env=trust_env) as own_client:
        return await _read_limited(own_client, url, headers, timeout, max_bytes)


async def _read_limited(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    timeout: float,
    max_bytes: int,
) -> tuple[int, str]:
    async with client.stream("GET", url, headers=headers, timeout=timeout, follow_redirects=True) as resp:
        declared = resp.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > max_bytes:
            raise ContentTooLarge(int(declared), max_bytes)
        body = bytearray()
        async for chunk in resp.aiter_bytes():
            body.extend(chunk)
            if len(body) > max_bytes:
                raise ContentTooLarge(len(body), max_bytes)
        return resp.status_code, _decode(bytes(body), resp.charset_encoding)


def _decode(body: bytes, charset: str | None) -> str:
    try:
        return body.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")
