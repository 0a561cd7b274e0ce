"""
RSS 2.0 / RDF and Atom feed parsing.

Feeds are downloaded with httpx and parsed with feedparser. Entries are
mapped onto FeedItem using RSS vocabulary so the rest of the pipeline does
not care which syndication format a source publishes.
"""

from __future__ import annotations

import asyncio
import calendar
from datetime import datetime, timedelta, timezone
import logging
import re
from typing import Any, Awaitable, Callable

import feedparser
import httpx
from dateutil.parser import parse as parse_date

from ..config import DEFAULT_USER_AGENT
from ..core.errors import FeedError, classify_status, is_retryable
from ..core.types import FeedItem, ParsedFeed, is_http_url, now_ms
from ..utils.logging import log_event


FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"

SleepFn = Callable[[float], Awaitable[None]]

# Common timezone abbreviations seen in RFC 822 pubDate values
TZINFOS = {
    "EST": timezone(timedelta(hours=-5)),
    "EDT": timezone(timedelta(hours=-4)),
    "CST": timezone(timedelta(hours=-6)),
    "CDT": timezone(timedelta(hours=-5)),
    "MST": timezone(timedelta(hours=-7)),
    "MDT": timezone(timedelta(hours=-6)),
    "PST": timezone(timedelta(hours=-8)),
    "PDT": timezone(timedelta(hours=-7)),
    "GMT": timezone.utc,
    "UTC": timezone.utc,
    "BST": timezone(timedelta(hours=1)),
}

_HTML_TAG_RE = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)
_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s", re.MULTILINE)
_STRIP_TAGS_RE = re.compile(r"<[^>]+>")


async def fetch_feed(
    url: str,
    timeout: float = 30.0,
    user_agent: str = DEFAULT_USER_AGENT,
    client: httpx.AsyncClient | None = None,
) -> bytes:
    """Download a feed document as raw bytes.

    The body is not decoded here; feedparser reads the encoding from the
    XML declaration.

    Raises:
        FeedError: On network failure or a non-2xx response
    """
    headers = {"User-Agent": user_agent, "Accept": FEED_ACCEPT}
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own_client:
                resp = await own_client.get(url, headers=headers)
        else:
            resp = await client.get(url, headers=headers, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise FeedError(f"Timeout fetching feed {url}", url=url, status_code=408) from exc
    except httpx.HTTPError as exc:
        raise FeedError(f"Failed to fetch feed {url}: {exc}", url=url, status_code=0) from exc

    if not 200 <= resp.status_code < 300:
        raise FeedError(
            f"Failed to fetch RSS: {resp.status_code} {resp.reason_phrase}",
            url=url,
            status_code=resp.status_code,
        )
    return resp.content


async def fetch_feed_with_retry(
    url: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    timeout: float = 30.0,
    user_agent: str = DEFAULT_USER_AGENT,
    client: httpx.AsyncClient | None = None,
    sleep: SleepFn = asyncio.sleep,
    logger: logging.Logger | None = None,
) -> bytes:
    """Download a feed, retrying transient failures with exponential backoff.

    Network errors, timeouts, 429 and 5xx are retried after base_delay,
    then 2x, then 4x. Other statuses fail on the first attempt.

    Raises:
        FeedError: When the last attempt fails or the failure is not retryable
    """
    attempt = 0
    while True:
        try:
            return await fetch_feed(url, timeout=timeout, user_agent=user_agent, client=client)
        except FeedError as exc:
            attempt += 1
            error = classify_status(exc.status_code or 0, url, str(exc))
            if attempt >= max_attempts or not is_retryable(error):
                raise
            delay = base_delay * 2 ** (attempt - 1)
            log_event(
                logger,
                "Feed fetch failed, retrying",
                level=logging.WARNING,
                event="feed_retry",
                url=url,
                status_code=error.status_code,
                attempt=attempt,
                delay_seconds=delay,
            )
            await sleep(delay)


async def parse_feed(
    source: str | bytes,
    timeout: float = 30.0,
    user_agent: str = DEFAULT_USER_AGENT,
    client: httpx.AsyncClient | None = None,
    max_attempts: int = 1,
    retry_base_seconds: float = 1.0,
    sleep: SleepFn = asyncio.sleep,
    logger: logging.Logger | None = None,
) -> ParsedFeed:
    """Parse a feed given either its URL or its raw XML (str or bytes)."""
    if isinstance(source, str) and is_http_url(source.strip()):
        xml: str | bytes = await fetch_feed_with_retry(
            source.strip(),
            max_attempts=max_attempts,
            base_delay=retry_base_seconds,
            timeout=timeout,
            user_agent=user_agent,
            client=client,
            sleep=sleep,
            logger=logger,
        )
    else:
        xml = source
    return parse_feed_xml(xml)


def parse_feed_xml(xml: str | bytes) -> ParsedFeed:
    """Parse RSS/RDF or Atom XML into a ParsedFeed.

    Raises:
        FeedError: If the document is not a recognizable feed
    """
    if not xml or not xml.strip():
        raise FeedError("Empty feed document")

    parsed = feedparser.parse(xml)
    version = parsed.get("version") or ""
    if version.startswith("rss"):
        fmt = "rss"
    elif version.startswith("atom"):
        fmt = "atom"
    else:
        detail = parsed.get("bozo_exception")
        message = "Unknown feed format"
        if detail is not None:
            message = f"{message}: {detail}"
        raise FeedError(message)

    channel = parsed.get("feed", {})
    items = [_entry_to_item(entry, fmt) for entry in parsed.get("entries", [])]
    return ParsedFeed(
        format=fmt,
        title=_text(channel.get("title")),
        link=_text(channel.get("link")),
        description=_text(channel.get("subtitle") or channel.get("description")),
        items=items,
    )


def _entry_to_item(entry: Any, fmt: str) -> FeedItem:
    contents = entry.get("content") or []
    body = _text(contents[0].get("value")) if contents else None
    summary = _text(entry.get("summary"))

    if fmt == "rss":
        content_encoded = body
        content = summary
        snippet = _strip_tags(summary) if summary else None
    else:
        content_encoded = None
        content = body
        snippet = summary

    pub_date = _text(entry.get("published") or entry.get("updated"))
    struct = entry.get("published_parsed") or entry.get("updated_parsed")
    iso_date = None
    if struct is not None:
        iso_date = datetime.fromtimestamp(calendar.timegm(struct), tz=timezone.utc).isoformat()

    categories = []
    for tag in entry.get("tags") or []:
        term = _text(tag.get("term"))
        if term:
            categories.append(term)

    return FeedItem(
        title=_text(entry.get("title")),
        link=_text(entry.get("link")),
        guid=_text(entry.get("id")),
        pub_date=pub_date,
        iso_date=iso_date,
        content_encoded=content_encoded,
        content=content,
        content_snippet=snippet,
        author=_text(entry.get("author")),
        categories=categories,
    )


def extract_url(item: FeedItem) -> str | None:
    """Return the item link, else its guid, if it is an absolute http(s) URL."""
    for candidate in (item.link, item.guid):
        if candidate and is_http_url(candidate.strip()):
            return candidate.strip()
    return None


def extract_published_at(item: FeedItem, now: int | None = None) -> int:
    """Published time in epoch ms from iso_date, then pub_date, else now."""
    for raw in (item.iso_date, item.pub_date):
        if not raw:
            continue
        try:
            dt = parse_date(raw, tzinfos=TZINFOS)
        except (ValueError, OverflowError):
            continue
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return now if now is not None else now_ms()


def extract_content(item: FeedItem) -> str:
    """Best available body: encoded content, then content, then snippet."""
    for candidate in (item.content_encoded, item.content, item.content_snippet):
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


def guess_content_format(content: str) -> str:
    """Guess whether content is html, markdown or plain text."""
    if not content:
        return "text"
    if _HTML_TAG_RE.search(content):
        return "html"
    if "\n" in content and _MARKDOWN_HEADING_RE.search(content):
        return "markdown"
    return "text"


def is_valid_item(item: FeedItem) -> bool:
    return bool(extract_url(item)) and bool(item.title and item.title.strip())


def filter_and_sort_items(
    items: list[FeedItem],
    max_items: int,
    max_age_days: int = 30,
    now: int | None = None,
) -> list[FeedItem]:
    """Keep valid, recent items, newest first, capped at max_items."""
    current = now if now is not None else now_ms()
    cutoff = current - max_age_days * 24 * 60 * 60 * 1000

    dated: list[tuple[int, FeedItem]] = []
    for item in items:
        if not is_valid_item(item):
            continue
        published = extract_published_at(item, now=current)
        if published <= cutoff:
            continue
        dated.append((published, item))

    dated.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in dated[: max(0, max_items)]]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _strip_tags(html: str) -> str:
    return re.sub(r"\s+", " ", _STRIP_TAGS_RE.sub(" ", html)).strip()
