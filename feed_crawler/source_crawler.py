"""
Crawling of a single source and its feed items.

For each item: skip if it lacks a URL or title, skip batch-local and
already-ingested duplicates, get content (reader service for opted-in
sources, feed content otherwise), analyze, and post to the ingest sink.
Item failures are counted and never abort the source; the registry gets
exactly one status update per source crawl.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time

import httpx

from .analyzers.content_analyzer import ContentAnalyzer
from .config import AppConfig
from .core.dedup import BatchDeduplicator, normalize_url
from .core.types import (
    CrawlMetrics,
    FeedItem,
    ItemOutcome,
    NormalizedArticle,
    Source,
    SourceStatusUpdate,
    now_ms,
)
from .fetch.fetcher import ContentFetcher, SleepFn, should_use_reader
from .input.feed_parser import (
    extract_content,
    extract_published_at,
    extract_url,
    filter_and_sort_items,
    guess_content_format,
    parse_feed,
)
from .llm.tracing import record_source_metrics, source_span
from .output.ingest import IngestClient
from .scheduler import SourceRegistry
from .utils.logging import log_event


@dataclass
class CrawlContext:
    """Collaborators shared by every source crawl of a batch."""

    cfg: AppConfig
    registry: SourceRegistry
    fetcher: ContentFetcher
    analyzer: ContentAnalyzer
    ingest: IngestClient
    dedup: BatchDeduplicator | None = None
    http_client: httpx.AsyncClient | None = None
    logger: logging.Logger | None = None
    sleep: SleepFn = asyncio.sleep

    def new_deduplicator(self) -> BatchDeduplicator:
        return BatchDeduplicator(
            near_duplicates=self.cfg.dedup.near_duplicates,
            title_threshold=self.cfg.dedup.title_similarity_threshold,
            title_method=self.cfg.dedup.title_method,
            content_fingerprints=self.cfg.dedup.content_fingerprint,
        )


async def crawl_item(ctx: CrawlContext, source: Source, item: FeedItem) -> ItemOutcome:
    raw_url = extract_url(item)
    title = (item.title or "").strip()
    if not raw_url or not title:
        return ItemOutcome.skipped(raw_url, "missing_url_or_title")

    url = normalize_url(raw_url)
    if ctx.dedup is not None:
        reason = ctx.dedup.claim_url(url, title)
        if reason:
            return ItemOutcome.skipped(url, reason)

    if await ctx.registry.article_exists(url):
        return ItemOutcome.skipped(url, "known_article")

    rss_content = extract_content(item)
    if should_use_reader(source.type, source.need_crawl):
        fetched = await ctx.fetcher.fetch(url, rss_content)
        if not fetched.ok:
            error = str(fetched.error) if fetched.error else "No content available"
            return ItemOutcome.failed(url, "fetch_failed", error)
        content, content_format = fetched.content, fetched.content_format
    else:
        content, content_format = rss_content, guess_content_format(rss_content)

    if ctx.dedup is not None and content:
        reason = ctx.dedup.claim_content(content)
        if reason:
            return ItemOutcome.skipped(url, reason)

    analysis = await ctx.analyzer.analyze_article(title, content, source.name, source.category)
    article = NormalizedArticle.create(
        source=source,
        url=url,
        title=title,
        content=content,
        content_format=content_format,
        published_at=extract_published_at(item),
        analysis=analysis,
    )

    result = await ctx.ingest.post(article)
    if not result.ok:
        return ItemOutcome.failed(url, "ingest_failed", result.error)
    await ctx.registry.record_article(url)
    if not result.inserted:
        return ItemOutcome.skipped(url, "sink_duplicate")
    return ItemOutcome.ok(url)


async def crawl_source(ctx: CrawlContext, source: Source) -> CrawlMetrics:
    """Crawl one source and report its status to the registry once."""
    with source_span(source) as span:
        metrics = await _crawl_source(ctx, source)
        record_source_metrics(span, metrics)
    return metrics


async def _crawl_source(ctx: CrawlContext, source: Source) -> CrawlMetrics:
    started_at = now_ms()
    started = time.monotonic()
    metrics = CrawlMetrics()
    log_event(
        ctx.logger,
        "Source crawl start",
        level=logging.DEBUG,
        event="source_crawl_start",
        source_id=source.id,
        url=source.url,
    )

    try:
        feed = await parse_feed(
            source.url,
            timeout=ctx.cfg.fetch.feed_timeout_seconds,
            user_agent=ctx.cfg.fetch.user_agent,
            client=ctx.http_client,
            max_attempts=ctx.cfg.fetch.feed_max_attempts,
            retry_base_seconds=ctx.cfg.fetch.feed_retry_base_seconds,
            sleep=ctx.sleep,
            logger=ctx.logger,
        )
    except Exception as exc:  # noqa: BLE001
        metrics.failed = 1
        metrics.error = str(exc) or type(exc).__name__
        metrics.duration_ms = _elapsed_ms(started)
        log_event(
            ctx.logger,
            "Feed error",
            level=logging.WARNING,
            event="feed_error",
            source_id=source.id,
            url=source.url,
            error=metrics.error,
        )
        await report_status(ctx, SourceStatusUpdate(source.id, started_at, False, 1))
        return metrics

    items = filter_and_sort_items(
        feed.items,
        ctx.cfg.batch.items_per_source,
        ctx.cfg.batch.max_item_age_days,
    )
    metrics.total = len(items)

    for item in items:
        try:
            outcome = await crawl_item(ctx, source, item)
        except Exception as exc:  # noqa: BLE001
            outcome = ItemOutcome.failed(extract_url(item), "exception", f"{type(exc).__name__}: {exc}")
        metrics.record(outcome)
        _log_outcome(ctx.logger, source, outcome)

    metrics.duration_ms = _elapsed_ms(started)
    await report_status(
        ctx,
        SourceStatusUpdate(
            id=source.id,
            crawled_at=started_at,
            success=metrics.failed == 0,
            error_count_delta=metrics.failed,
        ),
    )
    log_event(
        ctx.logger,
        "Source crawl complete",
        event="source_crawl_complete",
        source_id=source.id,
        ok=metrics.ok,
        skipped=metrics.skipped,
        failed=metrics.failed,
        total=metrics.total,
        duration_ms=metrics.duration_ms,
    )
    return metrics


async def report_status(ctx: CrawlContext, update: SourceStatusUpdate) -> None:
    try:
        await ctx.registry.update_source_status(update)
    except Exception as exc:  # noqa: BLE001
        log_event(
            ctx.logger,
            "Source status update failed",
            level=logging.WARNING,
            event="status_update_failed",
            source_id=update.id,
            error=str(exc),
        )


def _log_outcome(logger: logging.Logger | None, source: Source, outcome: ItemOutcome) -> None:
    if outcome.status == "skipped":
        log_event(
            logger,
            "Item skipped",
            level=logging.DEBUG,
            event="item_skipped",
            source_id=source.id,
            url=outcome.url,
            reason=outcome.reason,
        )
    elif outcome.status == "failed":
        log_event(
            logger,
            "Item failed",
            level=logging.WARNING,
            event="item_failed",
            source_id=source.id,
            url=outcome.url,
            reason=outcome.reason,
            error=outcome.error,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
