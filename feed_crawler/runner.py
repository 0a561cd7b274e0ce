"""
Main crawl orchestration.

This module coordinates a crawl batch:
1. Fetch due sources from the registry (optionally one priority tier)
2. Crawl them with a fixed pool of asyncio workers
3. Aggregate per-source metrics into batch totals
4. Persist crawl state for file-backed registries

run_loop repeats batches until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
import signal
import time
from typing import Callable

import httpx

from .analyzers.content_analyzer import ContentAnalyzer
from .config import AppConfig
from .core.metrics import MetricsAggregator
from .core.types import BatchResult, CrawlMetrics, Source, SourceStatusUpdate, now_ms
from .fetch.fetcher import ContentFetcher
from .llm.providers.factory import build_providers
from .llm.tracing import batch_span, flush, record_batch_result, setup_langfuse
from .output.ingest import IngestClient
from .scheduler import InMemorySourceRegistry, SourceRegistry, build_registry, types_for_priority
from .source_crawler import CrawlContext, crawl_source, report_status
from .utils.logging import log_event


SourceCallback = Callable[[Source, CrawlMetrics], None]


async def batch_crawl_sources(
    ctx: CrawlContext,
    sources: list[Source],
    concurrency: int = 5,
    on_source_done: SourceCallback | None = None,
) -> BatchResult:
    """Crawl sources with at most `concurrency` in flight.

    A fresh batch deduplicator and metrics aggregator are created per call.
    One source failing, even unexpectedly, never affects the others.
    """
    started = time.monotonic()
    ctx = replace(ctx, dedup=ctx.new_deduplicator())
    aggregator = MetricsAggregator()

    unique: dict[str, Source] = {}
    for source in sources:
        unique.setdefault(source.id, source)

    queue: asyncio.Queue[Source] = asyncio.Queue()
    for source in unique.values():
        queue.put_nowait(source)

    async def worker() -> None:
        while True:
            try:
                source = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            started_at = now_ms()
            try:
                metrics = await crawl_source(ctx, source)
            except Exception as exc:  # noqa: BLE001
                metrics = CrawlMetrics(failed=1, error=f"{type(exc).__name__}: {exc}")
                log_event(
                    ctx.logger,
                    "Source crawl crashed",
                    level=logging.ERROR,
                    event="source_crawl_crashed",
                    source_id=source.id,
                    error=metrics.error,
                )
                await report_status(ctx, SourceStatusUpdate(source.id, started_at, False, 1))
            aggregator.record(source.id, metrics)
            if on_source_done is not None:
                try:
                    on_source_done(source, metrics)
                except Exception as exc:  # noqa: BLE001
                    log_event(
                        ctx.logger,
                        "Source callback failed",
                        level=logging.WARNING,
                        event="source_callback_error",
                        source_id=source.id,
                        error=f"{type(exc).__name__}: {exc}",
                    )

    worker_count = max(1, min(concurrency, len(unique)))
    if unique:
        await asyncio.gather(*(worker() for _ in range(worker_count)))

    result = BatchResult(
        metrics=aggregator.snapshot(),
        totals=aggregator.totals(),
        sources=list(unique.values()),
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    log_event(
        ctx.logger,
        "Batch complete",
        event="batch_complete",
        sources=len(unique),
        health=result.health.value,
        duration_ms=result.duration_ms,
        **result.totals.as_dict(),
    )
    return result


async def crawl_by_priority(
    ctx: CrawlContext,
    priority: str = "all",
    limit: int | None = None,
    concurrency: int | None = None,
    on_source_done: SourceCallback | None = None,
) -> BatchResult:
    """Fetch due sources of a tier ("high", "medium", "low" or "all") and crawl them."""
    source_types = types_for_priority(priority, ctx.cfg.priority)
    batch_limit = limit or ctx.cfg.batch.sources_per_batch
    sources = await ctx.registry.fetch_due_sources(now_ms(), batch_limit, source_types)
    if not sources:
        log_event(ctx.logger, "No due sources", event="no_due_sources", priority=priority)
        return BatchResult()

    log_event(
        ctx.logger,
        "Due sources fetched",
        event="due_sources",
        priority=priority,
        count=len(sources),
    )
    with batch_span(priority, len(sources)) as span:
        result = await batch_crawl_sources(
            ctx,
            sources,
            concurrency=concurrency or ctx.cfg.batch.concurrency,
            on_source_done=on_source_done,
        )
        record_batch_result(span, result)
    return result


def build_context(
    cfg: AppConfig,
    registry: SourceRegistry,
    client: httpx.AsyncClient,
    logger: logging.Logger | None = None,
) -> CrawlContext:
    """Wire the fetcher, analyzer and ingest client around a shared HTTP client."""
    providers = build_providers(
        cfg.analysis.providers,
        cfg.analysis.max_content_chars,
        client=client,
        logger=logger,
    )
    if not providers:
        log_event(
            logger,
            "No AI providers configured, using heuristic analysis only",
            level=logging.WARNING,
            event="heuristic_only",
        )
    return CrawlContext(
        cfg=cfg,
        registry=registry,
        fetcher=ContentFetcher(cfg.fetch, cfg.extract, client=client, logger=logger),
        analyzer=ContentAnalyzer(providers, logger=logger),
        ingest=IngestClient.from_config(cfg.ingest, client=client, logger=logger),
        http_client=client,
        logger=logger,
    )


async def run_batch(
    cfg: AppConfig,
    registry: SourceRegistry | None = None,
    priority: str = "all",
    limit: int | None = None,
    concurrency: int | None = None,
    logger: logging.Logger | None = None,
    on_source_done: SourceCallback | None = None,
) -> BatchResult:
    """Run one batch end to end and persist file-backed registry state."""
    owns_registry = registry is None
    if registry is None:
        registry = build_registry(cfg, logger=logger)
    setup_langfuse(cfg.langfuse)

    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            trust_env=cfg.fetch.trust_env,
            headers={"User-Agent": cfg.fetch.user_agent},
        ) as client:
            ctx = build_context(cfg, registry, client, logger=logger)
            result = await crawl_by_priority(
                ctx,
                priority=priority,
                limit=limit,
                concurrency=concurrency,
                on_source_done=on_source_done,
            )
        if owns_registry and isinstance(registry, InMemorySourceRegistry):
            registry.save_yaml(cfg.registry.sources_file)
        return result
    finally:
        flush()
        if owns_registry:
            await registry.aclose()


async def run_loop(
    cfg: AppConfig,
    registry: SourceRegistry | None = None,
    priority: str = "all",
    limit: int | None = None,
    concurrency: int | None = None,
    logger: logging.Logger | None = None,
    stop_event: asyncio.Event | None = None,
    max_batches: int | None = None,
    on_batch_done: Callable[[BatchResult], None] | None = None,
) -> int:
    """Run batches every loop_interval_seconds until stopped; return the batch count.

    SIGINT/SIGTERM set the stop event; the batch in flight is allowed to finish.
    """
    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            continue

    log_event(
        logger,
        "Loop mode enabled",
        event="loop_start",
        interval_seconds=cfg.batch.loop_interval_seconds,
    )
    batches = 0
    try:
        while not stop.is_set():
            try:
                result = await run_batch(
                    cfg,
                    registry=registry,
                    priority=priority,
                    limit=limit,
                    concurrency=concurrency,
                    logger=logger,
                )
                if on_batch_done is not None:
                    on_batch_done(result)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    "Batch failed",
                    level=logging.ERROR,
                    event="batch_error",
                    error=f"{type(exc).__name__}: {exc}",
                )
            batches += 1
            if max_batches is not None and batches >= max_batches:
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=cfg.batch.loop_interval_seconds)
            except asyncio.TimeoutError:
                continue
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    log_event(logger, "Loop stopped", event="loop_stop", batches=batches)
    return batches
