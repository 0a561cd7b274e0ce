"""
Command-line interface for the feed crawler.

Uses Typer to provide commands for running crawl batches, inspecting due
sources, parsing a single feed and validating configuration. Supports
loading .env files for secrets and API keys.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table
import httpx
import typer

from .config import AppConfig, load_config, validate_config
from .core.errors import CrawlerError
from .core.types import BatchResult, CrawlerHealth, CrawlMetrics, Source, now_ms
from .input.feed_parser import extract_published_at, extract_url, filter_and_sort_items, parse_feed
from .llm.providers.factory import build_providers
from .runner import run_batch, run_loop
from .scheduler import build_registry, due_summary, types_for_priority
from .utils.logging import setup_logging

app = typer.Typer(add_completion=False, help="Crawl RSS/Atom sources into the ingest sink.")
console = Console()

PRIORITY_HELP = "Source tier to crawl: high, medium, low, or all."


def _load(config: Path | None, log_level: str | None = None) -> AppConfig:
    load_dotenv()
    cfg = load_config(str(config) if config else None)
    if log_level:
        cfg.logging.level = log_level
    return cfg


@app.command()
def run(
    config: Path | None = typer.Option(None, "--config", "-c", exists=True, readable=True),
    priority: str = typer.Option("all", "--priority", "-p", help=PRIORITY_HELP),
    limit: int | None = typer.Option(None, "--limit", help="Maximum sources in the batch."),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Concurrent source workers."),
    loop: bool = typer.Option(False, "--loop/--no-loop", help="Repeat batches until interrupted."),
    progress: bool = typer.Option(True, "--progress/--no-progress"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
):
    """Crawl due sources once (or repeatedly with --loop) and print metrics.

    Fetches due sources from the configured registry, crawls them with a
    bounded worker pool, posts new articles to the ingest API and prints
    per-source counters with the batch health.

    Args:
        config: Optional path to YAML config file
        priority: Source tier to crawl (high, medium, low, all)
        limit: Maximum number of due sources in a batch
        concurrency: Number of concurrent source workers
        loop: Keep running batches every batch.loop_interval_seconds
        progress: Whether to show a progress bar
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    cfg = _load(config, log_level)
    if concurrency is not None:
        cfg.batch.concurrency = concurrency
    problems = validate_config(cfg)
    if problems:
        _print_problems(problems)
        raise typer.Exit(code=2)
    try:
        types_for_priority(priority, cfg.priority)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--priority") from exc

    logger = setup_logging(cfg.logging)

    if loop:
        batches = asyncio.run(
            run_loop(
                cfg,
                priority=priority,
                limit=limit,
                logger=logger,
                on_batch_done=_render_result,
            )
        )
        console.print(f"Stopped after {batches} batch(es).")
        return

    try:
        result = _run_once(cfg, priority, limit, logger, progress)
    except (CrawlerError, httpx.HTTPError) as exc:
        console.print(f"[red]Crawl failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    _render_result(result)
    if result.health == CrawlerHealth.UNHEALTHY:
        raise typer.Exit(code=1)


def _run_once(cfg: AppConfig, priority: str, limit: int | None, logger, show_progress: bool) -> BatchResult:
    if not show_progress:
        return asyncio.run(run_batch(cfg, priority=priority, limit=limit, logger=logger))

    progress = Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    )
    with progress:
        task = progress.add_task("Sources", total=None)

        def _advance(source: Source, metrics: CrawlMetrics) -> None:
            progress.advance(task, 1)
            progress.update(task, description=f"Sources (last: {source.id})")

        return asyncio.run(
            run_batch(cfg, priority=priority, limit=limit, logger=logger, on_source_done=_advance)
        )


@app.command()
def due(
    config: Path | None = typer.Option(None, "--config", "-c", exists=True, readable=True),
    priority: str = typer.Option("all", "--priority", "-p", help=PRIORITY_HELP),
    limit: int | None = typer.Option(None, "--limit", help="Maximum sources listed."),
):
    """List sources that are due for crawling, in crawl order."""
    cfg = _load(config)
    try:
        source_types = types_for_priority(priority, cfg.priority)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--priority") from exc

    async def _fetch() -> list[Source]:
        registry = build_registry(cfg)
        try:
            return await registry.fetch_due_sources(
                now_ms(), limit or cfg.batch.sources_per_batch, source_types
            )
        finally:
            await registry.aclose()

    try:
        sources = asyncio.run(_fetch())
    except (CrawlerError, httpx.HTTPError) as exc:
        console.print(f"[red]Could not load sources:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if not sources:
        console.print("No due sources.")
        return

    table = Table(title=f"Due sources ({priority})")
    for column in ("id", "name", "type", "priority", "errors", "last crawled"):
        table.add_column(column)
    for row in due_summary(sources):
        table.add_row(
            row["id"],
            row["name"],
            row["type"],
            row["priority"],
            str(row["error_count"]),
            _format_ms(row["last_crawled_at"]),
        )
    console.print(table)


@app.command("parse-feed")
def parse_feed_command(
    source: str = typer.Argument(..., help="Feed URL or path to a local RSS/Atom file."),
    limit: int = typer.Option(20, "--limit", help="Maximum items shown."),
    max_age_days: int = typer.Option(30, "--max-age-days", help="Drop items older than this."),
):
    """Parse a single feed and print its items, newest first."""
    path = Path(source)
    raw: str | bytes = path.read_bytes() if path.exists() else source
    try:
        feed = asyncio.run(parse_feed(raw))
    except CrawlerError as exc:
        console.print(f"[red]Feed error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    items = filter_and_sort_items(feed.items, limit, max_age_days)
    table = Table(title=f"{feed.title or source} ({feed.format}, {len(feed.items)} items)")
    table.add_column("published")
    table.add_column("title")
    table.add_column("url")
    for item in items:
        table.add_row(
            _format_ms(extract_published_at(item)),
            item.title or "",
            extract_url(item) or "",
        )
    console.print(table)


@app.command("check-config")
def check_config(
    config: Path | None = typer.Option(None, "--config", "-c", exists=True, readable=True),
):
    """Validate configuration and report which AI providers are usable."""
    cfg = _load(config)
    problems = validate_config(cfg)
    try:
        providers = build_providers(cfg.analysis.providers, cfg.analysis.max_content_chars)
    except ValueError as exc:
        problems.append(str(exc))
        providers = []

    names = ", ".join(provider.name for provider in providers) or "none (heuristic only)"
    console.print(f"AI providers: {names}")
    console.print(f"Registry: {cfg.registry.kind}")
    if problems:
        _print_problems(problems)
        raise typer.Exit(code=2)
    console.print("[green]Configuration OK[/green]")


def _render_result(result: BatchResult) -> None:
    if not result.metrics:
        console.print("No due sources.")
        return
    table = Table(title="Crawl metrics")
    for column in ("source", "ok", "skipped", "failed", "total", "ms", "error"):
        table.add_column(column)
    for source_id, metrics in result.metrics.items():
        table.add_row(
            source_id,
            str(metrics.ok),
            str(metrics.skipped),
            str(metrics.failed),
            str(metrics.total),
            str(metrics.duration_ms),
            metrics.error or "",
        )
    totals = result.totals
    table.add_row(
        "[bold]total[/bold]",
        str(totals.ok),
        str(totals.skipped),
        str(totals.failed),
        str(totals.total),
        str(result.duration_ms),
        "",
    )
    console.print(table)
    color = {"healthy": "green", "degraded": "yellow", "unhealthy": "red"}[result.health.value]
    console.print(f"Health: [{color}]{result.health.value}[/{color}]")


def _print_problems(problems: list[str]) -> None:
    console.print("[red]Configuration problems:[/red]")
    for problem in problems:
        console.print(f"  - {problem}")


def _format_ms(value: int | None) -> str:
    if value is None:
        return "never"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


if __name__ == "__main__":
    app()
