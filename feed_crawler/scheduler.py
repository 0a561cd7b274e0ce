"""
Source scheduling and source registries.

A source is due when it has never been crawled or its crawl frequency has
elapsed since the last crawl. Due sources are ordered healthiest first
(fewest consecutive errors), then least recently crawled.

Registries:
- InMemorySourceRegistry: sources and known article URLs held in memory,
  loadable from and savable to a YAML file
- HttpSourceRegistry: the web application's admin API
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable

import httpx
import yaml

from .config import AppConfig, PriorityConfig, get_ingest_secret, get_registry_base_url
from .core.dedup import id_from_url, normalize_url
from .core.errors import ConfigError, CrawlerError
from .core.types import Source, SourceStatusUpdate, now_ms
from .utils.logging import log_event


PRIORITY_TIERS: dict[str, list[str]] = {
    "high": ["article", "blog", "news"],
    "medium": ["podcast", "video"],
    "low": ["twitter", "newsletter", "wechat"],
}

PRIORITY_SCHEDULES: dict[str, str] = {
    "high": "5 * * * *",
    "medium": "10 */3 * * *",
    "low": "15 */6 * * *",
}

REGISTRY_USER_AGENT = "feed-crawler/0.1"


def get_priority_for_type(source_type: str, cfg: PriorityConfig | None = None) -> str:
    """Return the tier a source type belongs to; unknown types are "low"."""
    tiers = _tiers(cfg)
    for priority, types in tiers.items():
        if source_type in types:
            return priority
    return "low"


def types_for_priority(priority: str, cfg: PriorityConfig | None = None) -> list[str] | None:
    """Source types for a tier, or None for "all".

    Raises:
        ValueError: For an unknown tier name
    """
    if priority == "all":
        return None
    tiers = _tiers(cfg)
    if priority not in tiers:
        raise ValueError(f"Unknown priority: {priority}. Expected one of: high, medium, low, all")
    return list(tiers[priority])


def cron_interval_seconds(expression: str) -> int:
    """Approximate interval of a "M H * * *" cron expression in seconds.

    Supports "*" and "*/N" in the minute and hour fields, which is all the
    priority schedules use.
    """
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression: {expression!r}")
    minute, hour = fields[0], fields[1]
    if minute == "*":
        return 60
    if minute.startswith("*/"):
        return int(minute[2:]) * 60
    if hour == "*":
        return 3600
    if hour.startswith("*/"):
        return int(hour[2:]) * 3600
    return 24 * 3600


def _tiers(cfg: PriorityConfig | None) -> dict[str, list[str]]:
    if cfg is None:
        return PRIORITY_TIERS
    return {"high": cfg.high, "medium": cfg.medium, "low": cfg.low}


def is_due(source: Source, now: int) -> bool:
    if not source.active:
        return False
    if source.last_crawled_at is None:
        return True
    return source.last_crawled_at + source.crawl_frequency * 1000 <= now


def select_due_sources(
    sources: Iterable[Source],
    now: int,
    limit: int,
    source_types: Iterable[str] | None = None,
) -> list[Source]:
    """Active due sources ordered by (error_count, last_crawled_at), capped at limit."""
    allowed = set(source_types) if source_types is not None else None
    due = [
        source
        for source in sources
        if is_due(source, now) and (allowed is None or source.type in allowed)
    ]
    due.sort(key=lambda s: (s.error_count, s.last_crawled_at or 0))
    return due[: max(0, limit)]


def apply_status_update(source: Source, update: SourceStatusUpdate) -> Source:
    """Apply a crawl-status update in place and return the source."""
    source.last_crawled_at = update.crawled_at
    if update.success:
        source.error_count = 0
        source.last_success_at = update.crawled_at
    else:
        source.error_count = max(0, source.error_count + max(0, update.error_count_delta))
    return source


class SourceRegistry(ABC):
    """Where due sources come from and where crawl status goes."""

    @abstractmethod
    async def fetch_due_sources(
        self,
        now: int,
        limit: int,
        source_types: list[str] | None = None,
    ) -> list[Source]:
        raise NotImplementedError

    @abstractmethod
    async def update_source_status(self, update: SourceStatusUpdate) -> None:
        raise NotImplementedError

    @abstractmethod
    async def article_exists(self, url: str) -> bool:
        """URL-exact existence check of an already ingested article."""
        raise NotImplementedError

    async def record_article(self, url: str) -> None:
        """Remember a newly ingested article URL, if the registry tracks them."""
        return None

    async def aclose(self) -> None:
        return None


class InMemorySourceRegistry(SourceRegistry):
    """Registry backed by in-process state, optionally persisted as YAML.

    YAML layout:
        sources:
          - id: openai-blog
            name: OpenAI Blog
            url: https://openai.com/blog/rss.xml
            type: blog
        known_articles:
          - https://openai.com/index/some-post
    """

    def __init__(self, sources: Iterable[Source] = (), known_articles: Iterable[str] = ()):
        self._sources: dict[str, Source] = {}
        for source in sources:
            self.add_source(source)
        self._known: set[str] = {normalize_url(url) for url in known_articles}
        self.status_updates: list[SourceStatusUpdate] = []

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemorySourceRegistry":
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Sources file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if isinstance(raw, list):
            raw = {"sources": raw}
        if not isinstance(raw, dict):
            raise ConfigError(f"Sources file {path} must contain a mapping or a list")

        sources = []
        for idx, item in enumerate(raw.get("sources") or []):
            if not isinstance(item, dict) or not item.get("id") or not item.get("url"):
                raise ConfigError(f"Source #{idx} in {path} needs at least 'id' and 'url'")
            sources.append(Source.from_dict(item))
        return cls(sources, raw.get("known_articles") or [])

    def save_yaml(self, path: str | Path) -> None:
        path = Path(path)
        data: dict[str, Any] = {
            "sources": [source.to_dict() for source in self._sources.values()],
            "known_articles": sorted(self._known),
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)

    def add_source(self, source: Source) -> None:
        if source.id in self._sources:
            raise ValueError(f"Duplicate source id: {source.id}")
        self._sources[source.id] = source

    def get_source(self, source_id: str) -> Source | None:
        return self._sources.get(source_id)

    @property
    def sources(self) -> list[Source]:
        return list(self._sources.values())

    async def fetch_due_sources(
        self,
        now: int,
        limit: int,
        source_types: list[str] | None = None,
    ) -> list[Source]:
        return select_due_sources(self._sources.values(), now, limit, source_types)

    async def update_source_status(self, update: SourceStatusUpdate) -> None:
        source = self._sources.get(update.id)
        if source is None:
            raise CrawlerError(f"Unknown source id: {update.id}")
        apply_status_update(source, update)
        self.status_updates.append(update)

    async def article_exists(self, url: str) -> bool:
        return normalize_url(url) in self._known

    async def record_article(self, url: str) -> None:
        self._known.add(normalize_url(url))


class HttpSourceRegistry(SourceRegistry):
    """Registry over the web application's admin endpoints.

    Requests authenticate with the shared ingest secret. Source listing and
    status updates are retried with exponential backoff; the existence check
    is a single request.
    """

    def __init__(
        self,
        base_url: str,
        secret: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        logger: logging.Logger | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.logger = logger
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def headers(self) -> dict[str, str]:
        return {"x-ingest-secret": self.secret, "user-agent": REGISTRY_USER_AGENT}

    async def fetch_due_sources(
        self,
        now: int,
        limit: int,
        source_types: list[str] | None = None,
    ) -> list[Source]:
        async def _request() -> list[Source]:
            resp = await self.client.get(
                f"{self.base_url}/api/admin/sources",
                params={"limit": str(limit)},
                headers=self.headers,
                timeout=self.timeout,
            )
            if not 200 <= resp.status_code < 300:
                raise CrawlerError(f"Failed to fetch sources: {resp.status_code} {resp.text[:500]}")
            data = resp.json()
            if not isinstance(data, dict) or not isinstance(data.get("sources"), list):
                raise CrawlerError("Invalid sources response: missing 'sources' list")
            return [Source.from_dict(item) for item in data["sources"]]

        sources = await self._with_retry("fetch_due_sources", _request)
        return select_due_sources(sources, now, limit, source_types)

    async def update_source_status(self, update: SourceStatusUpdate) -> None:
        async def _request() -> None:
            resp = await self.client.post(
                f"{self.base_url}/api/admin/sources",
                json=update.to_payload(),
                headers={**self.headers, "content-type": "application/json"},
                timeout=self.timeout,
            )
            if not 200 <= resp.status_code < 300:
                raise CrawlerError(
                    f"Failed to update source status: {resp.status_code} {resp.text[:500]}"
                )

        await self._with_retry("update_source_status", _request)

    async def article_exists(self, url: str) -> bool:
        resp = await self.client.get(
            f"{self.base_url}/api/news/{id_from_url(url)}",
            headers=self.headers,
            timeout=self.timeout,
        )
        if resp.status_code == 404:
            return False
        if 200 <= resp.status_code < 300:
            return True
        raise CrawlerError(f"Article existence check failed: {resp.status_code}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _with_retry(self, operation: str, fn):
        attempt = 0
        while True:
            try:
                return await fn()
            except (httpx.HTTPError, CrawlerError, ValueError) as exc:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise CrawlerError(f"{operation} failed after {attempt} attempt(s): {exc}") from exc
                delay = self.base_delay * 2 ** (attempt - 1)
                log_event(
                    self.logger,
                    "Registry request failed, retrying",
                    level=logging.WARNING,
                    event="registry_retry",
                    operation=operation,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await asyncio.sleep(delay)


def build_registry(cfg: AppConfig, logger: logging.Logger | None = None) -> SourceRegistry:
    """Create the registry described by an AppConfig."""
    if cfg.registry.kind == "http":
        base_url = get_registry_base_url(cfg.registry)
        secret = get_ingest_secret(cfg.ingest)
        if not base_url or not secret:
            raise ConfigError("The http registry needs registry.base_url (or SITE_URL) and an ingest secret")
        return HttpSourceRegistry(
            base_url,
            secret,
            timeout=cfg.registry.timeout_seconds,
            logger=logger,
        )
    return InMemorySourceRegistry.from_yaml(cfg.registry.sources_file)


def due_summary(sources: Iterable[Source], now: int | None = None) -> list[dict[str, Any]]:
    """Rows describing sources for display (id, type, tier, due, error_count)."""
    current = now if now is not None else now_ms()
    return [
        {
            "id": source.id,
            "name": source.name,
            "type": source.type,
            "priority": get_priority_for_type(source.type),
            "due": is_due(source, current),
            "error_count": source.error_count,
            "last_crawled_at": source.last_crawled_at,
        }
        for source in sources
    ]
