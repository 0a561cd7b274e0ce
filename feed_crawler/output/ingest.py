"""
Client for the ingest sink.

Each normalized article is POSTed as JSON with the shared secret header.
Failures are returned as IngestResult values and never retried here; the
next crawl of the source picks the article up again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

import httpx

from ..config import IngestConfig, get_ingest_api_url, get_ingest_secret
from ..core.errors import ConfigError
from ..core.types import NormalizedArticle
from ..utils.logging import log_event


INGEST_USER_AGENT = "feed-crawler/0.1"


@dataclass
class IngestResult:
    """Outcome of one ingest POST.

    Attributes:
        ok: True on a 2xx response
        id: Article id assigned by the sink
        inserted: False when the sink already had the article
        status_code: HTTP status, None for network errors
        error: Failure message
    """

    ok: bool
    id: str | None = None
    inserted: bool = False
    status_code: int | None = None
    error: str | None = None


@dataclass
class BatchIngestResult:
    successful: list[tuple[NormalizedArticle, IngestResult]] = field(default_factory=list)
    failed: list[tuple[NormalizedArticle, IngestResult]] = field(default_factory=list)


class IngestClient:
    """Posts normalized articles to the ingest endpoint."""

    def __init__(
        self,
        api_url: str,
        secret: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self.api_url = api_url
        self.secret = secret
        self.timeout = timeout
        self.logger = logger
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(
        cls,
        cfg: IngestConfig,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> "IngestClient":
        secret = get_ingest_secret(cfg)
        if not secret:
            raise ConfigError(f"Ingest secret is not configured (set {cfg.secret_env})")
        return cls(get_ingest_api_url(cfg), secret, cfg.timeout_seconds, client=client, logger=logger)

    async def post(self, article: NormalizedArticle) -> IngestResult:
        headers = {
            "x-ingest-secret": self.secret,
            "content-type": "application/json",
            "user-agent": INGEST_USER_AGENT,
        }
        try:
            resp = await self.client.post(
                self.api_url,
                json=article.to_payload(),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            result = IngestResult(ok=False, error=f"Ingest request failed: {type(exc).__name__}: {exc}")
            self._log_failure(article, result)
            return result

        if not 200 <= resp.status_code < 300:
            result = IngestResult(
                ok=False,
                status_code=resp.status_code,
                error=f"Ingest failed: {resp.status_code} {resp.text}",
            )
            self._log_failure(article, result)
            return result

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        article_id = data.get("id")
        inserted = data.get("inserted")
        return IngestResult(
            ok=True,
            id=str(article_id) if article_id is not None else None,
            inserted=True if inserted is None else bool(inserted),
            status_code=resp.status_code,
        )

    async def batch_ingest(self, articles: list[NormalizedArticle]) -> BatchIngestResult:
        """Post articles one after another."""
        outcome = BatchIngestResult()
        for article in articles:
            result = await self.post(article)
            if result.ok:
                outcome.successful.append((article, result))
            else:
                outcome.failed.append((article, result))
        return outcome

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _log_failure(self, article: NormalizedArticle, result: IngestResult) -> None:
        log_event(
            self.logger,
            "Ingest failed",
            level=logging.WARNING,
            event="ingest_failed",
            url=article.url,
            source_id=article.source_id,
            status_code=result.status_code,
            error=result.error,
        )
