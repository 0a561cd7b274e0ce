"""
Langfuse tracing for crawl batches, source crawls and provider calls.

Spans nest as batch -> source -> provider analysis. Batch and source spans
carry their counters as output and are marked WARNING or ERROR from the
crawl outcome, so degraded runs stand out in the Langfuse UI. Everything
here is a no-op when tracing is disabled or the SDK is unavailable.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import json
import os
from typing import Any, Iterator

from ..config import LangfuseConfig
from ..core.types import BatchResult, CrawlerHealth, CrawlMetrics, Source
from ..utils.logging import redact_urls, truncate_text


@dataclass
class _TraceState:
    client: Any = None
    cfg: LangfuseConfig | None = None


_STATE = _TraceState()


def setup_langfuse(cfg: LangfuseConfig) -> bool:
    """Initialize Langfuse tracing; return True when spans will be emitted."""
    _STATE.cfg = cfg
    _STATE.client = None
    if not cfg.enabled:
        return False

    public_key = _coalesce(cfg.public_key, "LANGFUSE_PUBLIC_KEY")
    secret_key = _coalesce(cfg.secret_key, "LANGFUSE_SECRET_KEY")
    if not public_key or not secret_key:
        return False

    try:
        from langfuse import Langfuse  # type: ignore
    except Exception:  # noqa: BLE001
        return False

    _STATE.client = Langfuse(
        public_key=public_key,
        secret_key=secret_key,
        host=_coalesce(cfg.host, "LANGFUSE_HOST"),
        environment=_coalesce(cfg.environment, "LANGFUSE_ENVIRONMENT"),
        release=_coalesce(cfg.release, "LANGFUSE_RELEASE"),
        timeout=cfg.timeout_seconds,
    )
    return True


def get_tracer():
    return _STATE.client


def reset_tracing() -> None:
    _STATE.client = None
    _STATE.cfg = None


@contextmanager
def start_span(
    name: str,
    kind: str,
    input_value: Any | None = None,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Any | None]:
    """Start a Langfuse span if tracing is enabled; yields None otherwise."""
    client = _STATE.client
    if client is None:
        yield None
        return

    attrs = _clean_attributes(attributes or {})
    if kind:
        attrs.setdefault("span.kind", kind)

    try:
        cm = client.start_as_current_span(
            name=name,
            input=_normalize_text(input_value),
            metadata=attrs,
        )
        span = cm.__enter__()
    except Exception:  # noqa: BLE001
        yield None
        return

    try:
        yield span
    finally:
        try:
            cm.__exit__(None, None, None)
        except Exception:  # noqa: BLE001
            pass


def batch_span(priority: str, source_count: int):
    return start_span(
        "crawl.batch",
        kind="chain",
        input_value={"priority": priority, "sources": source_count},
        attributes={"crawl.priority": priority, "crawl.source_count": source_count},
    )


def source_span(source: Source):
    return start_span(
        f"crawl.source.{source.id}",
        kind="chain",
        input_value={"url": source.url, "type": source.type},
        attributes={
            "crawl.source_id": source.id,
            "crawl.source_type": source.type,
            "crawl.need_crawl": source.need_crawl,
            "crawl.error_count": source.error_count,
        },
    )


def analysis_span(provider: str, model: str, title: str, source_name: str | None, language: str | None):
    return start_span(
        f"analysis.{provider}",
        kind="llm",
        input_value={"title": title, "source": source_name},
        attributes={
            "llm.provider": provider,
            "llm.model": model,
            "crawl.source_name": source_name,
            "crawl.language": language,
        },
    )


def record_source_metrics(span: Any | None, metrics: CrawlMetrics) -> None:
    """Attach source counters; a feed error is ERROR, item failures WARNING."""
    if span is None:
        return
    set_span_output(
        span,
        {
            "ok": metrics.ok,
            "skipped": metrics.skipped,
            "failed": metrics.failed,
            "total": metrics.total,
            "duration_ms": metrics.duration_ms,
        },
    )
    if metrics.error:
        record_span_error(span, metrics.error)
    elif metrics.failed:
        _safe_update(span, level="WARNING", status_message=f"{metrics.failed} item(s) failed")


def record_batch_result(span: Any | None, result: BatchResult) -> None:
    if span is None:
        return
    set_span_output(span, {**result.totals.as_dict(), "health": result.health.value})
    if result.health == CrawlerHealth.UNHEALTHY:
        _safe_update(span, level="ERROR", status_message="every source failed")
    elif result.health == CrawlerHealth.DEGRADED:
        _safe_update(span, level="WARNING", status_message="some sources or items failed")


def set_span_output(span: Any | None, output_value: Any) -> None:
    if span is None:
        return
    payload = _normalize_text(output_value)
    if payload is None:
        return
    _safe_update(span, output=payload)


def record_span_error(span: Any | None, exc: Exception | str) -> None:
    if span is None:
        return
    _safe_update(span, level="ERROR", status_message=_normalize_text(str(exc)))


def flush() -> None:
    """Flush any pending traces to Langfuse before exit."""
    client = _STATE.client
    if client is None:
        return
    try:
        if hasattr(client, "flush"):
            client.flush()
    except Exception:  # noqa: BLE001
        return


def _coalesce(value: str | None, env_key: str) -> str | None:
    if value:
        return value
    return os.getenv(env_key)


def _normalize_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, ensure_ascii=True, default=str)
    cfg = _STATE.cfg
    if cfg is None:
        return text
    return truncate_text(redact_urls(text), cfg.max_text_chars)


def _clean_attributes(attrs: dict[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in attrs.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = str(value)
    return cleaned


def _safe_update(span: Any, **kwargs: Any) -> None:
    try:
        if hasattr(span, "update"):
            span.update(**kwargs)
    except Exception:  # noqa: BLE001
        return
