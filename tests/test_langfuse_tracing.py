"""Tests for Langfuse tracing setup behavior."""

from __future__ import annotations

import sys
import types

from feed_crawler.config import LangfuseConfig
from feed_crawler.core.types import BatchResult, BatchTotals, CrawlMetrics, Source
from feed_crawler.llm import tracing


def _install_fake_langfuse(monkeypatch) -> dict:
    captured: dict = {}

    class DummySpan:
        def __init__(self):
            self.updates: list[dict] = []

        def update(self, **kwargs):
            self.updates.append(kwargs)
            captured.setdefault("updates", []).append(kwargs)

    class DummySpanContext:
        def __init__(self, **kwargs):
            captured.setdefault("spans", []).append(kwargs)
            self.span = DummySpan()

        def __enter__(self):
            return self.span

        def __exit__(self, *exc):
            return False

    class DummyLangfuse:
        def __init__(self, **kwargs):
            captured.update(kwargs)

        def start_as_current_span(self, **kwargs):
            return DummySpanContext(**kwargs)

        def flush(self):
            captured["flushed"] = True

    monkeypatch.setitem(sys.modules, "langfuse", types.SimpleNamespace(Langfuse=DummyLangfuse))
    monkeypatch.setattr(tracing, "_STATE", tracing._TraceState())
    return captured


def test_setup_langfuse_passes_keys_host_and_timeout(monkeypatch):
    captured = _install_fake_langfuse(monkeypatch)
    monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk-test")
    monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk-test")
    monkeypatch.setenv("LANGFUSE_HOST", "https://us.cloud.langfuse.com")

    assert tracing.setup_langfuse(LangfuseConfig(enabled=True, timeout_seconds=45))

    assert captured["public_key"] == "pk-test"
    assert captured["secret_key"] == "sk-test"
    assert captured["host"] == "https://us.cloud.langfuse.com"
    assert captured["timeout"] == 45
    assert tracing.get_tracer() is not None


def test_setup_langfuse_disables_tracer_when_keys_missing(monkeypatch):
    _install_fake_langfuse(monkeypatch)
    monkeypatch.delenv("LANGFUSE_PUBLIC_KEY", raising=False)
    monkeypatch.delenv("LANGFUSE_SECRET_KEY", raising=False)

    assert not tracing.setup_langfuse(LangfuseConfig(enabled=True))
    assert tracing.get_tracer() is None


def test_setup_langfuse_disabled_by_config(monkeypatch):
    _install_fake_langfuse(monkeypatch)
    tracing.setup_langfuse(LangfuseConfig(enabled=False, public_key="pk", secret_key="sk"))
    assert tracing.get_tracer() is None


def test_spans_redact_urls_and_record_errors(monkeypatch):
    captured = _install_fake_langfuse(monkeypatch)
    tracing.setup_langfuse(LangfuseConfig(enabled=True, public_key="pk", secret_key="sk", max_text_chars=40))

    with tracing.start_span("analysis.anthropic", kind="llm", input_value="see https://secret.example.com/x") as span:
        tracing.set_span_output(span, "y" * 100)
        tracing.record_span_error(span, ValueError("bad json"))
    tracing.flush()

    assert captured["spans"][0]["input"] == "see [REDACTED_URL]"
    assert captured["spans"][0]["metadata"]["span.kind"] == "llm"
    assert captured["updates"][0]["output"].endswith("...(truncated)")
    assert captured["updates"][1] == {"level": "ERROR", "status_message": "bad json"}
    assert captured["flushed"]


def test_start_span_without_tracer_yields_none(monkeypatch):
    monkeypatch.setattr(tracing, "_STATE", tracing._TraceState())
    with tracing.start_span("x", kind="chain") as span:
        assert span is None
    tracing.set_span_output(span, "ignored")
    tracing.record_source_metrics(span, CrawlMetrics(failed=1, error="down"))


def _traced(monkeypatch) -> dict:
    captured = _install_fake_langfuse(monkeypatch)
    tracing.setup_langfuse(LangfuseConfig(enabled=True, public_key="pk", secret_key="sk"))
    return captured


def test_source_span_carries_source_metadata_and_outcome_level(monkeypatch):
    captured = _traced(monkeypatch)
    source = Source(id="blog-a", name="Blog A", url="https://a.example.com/rss", type="blog", need_crawl=True)

    with tracing.source_span(source) as span:
        tracing.record_source_metrics(span, CrawlMetrics(ok=2, failed=1, total=3, duration_ms=12))
    with tracing.source_span(source) as span:
        tracing.record_source_metrics(span, CrawlMetrics(failed=1, error="Failed to fetch RSS: 500"))

    first = captured["spans"][0]
    assert first["name"] == "crawl.source.blog-a"
    assert first["metadata"]["crawl.source_type"] == "blog"
    assert first["metadata"]["crawl.need_crawl"] is True
    updates = captured["updates"]
    assert '"failed": 1' in updates[0]["output"]
    assert updates[1] == {"level": "WARNING", "status_message": "1 item(s) failed"}
    assert updates[3] == {"level": "ERROR", "status_message": "Failed to fetch RSS: 500"}


def test_batch_span_marks_health(monkeypatch):
    captured = _traced(monkeypatch)
    healthy = BatchResult(metrics={"a": CrawlMetrics(ok=1, total=1)}, totals=BatchTotals(ok=1, total=1))
    down = BatchResult(metrics={"a": CrawlMetrics(failed=1, error="x")}, totals=BatchTotals(failed=1))

    with tracing.batch_span("high", 1) as span:
        tracing.record_batch_result(span, healthy)
    with tracing.batch_span("high", 1) as span:
        tracing.record_batch_result(span, down)

    assert captured["spans"][0]["metadata"]["crawl.priority"] == "high"
    outputs = [u for u in captured["updates"] if "output" in u]
    assert '"health": "healthy"' in outputs[0]["output"]
    assert captured["updates"][-1]["level"] == "ERROR"
    assert len(captured["updates"]) == 3


def test_analysis_span_records_provider_and_model(monkeypatch):
    captured = _traced(monkeypatch)

    with tracing.analysis_span("gemini", "gemini-2.0-flash", "Title", "Blog A", "en"):
        pass

    span = captured["spans"][0]
    assert span["name"] == "analysis.gemini"
    assert span["metadata"] == {
        "llm.provider": "gemini",
        "llm.model": "gemini-2.0-flash",
        "crawl.source_name": "Blog A",
        "crawl.language": "en",
        "span.kind": "llm",
    }
