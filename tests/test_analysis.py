"""Tests for analysis sanitization, heuristics and the provider cascade."""

from __future__ import annotations

import asyncio
import json

import pytest

from feed_crawler.analyzers.content_analyzer import ContentAnalyzer
from feed_crawler.analyzers.heuristic import (
    HeuristicAnalyzer,
    heuristic_category,
    heuristic_importance,
    heuristic_tags,
)
from feed_crawler.analyzers.sanitize import clamp_importance, detect_language, sanitize_analysis, sanitize_tags
from feed_crawler.config import ProviderConfig
from feed_crawler.core.errors import AnalysisError
from feed_crawler.llm.providers.base import AnalysisOutcome, AnalysisProvider, AnalysisRequest, extract_json_object


class _ScriptedProvider(AnalysisProvider):
    """Provider returning canned text or raising a canned exception."""

    name = "scripted"

    def __init__(self, reply, api_key: str | None = "k"):
        super().__init__(ProviderConfig(name="scripted", model="m"), api_key=api_key)
        self.reply = reply
        self.calls = 0

    async def complete(self, request: AnalysisRequest) -> str:
        self.calls += 1
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def _request(**overrides) -> AnalysisRequest:
    values = {
        "title": "OpenAI launches a new model",
        "content": "Body text of the article.",
        "source_name": "Example",
        "source_category": "ai_company",
        "language": "en",
    }
    values.update(overrides)
    return AnalysisRequest(**values)


def test_importance_is_clamped():
    assert sanitize_analysis({"importance": 150}).importance == 100
    assert sanitize_analysis({"importance": -20}).importance == 0
    assert sanitize_analysis({"importance": 72.6}).importance == 73
    assert sanitize_analysis({}).importance == 50


def test_clamp_importance_rejects_non_numbers():
    assert clamp_importance("88") == 88
    assert clamp_importance("high") == 50
    assert clamp_importance(True) == 50
    assert clamp_importance(None) == 50
    assert clamp_importance(float("nan")) == 50
    assert clamp_importance(float("inf")) == 100


def test_tags_are_truncated_to_ten():
    tags = [f"tag{i}" for i in range(15)]
    assert sanitize_analysis({"tags": tags}).tags == tags[:10]


def test_sanitize_tags_filters_and_dedupes():
    assert sanitize_tags(["AI", "ai", " ", 3, "x" * 80]) == ["AI", "x" * 50]
    assert sanitize_tags("not a list") == []


def test_unknown_sentiment_becomes_neutral():
    assert sanitize_analysis({"sentiment": "ecstatic"}).sentiment == "neutral"
    assert sanitize_analysis({"sentiment": " Positive "}).sentiment == "positive"


def test_text_fields_are_capped_and_one_line_accepts_both_spellings():
    analysis = sanitize_analysis(
        {"summary": "s" * 900, "one_line": "o" * 300, "category": "c" * 80, "language": "zh-CN"}
    )
    assert len(analysis.summary) == 500
    assert len(analysis.one_line) == 140
    assert len(analysis.category) == 50
    assert analysis.language == "zh"
    assert sanitize_analysis({"oneLine": "camel"}).one_line == "camel"


def test_unknown_language_uses_detected_language():
    assert sanitize_analysis({"language": "fr"}, default_language="zh").language == "zh"
    assert sanitize_analysis({}, default_language="xx").language == "en"


def test_sanitize_rejects_non_mapping():
    with pytest.raises(AnalysisError):
        sanitize_analysis(["not", "a", "dict"])


def test_detect_language():
    assert detect_language("深度学习模型发布了新的版本") == "zh"
    assert detect_language("An English headline with one 字") == "en"
    assert detect_language("") == "en"


def test_extract_json_object_handles_fences_and_braces_in_strings():
    text = 'Sure!\n```json\n{"summary": "uses {braces}", "tags": ["a"]}\n```'
    assert json.loads(extract_json_object(text)) == {"summary": "uses {braces}", "tags": ["a"]}
    with pytest.raises(json.JSONDecodeError):
        extract_json_object("no json here")
    with pytest.raises(json.JSONDecodeError):
        extract_json_object('{"open": ')


def test_heuristic_rules():
    assert heuristic_category("Anthropic announces Claude") == "release"
    assert heuristic_category("New CVE in OpenSSL") == "security"
    assert heuristic_category("Weekly roundup") == "news"
    assert heuristic_tags("OpenAI: GPT-5 is here, see https://x.com/a") == ["openai", "gpt-5", "here", "see"]
    # 50 + 10 (ai_company) + 10 (company) + 8 (model) + 6 (launch)
    assert heuristic_importance("OpenAI launches GPT-5", "ai_company") == 84
    assert heuristic_importance("Gardening tips", None) == 50


def test_heuristic_keyword_tables_stay_narrow():
    assert heuristic_category("Dropbox raises new funding round") == "business"
    assert heuristic_category("Study finds remote teams happier") == "news"
    assert heuristic_category("GDPR fine handed to retailer") == "news"
    assert heuristic_importance("InfluxDB adds tracing", None) == 50
    assert heuristic_importance("Apple and Mistral sign a deal", None) == 50
    assert heuristic_importance("Mistral releases a new model", None) == 56
    assert heuristic_importance("Retailer confirms data breach", None) == 55


def test_heuristic_analyzer_output_is_sanitized():
    analysis = HeuristicAnalyzer().analyze(_request(content="x" * 2000))
    assert analysis.category == "release"
    assert analysis.one_line == "OpenAI launches a new model"
    assert len(analysis.summary) == 500
    assert analysis.sentiment == "neutral"
    assert 0 <= analysis.importance <= 100


def test_provider_analyze_wraps_success_and_failures():
    good = _ScriptedProvider('Here you go: {"summary": "ok", "importance": 500, "tags": ["x"]}')
    outcome = asyncio.run(good.analyze(_request()))
    assert outcome.ok
    assert outcome.provider == "scripted"
    assert outcome.analysis.importance == 100

    for reply in ("no json at all", '["a list"]', AnalysisError("scripted API error: 500 boom"), RuntimeError("x")):
        outcome = asyncio.run(_ScriptedProvider(reply).analyze(_request()))
        assert not outcome.ok
        assert outcome.error


def test_provider_requires_api_key():
    with pytest.raises(ValueError, match="Missing API key"):
        _ScriptedProvider("{}", api_key=None)


def test_cascade_uses_first_successful_provider():
    failing = _ScriptedProvider(AnalysisError("down"))
    working = _ScriptedProvider('{"summary": "from second", "category": "ai"}')
    unused = _ScriptedProvider('{"summary": "never"}')
    analyzer = ContentAnalyzer([failing, working, unused])

    analysis = asyncio.run(analyzer.analyze_article("Title", "Body", "Example"))

    assert analysis.summary == "from second"
    assert (failing.calls, working.calls, unused.calls) == (1, 1, 0)


def test_cascade_falls_back_to_heuristic():
    analyzer = ContentAnalyzer([_ScriptedProvider("garbage")])

    analysis = asyncio.run(analyzer.analyze_article("Research paper on benchmarks", "Body", "Example"))

    assert analysis.category == "research"
    assert asyncio.run(ContentAnalyzer([]).analyze_article("Plain", "", "Example")).category == "news"


def test_build_request_detects_language():
    request = ContentAnalyzer([]).build_request("人工智能新闻", "这是一个关于模型的报道", "Example")
    assert request.language == "zh"


def test_outcome_ok_reflects_analysis():
    assert not AnalysisOutcome(provider="p", error="e").ok
