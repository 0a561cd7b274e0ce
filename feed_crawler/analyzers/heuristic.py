"""Keyword heuristics used when no AI provider produced an analysis."""

from __future__ import annotations

import re

from ..core.types import Analysis
from ..llm.providers.base import AnalysisRequest
from .sanitize import sanitize_analysis


HEURISTIC_SUMMARY_CHARS = 600
MAX_HEURISTIC_TAGS = 8

CATEGORY_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("release", re.compile(r"(release|launch|announce|introduc|unveil|ship)")),
    ("research", re.compile(r"(research|paper|benchmark|dataset|arxiv)")),
    ("security", re.compile(r"(security|vuln|cve|attack|prompt injection)")),
    ("business", re.compile(r"(funding|acquir|ipo|valuation|invest)")),
    ("policy", re.compile(r"(policy|regulat|law|compliance|copyright)")),
]

# Matched against the lowercased title; bonuses add up
IMPORTANCE_RULES: list[tuple[int, re.Pattern[str]]] = [
    (10, re.compile(r"(openai|anthropic|deepmind|google|meta|microsoft|amazon|nvidia)")),
    (8, re.compile(r"(gpt|claude|gemini|llama|qwen|kimi|deepseek)")),
    (6, re.compile(r"(release|launch|announce|unveil)")),
    (5, re.compile(r"(vulnerabilit|breach|data leak)")),
]

_URL_RE = re.compile(r"https?://\S+")
_NON_WORD_RE = re.compile(r"[^\w\s-]")


def heuristic_category(title: str) -> str:
    lowered = title.lower()
    for category, pattern in CATEGORY_RULES:
        if pattern.search(lowered):
            return category
    return "news"


def heuristic_tags(title: str) -> list[str]:
    """Lowercased title tokens of 3-24 characters, deduplicated, at most 8."""
    cleaned = _NON_WORD_RE.sub(" ", _URL_RE.sub("", title)).strip()
    tags: list[str] = []
    for token in cleaned.split():
        if not 3 <= len(token) <= 24:
            continue
        lowered = token.lower()
        if lowered in tags:
            continue
        tags.append(lowered)
        if len(tags) >= MAX_HEURISTIC_TAGS:
            break
    return tags


def heuristic_importance(title: str, source_category: str | None) -> int:
    score = 50
    if source_category == "ai_company":
        score += 10
    lowered = title.lower()
    for bonus, pattern in IMPORTANCE_RULES:
        if pattern.search(lowered):
            score += bonus
    return max(0, min(100, score))


class HeuristicAnalyzer:
    """Network-free analyzer; always succeeds."""

    name = "heuristic"

    def analyze(self, request: AnalysisRequest) -> Analysis:
        title = request.title.strip()
        summary = request.content.strip()[:HEURISTIC_SUMMARY_CHARS]
        return sanitize_analysis(
            {
                "summary": summary or None,
                "oneLine": title[:140],
                "category": heuristic_category(title),
                "tags": heuristic_tags(title),
                "importance": heuristic_importance(title, request.source_category),
                "sentiment": "neutral",
                "language": request.language,
            },
            default_language=request.language,
        )
