"""
Sanitization of analysis payloads and language detection.

Every analysis, whether produced by a model or by the heuristic analyzer,
passes through sanitize_analysis so length caps, enums and the importance
range hold no matter what the provider returned.
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping

from ..core.errors import AnalysisError
from ..core.types import LANGUAGES, SENTIMENTS, Analysis


SUMMARY_MAX_CHARS = 500
ONE_LINE_MAX_CHARS = 140
CATEGORY_MAX_CHARS = 50
TAG_MAX_CHARS = 50
MAX_TAGS = 10
DEFAULT_IMPORTANCE = 50

LANGUAGE_SAMPLE_CHARS = 4000
CJK_RATIO_THRESHOLD = 0.1

_CJK_RE = re.compile(r"[\u4e00-\u9fff]")


def detect_language(text: str) -> str:
    """Return "zh" if CJK ideographs exceed 10% of the sample, else "en"."""
    sample = (text or "")[:LANGUAGE_SAMPLE_CHARS]
    if not sample:
        return "en"
    cjk = len(_CJK_RE.findall(sample))
    return "zh" if cjk > len(sample) * CJK_RATIO_THRESHOLD else "en"


def sanitize_analysis(data: Any, default_language: str = "en") -> Analysis:
    """Coerce an untrusted analysis mapping into a valid Analysis.

    Raises:
        AnalysisError: If data is not a mapping
    """
    if not isinstance(data, Mapping):
        raise AnalysisError(f"Invalid analysis result: expected an object, got {type(data).__name__}")

    return Analysis(
        summary=_capped(data.get("summary"), SUMMARY_MAX_CHARS),
        one_line=_capped(_first(data, "oneLine", "one_line"), ONE_LINE_MAX_CHARS),
        category=_capped(data.get("category"), CATEGORY_MAX_CHARS),
        tags=sanitize_tags(data.get("tags")),
        importance=clamp_importance(data.get("importance")),
        sentiment=_sentiment(data.get("sentiment")),
        language=_language(data.get("language"), default_language),
    )


def sanitize_tags(raw: Any, max_tags: int = MAX_TAGS) -> list[str]:
    """Keep string tags, trimmed and capped, deduplicated case-insensitively."""
    if not isinstance(raw, (list, tuple)):
        return []
    seen: set[str] = set()
    tags: list[str] = []
    for value in raw:
        if not isinstance(value, str):
            continue
        tag = value.strip()[:TAG_MAX_CHARS].strip()
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        tags.append(tag)
        if len(tags) >= max_tags:
            break
    return tags


def clamp_importance(value: Any) -> int:
    """Integer importance in [0, 100]; non-numeric input becomes 50."""
    if isinstance(value, bool):
        return DEFAULT_IMPORTANCE
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return DEFAULT_IMPORTANCE
    if not isinstance(value, (int, float)) or math.isnan(value):
        return DEFAULT_IMPORTANCE
    if math.isinf(value):
        return 100 if value > 0 else 0
    return max(0, min(100, int(round(value))))


def _sentiment(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in SENTIMENTS:
        return value.strip().lower()
    return "neutral"


def _language(value: Any, default_language: str) -> str:
    fallback = default_language if default_language in LANGUAGES else "en"
    if not isinstance(value, str):
        return fallback
    lowered = value.strip().lower()
    for lang in LANGUAGES:
        if lowered == lang or lowered.startswith(f"{lang}-") or lowered.startswith(f"{lang}_"):
            return lang
    return fallback


def _capped(value: Any, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text[:max_chars] if text else None


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None
