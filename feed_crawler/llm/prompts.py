"""Prompt loading and rendering helpers for analysis providers."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from .providers.base import AnalysisRequest


_PROMPT_DIR = Path(__file__).resolve().parent.parent / "prompts"

_LANGUAGE_NAMES = {"en": "English", "zh": "Chinese"}


@lru_cache(maxsize=None)
def _load_template(name: str) -> str:
    path = _PROMPT_DIR / f"{name}.md"
    return path.read_text(encoding="utf-8").strip()


def _render_template(name: str, **values: str) -> str:
    template = _load_template(name)
    return template.format(**values)


def build_analysis_prompt(provider: str, request: AnalysisRequest, max_chars: int = 12000) -> str:
    """Render the analysis prompt for a provider family ("anthropic", "gemini", "openai")."""
    return _render_template(
        f"{provider}_analysis",
        source_name=request.source_name,
        source_category=request.source_category or "unknown",
        language_name=_LANGUAGE_NAMES.get(request.language, "English"),
        title=request.title,
        content=request.content[:max_chars],
    )
