"""Google Gemini provider using the generateContent endpoint."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from ...core.errors import AnalysisError
from ..prompts import build_analysis_prompt
from .base import AnalysisProvider, AnalysisRequest


DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"


class GeminiProvider(AnalysisProvider):
    """Gemini-backed analysis."""

    name = "gemini"

    async def complete(self, request: AnalysisRequest) -> str:
        prompt = build_analysis_prompt("gemini", request, self.max_content_chars)
        base_url = (self.cfg.base_url or DEFAULT_BASE_URL).rstrip("/")
        model = quote(self.cfg.model, safe="")
        data = await self._post(
            f"{base_url}/v1beta/models/{model}:generateContent",
            payload={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self.cfg.temperature,
                    "maxOutputTokens": self.cfg.max_output_tokens,
                },
            },
            headers={"content-type": "application/json"},
            params={"key": self.api_key},
        )
        text = _extract_text(data)
        if not text:
            raise AnalysisError("No text in Gemini response")
        return text


def _extract_text(data: dict[str, Any]) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
