"""OpenAI-compatible chat completions provider (OpenAI, OpenRouter, vLLM, ...)."""

from __future__ import annotations

from typing import Any

from ...core.errors import AnalysisError
from ..prompts import build_analysis_prompt
from .base import AnalysisProvider, AnalysisRequest


DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatibleProvider(AnalysisProvider):
    """Analysis over any /chat/completions endpoint."""

    name = "openai"

    async def complete(self, request: AnalysisRequest) -> str:
        prompt = build_analysis_prompt("openai", request, self.max_content_chars)
        base_url = (self.cfg.base_url or DEFAULT_BASE_URL).rstrip("/")
        data = await self._post(
            f"{base_url}/chat/completions",
            payload={
                "model": self.cfg.model,
                "temperature": self.cfg.temperature,
                "max_tokens": self.cfg.max_output_tokens,
                "response_format": {"type": "json_object"},
                "messages": [
                    {"role": "system", "content": "You are a news analyst. Reply with JSON only."},
                    {"role": "user", "content": prompt},
                ],
            },
            headers={
                "content-type": "application/json",
                "authorization": f"Bearer {self.api_key}",
            },
        )
        text = _extract_text(data)
        if not text:
            raise AnalysisError("No text in chat completion response")
        return text


def _extract_text(data: dict[str, Any]) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return (content or "").strip()
