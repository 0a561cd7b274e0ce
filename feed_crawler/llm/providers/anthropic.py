"""Anthropic Messages API provider."""

from __future__ import annotations

from typing import Any

from ...core.errors import AnalysisError
from ..prompts import build_analysis_prompt
from .base import AnalysisProvider, AnalysisRequest


DEFAULT_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(AnalysisProvider):
    """Claude-backed analysis via the Messages API."""

    name = "anthropic"

    async def complete(self, request: AnalysisRequest) -> str:
        prompt = build_analysis_prompt("anthropic", request, self.max_content_chars)
        base_url = (self.cfg.base_url or DEFAULT_BASE_URL).rstrip("/")
        data = await self._post(
            f"{base_url}/v1/messages",
            payload={
                "model": self.cfg.model,
                "max_tokens": self.cfg.max_output_tokens,
                "temperature": self.cfg.temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
            headers={
                "content-type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )
        text = _extract_text(data)
        if not text:
            raise AnalysisError("No text in Anthropic response")
        return text


def _extract_text(data: dict[str, Any]) -> str:
    blocks = data.get("content") or []
    parts = [
        block.get("text", "")
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "".join(parts).strip()
