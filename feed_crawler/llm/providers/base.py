"""Abstract interface for AI analysis providers.

Each provider turns an AnalysisRequest into raw model text. The shared
analyze() wrapper extracts the JSON object, sanitizes it and converts every
failure into an AnalysisOutcome, so callers never see provider exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import json
import logging
from typing import Any

import httpx

from ...config import ProviderConfig
from ...core.errors import AnalysisError
from ...core.types import Analysis
from ..tracing import analysis_span, record_span_error, set_span_output


@dataclass
class AnalysisRequest:
    """Input to the analysis cascade.

    Attributes:
        title: Article title
        content: Article body (truncated when rendered into prompts)
        source_name: Name of the source the article came from
        source_category: Source category, if any
        language: Detected article language ("en" or "zh")
    """

    title: str
    content: str
    source_name: str
    source_category: str | None = None
    language: str = "en"


@dataclass
class AnalysisOutcome:
    """Result-or-error value returned by every provider."""

    provider: str
    analysis: Analysis | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.analysis is not None


class AnalysisProvider(ABC):
    """Provider interface for article classification and scoring."""

    name: str = "provider"

    def __init__(
        self,
        cfg: ProviderConfig,
        api_key: str | None,
        max_content_chars: int = 12000,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ):
        if not api_key:
            raise ValueError(f"Missing API key for provider {cfg.name}")
        self.cfg = cfg
        self.api_key = api_key
        self.max_content_chars = max_content_chars
        self.client = client
        self.logger = logger

    async def analyze(self, request: AnalysisRequest) -> AnalysisOutcome:
        """Run one analysis call; never raises."""
        # Local import: sanitize lives in analyzers, which imports this module
        from ...analyzers.sanitize import sanitize_analysis

        with analysis_span(
            self.name, self.cfg.model, request.title, request.source_name, request.language
        ) as span:
            try:
                text = await self.complete(request)
                set_span_output(span, text)
                data = json.loads(extract_json_object(text))
                analysis = sanitize_analysis(data, default_language=request.language)
            except httpx.TimeoutException as exc:
                record_span_error(span, exc)
                return self._error(f"{self.name} request timed out after {self.cfg.timeout_seconds}s")
            except httpx.HTTPError as exc:
                record_span_error(span, exc)
                return self._error(f"{self.name} request failed: {type(exc).__name__}: {exc}")
            except json.JSONDecodeError as exc:
                record_span_error(span, exc)
                return self._error(f"Invalid JSON in {self.name} response: {exc}")
            except AnalysisError as exc:
                record_span_error(span, exc)
                return self._error(str(exc))
            except Exception as exc:  # noqa: BLE001
                record_span_error(span, exc)
                return self._error(f"{type(exc).__name__}: {exc}")

        return AnalysisOutcome(provider=self.name, analysis=analysis)

    @abstractmethod
    async def complete(self, request: AnalysisRequest) -> str:
        """Return the raw model text for a request.

        Raises:
            AnalysisError: On non-2xx responses or responses without text
            httpx.HTTPError: On transport failures
        """
        raise NotImplementedError

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        if self.client is not None:
            resp = await self.client.post(
                url, json=payload, headers=headers, params=params, timeout=self.cfg.timeout_seconds
            )
        else:
            async with httpx.AsyncClient(timeout=self.cfg.timeout_seconds) as client:
                resp = await client.post(url, json=payload, headers=headers, params=params)
        if not 200 <= resp.status_code < 300:
            raise AnalysisError(f"{self.name} API error: {resp.status_code} {resp.text[:500]}")
        return resp.json()

    def _error(self, message: str) -> AnalysisOutcome:
        return AnalysisOutcome(provider=self.name, error=message)


def extract_json_object(text: str) -> str:
    """Return the first balanced {...} block in text.

    Raises:
        json.JSONDecodeError: If no complete object is present
    """
    if not text:
        raise json.JSONDecodeError("Empty content", text or "", 0)
    start = text.find("{")
    if start == -1:
        raise json.JSONDecodeError("No JSON object found", text, 0)

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    raise json.JSONDecodeError("Unbalanced JSON object", text, start)
