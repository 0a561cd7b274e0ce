"""Cascading article analysis: configured AI providers in order, heuristic last."""

from __future__ import annotations

import logging

from ..core.types import Analysis
from ..llm.providers.base import AnalysisProvider, AnalysisRequest
from ..utils.logging import log_event
from .heuristic import HeuristicAnalyzer
from .sanitize import detect_language


class ContentAnalyzer:
    """Runs the provider cascade for one article at a time."""

    def __init__(
        self,
        providers: list[AnalysisProvider],
        logger: logging.Logger | None = None,
        heuristic: HeuristicAnalyzer | None = None,
    ):
        self.providers = list(providers)
        self.logger = logger
        self.heuristic = heuristic or HeuristicAnalyzer()

    def build_request(
        self,
        title: str,
        content: str,
        source_name: str,
        source_category: str | None = None,
    ) -> AnalysisRequest:
        language = detect_language(f"{title}\n{content}")
        return AnalysisRequest(
            title=title,
            content=content,
            source_name=source_name,
            source_category=source_category,
            language=language,
        )

    async def analyze(self, request: AnalysisRequest) -> Analysis:
        """Return the first successful provider analysis, else the heuristic one."""
        for provider in self.providers:
            outcome = await provider.analyze(request)
            if outcome.ok and outcome.analysis is not None:
                log_event(
                    self.logger,
                    "Analysis complete",
                    level=logging.DEBUG,
                    event="analysis_complete",
                    provider=outcome.provider,
                    title=request.title,
                )
                return outcome.analysis
            log_event(
                self.logger,
                "Analysis provider failed",
                level=logging.WARNING,
                event="analysis_provider_failed",
                provider=outcome.provider,
                title=request.title,
                error=outcome.error,
            )
        return self.heuristic.analyze(request)

    async def analyze_article(
        self,
        title: str,
        content: str,
        source_name: str,
        source_category: str | None = None,
    ) -> Analysis:
        request = self.build_request(title, content, source_name, source_category)
        return await self.analyze(request)
