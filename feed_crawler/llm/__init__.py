"""LLM analysis providers and observability."""

from .providers.base import AnalysisOutcome, AnalysisProvider, AnalysisRequest
from .providers.factory import available_providers, build_providers, create_provider
from .tracing import (
    analysis_span,
    batch_span,
    flush,
    record_batch_result,
    record_source_metrics,
    record_span_error,
    set_span_output,
    setup_langfuse,
    source_span,
    start_span,
)

__all__ = [
    "AnalysisOutcome",
    "AnalysisProvider",
    "AnalysisRequest",
    "available_providers",
    "build_providers",
    "create_provider",
    "setup_langfuse",
    "flush",
    "start_span",
    "batch_span",
    "source_span",
    "analysis_span",
    "set_span_output",
    "record_span_error",
    "record_source_metrics",
    "record_batch_result",
]
