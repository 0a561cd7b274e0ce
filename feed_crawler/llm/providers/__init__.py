"""AI analysis provider strategies."""

from .base import AnalysisOutcome, AnalysisProvider, AnalysisRequest, extract_json_object
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider
from .openai_compatible import OpenAICompatibleProvider
from .factory import available_providers, build_providers, create_provider

__all__ = [
    "AnalysisOutcome",
    "AnalysisProvider",
    "AnalysisRequest",
    "extract_json_object",
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "available_providers",
    "build_providers",
    "create_provider",
]
