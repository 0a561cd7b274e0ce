"""Provider factory and registry for hot-swappable analysis backends."""

from __future__ import annotations

import logging

import httpx

from ...config import ProviderConfig, get_api_key
from .anthropic import AnthropicProvider
from .base import AnalysisProvider
from .gemini import GeminiProvider
from .openai_compatible import OpenAICompatibleProvider


ProviderBuilder = type[AnalysisProvider]

_PROVIDER_REGISTRY: dict[str, ProviderBuilder] = {
    "anthropic": AnthropicProvider,
    "claude": AnthropicProvider,
    "gemini": GeminiProvider,
    "openai": OpenAICompatibleProvider,
    "openai_compatible": OpenAICompatibleProvider,
    "openai-compatible": OpenAICompatibleProvider,
}


def available_providers() -> list[str]:
    """Return the set of registered provider names."""
    return sorted(_PROVIDER_REGISTRY.keys())


def create_provider(
    provider_cfg: ProviderConfig,
    max_content_chars: int = 12000,
    client: httpx.AsyncClient | None = None,
    logger: logging.Logger | None = None,
) -> AnalysisProvider:
    """Build a provider instance from runtime config.

    Raises:
        ValueError: For unknown provider names or a missing API key
    """
    name = provider_cfg.name.lower().strip()
    builder = _PROVIDER_REGISTRY.get(name)
    if builder is None:
        supported = ", ".join(available_providers())
        raise ValueError(f"Unsupported provider: {provider_cfg.name}. Supported: {supported}")
    api_key = get_api_key(provider_cfg)
    return builder(provider_cfg, api_key, max_content_chars, client=client, logger=logger)


def build_providers(
    configs: list[ProviderConfig],
    max_content_chars: int = 12000,
    client: httpx.AsyncClient | None = None,
    logger: logging.Logger | None = None,
) -> list[AnalysisProvider]:
    """Instantiate every configured provider that has credentials, in order.

    Unknown provider names still raise; missing credentials just skip.
    """
    providers: list[AnalysisProvider] = []
    for cfg in configs:
        if not get_api_key(cfg):
            if cfg.name.lower().strip() not in _PROVIDER_REGISTRY:
                supported = ", ".join(available_providers())
                raise ValueError(f"Unsupported provider: {cfg.name}. Supported: {supported}")
            continue
        providers.append(create_provider(cfg, max_content_chars, client=client, logger=logger))
    return providers
