"""Closed set of AI provider variants, selected by ``ProviderName``."""

from __future__ import annotations

import httpx

from sentinel.config import Settings
from sentinel.models.provider import ProviderName
from sentinel.services.providers.base import AIProvider
from sentinel.services.providers.gemini import GeminiProvider
from sentinel.services.providers.ollama import OllamaProvider
from sentinel.services.providers.openai import OpenAIProvider

PROVIDERS: dict[ProviderName, type[AIProvider]] = {
    ProviderName.hosted_a: OpenAIProvider,
    ProviderName.hosted_b: GeminiProvider,
    ProviderName.local: OllamaProvider,
}


def build_providers(
    http: httpx.AsyncClient, cfg: Settings,
) -> dict[ProviderName, AIProvider]:
    base_urls = {
        ProviderName.hosted_a: cfg.sentinel_hosted_a_base_url,
        ProviderName.hosted_b: cfg.sentinel_hosted_b_base_url,
        ProviderName.local: cfg.sentinel_local_base_url,
    }
    return {name: cls(http, base_urls[name]) for name, cls in PROVIDERS.items()}


__all__ = ["AIProvider", "PROVIDERS", "build_providers"]
