"""Provider-agnostic AI client.

Holds the active ``ProviderConfig`` and dispatches to one variant of the
closed provider set. Rate-limited calls are retried with capped exponential
backoff; every other provider error is raised to the caller unchanged.
"""

from __future__ import annotations

import asyncio

import httpx

from sentinel.config import Settings, settings
from sentinel.errors import ModelNotFound, RateLimited
from sentinel.models.provider import Completion, ProviderConfig, ProviderName
from sentinel.models.session import Turn
from sentinel.services.providers import AIProvider, build_providers
from sentinel.services.server_store import ServerStore, server_store
from sentinel.utils.logging import get_logger

log = get_logger(__name__)


class AIClient:
    def __init__(
        self,
        cfg: Settings | None = None,
        store: ServerStore | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._store = store or server_store
        self._http = http or httpx.AsyncClient(
            timeout=self._cfg.sentinel_provider_http_timeout_seconds,
        )
        self._providers = build_providers(self._http, self._cfg)
        self._switch_lock = asyncio.Lock()
        provider = ProviderName(self._cfg.sentinel_ai_provider)
        self._config = self._make_config(provider, self.default_model(provider))

    # ── configuration ────────────────────────────────────────────────

    def default_model(self, provider: ProviderName) -> str:
        return {
            ProviderName.hosted_a: self._cfg.sentinel_hosted_a_model,
            ProviderName.hosted_b: self._cfg.sentinel_hosted_b_model,
            ProviderName.local: self._cfg.sentinel_local_model,
        }[provider]

    def _make_config(self, provider: ProviderName, model: str) -> ProviderConfig:
        return ProviderConfig(
            provider=provider,
            model=model,
            credential=self._store.get_provider_credential(provider),
        )

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def provider(self) -> AIProvider:
        return self._providers[self._config.provider]

    def provider_for(self, config: ProviderConfig) -> AIProvider:
        return self._providers[config.provider]

    def context_budget(self, config: ProviderConfig | None = None) -> int:
        return self._cfg.context_budget((config or self._config).model)

    def describe(self) -> str:
        return self.provider.describe(self._config)

    async def switch(self, provider: ProviderName, model: str | None = None) -> ProviderConfig:
        """Make *provider*/*model* the active selection.

        The model is checked against the provider's own listing. Sessions
        keep their history; the new budget applies from the next prompt.
        """
        async with self._switch_lock:
            candidate = self._make_config(provider, model or self.default_model(provider))
            impl = self._providers[provider]
            available = await impl.list_models(candidate)
            if not impl.has_model(candidate.model, available):
                raise ModelNotFound(
                    f"model '{candidate.model}' is not offered by {provider.value}",
                    provider=provider.value,
                )
            previous = self._config
            self._config = candidate
        log.info(
            "ai.switched",
            from_provider=previous.provider.value,
            to_provider=provider.value,
            model=candidate.model,
        )
        return candidate

    # ── capability set ───────────────────────────────────────────────

    async def list_models(self, provider: ProviderName | None = None) -> list[str]:
        if provider is None or provider is self._config.provider:
            config = self._config
        else:
            config = self._make_config(provider, self.default_model(provider))
        return await self._providers[config.provider].list_models(config)

    async def complete(
        self, history: list[Turn], config: ProviderConfig | None = None,
    ) -> Completion:
        """Send *history* to the active (or given) provider."""
        config = config or self._config
        impl = self._providers[config.provider]
        max_retries = self._cfg.sentinel_provider_max_retries
        attempt = 0
        while True:
            try:
                completion = await impl.complete(history, config.model, config)
            except RateLimited as exc:
                if attempt >= max_retries:
                    log.warning(
                        "ai.rate_limited_giving_up",
                        provider=config.provider.value,
                        attempts=attempt + 1,
                    )
                    raise
                delay = self._backoff(attempt, exc.retry_after)
                attempt += 1
                log.info(
                    "ai.rate_limited_retry",
                    provider=config.provider.value,
                    attempt=attempt,
                    delay=delay,
                )
                await asyncio.sleep(delay)
                continue
            log.info(
                "ai.completed",
                provider=config.provider.value,
                model=config.model,
                tokens=completion.usage.total_tokens,
                exact=completion.usage.exact,
            )
            return completion

    def _backoff(self, attempt: int, retry_after: float | None) -> float:
        cap = self._cfg.sentinel_provider_backoff_cap_seconds
        delay = self._cfg.sentinel_provider_backoff_seconds * (2 ** attempt)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, cap)

    async def close(self) -> None:
        await self._http.aclose()


# Singleton instance
ai_client = AIClient()
