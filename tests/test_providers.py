"""Tests for provider adapters and the AI client, using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from sentinel.errors import (
    MalformedResponse,
    ModelNotFound,
    ProviderUnavailable,
    RateLimited,
)
from sentinel.models.provider import ProviderConfig, ProviderName
from sentinel.models.server import CredentialRef
from sentinel.models.session import Role, Turn
from sentinel.services.ai_client import AIClient
from sentinel.services.providers.gemini import GeminiProvider
from sentinel.services.providers.ollama import OllamaProvider
from sentinel.services.providers.openai import OpenAIProvider

HISTORY = [
    Turn(role=Role.system, text="You are a helpful assistant."),
    Turn(role=Role.operator, text="How full is the disk?"),
]


def _http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _config(provider: ProviderName, model: str, key: str = "k-test") -> ProviderConfig:
    return ProviderConfig(
        provider=provider,
        model=model,
        credential=CredentialRef(provider=provider.value, secret=key),
    )


class TestOpenAI:
    @pytest.mark.asyncio
    async def test_complete_with_exact_usage(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "RUN: df -h"}}],
                "usage": {"prompt_tokens": 21, "completion_tokens": 4},
            })

        provider = OpenAIProvider(_http(handler), "https://openai.test/v1")
        completion = await provider.complete(
            HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o"),
        )
        assert completion.text == "RUN: df -h"
        assert completion.usage.exact is True
        assert completion.usage.total_tokens == 25
        assert seen["auth"] == "Bearer k-test"
        assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_estimated_usage_when_missing(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        provider = OpenAIProvider(_http(handler), "https://openai.test/v1")
        completion = await provider.complete(
            HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o"),
        )
        assert completion.usage.exact is False
        assert completion.usage.prompt_tokens > 0

    @pytest.mark.asyncio
    async def test_missing_key(self):
        provider = OpenAIProvider(_http(lambda r: httpx.Response(200)), "https://openai.test/v1")
        with pytest.raises(ProviderUnavailable):
            await provider.complete(
                HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o", key=""),
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,exc",
        [
            (429, RateLimited),
            (404, ModelNotFound),
            (401, ProviderUnavailable),
            (503, ProviderUnavailable),
        ],
    )
    async def test_status_mapping(self, status, exc):
        provider = OpenAIProvider(
            _http(lambda r: httpx.Response(status, json={})), "https://openai.test/v1",
        )
        with pytest.raises(exc):
            await provider.complete(
                HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o"),
            )

    @pytest.mark.asyncio
    async def test_retry_after_parsed(self):
        provider = OpenAIProvider(
            _http(lambda r: httpx.Response(429, headers={"retry-after": "7"})),
            "https://openai.test/v1",
        )
        with pytest.raises(RateLimited) as info:
            await provider.complete(
                HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o"),
            )
        assert info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        provider = OpenAIProvider(
            _http(lambda r: httpx.Response(200, json={"choices": []})),
            "https://openai.test/v1",
        )
        with pytest.raises(MalformedResponse):
            await provider.complete(
                HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o"),
            )

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        provider = OpenAIProvider(
            _http(lambda r: httpx.Response(200, text="<html>gateway</html>")),
            "https://openai.test/v1",
        )
        with pytest.raises(MalformedResponse):
            await provider.complete(
                HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o"),
            )

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = OpenAIProvider(_http(handler), "https://openai.test/v1")
        with pytest.raises(ProviderUnavailable):
            await provider.complete(
                HISTORY, "gpt-4o", _config(ProviderName.hosted_a, "gpt-4o"),
            )


class TestGemini:
    @pytest.mark.asyncio
    async def test_request_shape_and_usage(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Disk is "}, {"text": "fine."}]}}],
                "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 3},
            })

        provider = GeminiProvider(_http(handler), "https://gemini.test/v1beta/models")
        history = HISTORY + [
            Turn(role=Role.tool_result, text="Command output: 45%"),
            Turn(role=Role.assistant, text="Looks fine."),
        ]
        completion = await provider.complete(
            history, "gemini-1.5-flash", _config(ProviderName.hosted_b, "gemini-1.5-flash"),
        )
        assert completion.text == "Disk is fine."
        assert completion.usage.total_tokens == 15
        assert seen["url"].endswith("/gemini-1.5-flash:generateContent")
        assert seen["key"] == "k-test"
        contents = seen["body"]["contents"]
        # operator + tool result merge into one user entry
        assert [c["role"] for c in contents] == ["user", "model"]
        assert len(contents[0]["parts"]) == 2
        assert seen["body"]["systemInstruction"]["parts"][0]["text"] == HISTORY[0].text

    @pytest.mark.asyncio
    async def test_list_models_strips_prefix(self):
        def handler(request):
            return httpx.Response(200, json={"models": [
                {"name": "models/gemini-1.5-pro"}, {"name": "models/gemini-1.5-flash"},
            ]})

        provider = GeminiProvider(_http(handler), "https://gemini.test/v1beta/models")
        models = await provider.list_models(_config(ProviderName.hosted_b, "x"))
        assert models == ["gemini-1.5-flash", "gemini-1.5-pro"]


class TestOllama:
    @pytest.mark.asyncio
    async def test_complete(self, scripted_ai):
        scripted_ai.reply("RUN: uptime")
        provider = OllamaProvider(_http(scripted_ai.handler), "http://ollama.test/api")
        completion = await provider.complete(
            HISTORY, "llama3", _config(ProviderName.local, "llama3", key=""),
        )
        assert completion.text == "RUN: uptime"
        assert completion.usage.exact is True
        assert scripted_ai.chat_requests()[0]["stream"] is False

    @pytest.mark.asyncio
    async def test_latest_tag_matches(self, scripted_ai):
        provider = OllamaProvider(_http(scripted_ai.handler), "http://ollama.test/api")
        models = await provider.list_models(_config(ProviderName.local, "llama3"))
        assert provider.has_model("llama3", models)
        assert not provider.has_model("phi3", models)


class TestEstimation:
    def test_ratio_differs_per_provider(self):
        http = _http(lambda r: httpx.Response(200))
        text = "x" * 350
        assert OllamaProvider(http, "http://o").estimate_tokens(text) == 100
        assert OpenAIProvider(http, "http://o").estimate_tokens(text) == 88
        assert OpenAIProvider(http, "http://o").estimate_tokens("") == 0


class TestAIClient:
    @pytest.mark.asyncio
    async def test_rate_limit_retried(self, ai, scripted_ai):
        scripted_ai.reply(
            httpx.Response(429, headers={"retry-after": "0"}),
            httpx.Response(429),
            "All good.",
        )
        completion = await ai.complete(HISTORY)
        assert completion.text == "All good."
        assert len(scripted_ai.chat_requests()) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_gives_up(self, ai, scripted_ai, test_settings):
        attempts = test_settings.sentinel_provider_max_retries + 1
        scripted_ai.reply(*[httpx.Response(429) for _ in range(attempts)])
        with pytest.raises(RateLimited):
            await ai.complete(HISTORY)
        assert len(scripted_ai.chat_requests()) == attempts

    @pytest.mark.asyncio
    async def test_unavailable_not_retried(self, ai, scripted_ai):
        scripted_ai.reply(httpx.Response(500))
        with pytest.raises(ProviderUnavailable):
            await ai.complete(HISTORY)
        assert len(scripted_ai.chat_requests()) == 1

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, ai, test_settings):
        cap = test_settings.sentinel_provider_backoff_cap_seconds
        assert ai._backoff(0, None) == pytest.approx(0.001)
        assert ai._backoff(20, None) == cap
        assert ai._backoff(0, 60.0) == cap

    @pytest.mark.asyncio
    async def test_switch_to_unknown_model_keeps_config(self, ai):
        before = ai.config
        with pytest.raises(ModelNotFound):
            await ai.switch(ProviderName.local, "phi3")
        assert ai.config == before

    @pytest.mark.asyncio
    async def test_switch_changes_budget(self, ai, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert ai.context_budget() == 8192
        config = await ai.switch(ProviderName.hosted_a, "gpt-4o")
        assert config.credential.present
        assert ai.config.provider is ProviderName.hosted_a
        assert ai.context_budget() == 128000

    def test_credential_not_in_repr(self, monkeypatch, store):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-very-secret")
        ref = store.get_provider_credential(ProviderName.hosted_a)
        assert ref.present
        assert "sk-very-secret" not in repr(ref)
        assert ref.source == "env:OPENAI_API_KEY"
