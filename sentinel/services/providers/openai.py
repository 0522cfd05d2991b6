"""hosted-a: OpenAI-compatible chat completions API."""

from __future__ import annotations

from sentinel.errors import ProviderUnavailable
from sentinel.models.provider import Completion, ProviderConfig, ProviderName, Usage
from sentinel.models.session import Turn
from sentinel.services.providers.base import AIProvider


class OpenAIProvider(AIProvider):
    name = ProviderName.hosted_a
    chars_per_token = 4.0

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        if not config.credential.present:
            raise ProviderUnavailable(
                f"no API key configured for {self.name.value}",
                provider=self.name.value,
            )
        return {"Authorization": f"Bearer {config.credential.reveal()}"}

    async def complete(
        self, history: list[Turn], model: str, config: ProviderConfig,
    ) -> Completion:
        body = {
            "model": model,
            "messages": [
                {"role": self.wire_role(t), "content": t.text} for t in history
            ],
        }
        data = await self._request(
            "POST",
            f"{self.base_url}/chat/completions",
            model=model,
            headers=self._headers(config),
            json=body,
        )
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise self._malformed("choices[0].message.content") from None
        if not isinstance(text, str):
            raise self._malformed("text content")

        raw_usage = data.get("usage") if isinstance(data, dict) else None
        if isinstance(raw_usage, dict) and "prompt_tokens" in raw_usage:
            usage = Usage(
                prompt_tokens=int(raw_usage.get("prompt_tokens", 0)),
                completion_tokens=int(raw_usage.get("completion_tokens", 0)),
                exact=True,
            )
        else:
            usage = Usage(
                prompt_tokens=self.estimate_history(history),
                completion_tokens=self.estimate_tokens(text),
            )
        return Completion(text=text, usage=usage, provider=self.name, model=model)

    async def list_models(self, config: ProviderConfig) -> list[str]:
        data = await self._request(
            "GET", f"{self.base_url}/models", headers=self._headers(config),
        )
        try:
            return sorted(m["id"] for m in data["data"])
        except (KeyError, TypeError):
            raise self._malformed("data[].id") from None
