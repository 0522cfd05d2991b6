"""local: Ollama model server."""

from __future__ import annotations

from sentinel.models.provider import Completion, ProviderConfig, ProviderName, Usage
from sentinel.models.session import Turn
from sentinel.services.providers.base import AIProvider


class OllamaProvider(AIProvider):
    name = ProviderName.local
    # Llama-family tokenizers split text a little finer than cl100k
    chars_per_token = 3.5

    async def complete(
        self, history: list[Turn], model: str, config: ProviderConfig,
    ) -> Completion:
        body = {
            "model": model,
            "messages": [
                {"role": self.wire_role(t), "content": t.text} for t in history
            ],
            "stream": False,
        }
        data = await self._request(
            "POST", f"{self.base_url}/chat", model=model, json=body,
        )
        try:
            text = data["message"]["content"]
        except (KeyError, TypeError):
            raise self._malformed("message.content") from None
        if not isinstance(text, str):
            raise self._malformed("text content")

        if "prompt_eval_count" in data and "eval_count" in data:
            usage = Usage(
                prompt_tokens=int(data["prompt_eval_count"]),
                completion_tokens=int(data["eval_count"]),
                exact=True,
            )
        else:
            usage = Usage(
                prompt_tokens=self.estimate_history(history),
                completion_tokens=self.estimate_tokens(text),
            )
        return Completion(text=text, usage=usage, provider=self.name, model=model)

    async def list_models(self, config: ProviderConfig) -> list[str]:
        root = self.base_url.removesuffix("/api")
        data = await self._request("GET", f"{root}/api/tags")
        try:
            return sorted(m["name"] for m in data["models"])
        except (KeyError, TypeError):
            raise self._malformed("models[].name") from None

    def has_model(self, model: str, available: list[str]) -> bool:
        # "llama3" refers to the "llama3:latest" tag
        return model in available or f"{model}:latest" in available
