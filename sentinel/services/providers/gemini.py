"""hosted-b: Gemini ``generateContent`` API."""

from __future__ import annotations

from typing import Any

from sentinel.errors import ProviderUnavailable
from sentinel.models.provider import Completion, ProviderConfig, ProviderName, Usage
from sentinel.models.session import Role, Turn
from sentinel.services.providers.base import AIProvider


class GeminiProvider(AIProvider):
    name = ProviderName.hosted_b
    chars_per_token = 4.0

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        if not config.credential.present:
            raise ProviderUnavailable(
                f"no API key configured for {self.name.value}",
                provider=self.name.value,
            )
        return {"x-goog-api-key": config.credential.reveal()}

    @staticmethod
    def _contents(history: list[Turn]) -> tuple[list[dict[str, Any]], str]:
        """Build Gemini ``contents``; consecutive same-role turns are merged."""
        system_parts: list[str] = []
        contents: list[dict[str, Any]] = []
        for turn in history:
            if turn.role is Role.system:
                system_parts.append(turn.text)
                continue
            role = "model" if turn.role is Role.assistant else "user"
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].append({"text": turn.text})
            else:
                contents.append({"role": role, "parts": [{"text": turn.text}]})
        return contents, "\n\n".join(system_parts)

    async def complete(
        self, history: list[Turn], model: str, config: ProviderConfig,
    ) -> Completion:
        contents, system = self._contents(history)
        body: dict[str, Any] = {"contents": contents}
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        data = await self._request(
            "POST",
            f"{self.base_url}/{model}:generateContent",
            model=model,
            headers=self._headers(config),
            json=body,
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(p.get("text", "") for p in parts)
        except (KeyError, IndexError, TypeError, AttributeError):
            raise self._malformed("candidates[0].content.parts") from None

        meta = data.get("usageMetadata")
        if isinstance(meta, dict) and "promptTokenCount" in meta:
            usage = Usage(
                prompt_tokens=int(meta.get("promptTokenCount", 0)),
                completion_tokens=int(meta.get("candidatesTokenCount", 0)),
                exact=True,
            )
        else:
            usage = Usage(
                prompt_tokens=self.estimate_history(history),
                completion_tokens=self.estimate_tokens(text),
            )
        return Completion(text=text, usage=usage, provider=self.name, model=model)

    async def list_models(self, config: ProviderConfig) -> list[str]:
        data = await self._request("GET", self.base_url, headers=self._headers(config))
        try:
            names = [m["name"] for m in data["models"]]
        except (KeyError, TypeError):
            raise self._malformed("models[].name") from None
        return sorted(n.removeprefix("models/") for n in names)
