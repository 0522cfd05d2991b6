"""Common capability set for AI backends.

Each backend implements ``complete``, ``list_models`` and keeps its own
token-estimation ratio. HTTP status codes are mapped to the provider error
taxonomy here so that concrete adapters only deal with request and response
shapes.
"""

from __future__ import annotations

import abc
import math
from typing import Any

import httpx

from sentinel.errors import (
    MalformedResponse,
    ModelNotFound,
    ProviderUnavailable,
    RateLimited,
)
from sentinel.models.provider import Completion, ProviderConfig, ProviderName
from sentinel.models.session import Role, Turn
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

# Formatting overhead per message (role markers, separators)
TURN_OVERHEAD_TOKENS = 4


class AIProvider(abc.ABC):
    """One variant of the closed provider set."""

    name: ProviderName
    chars_per_token: float = 4.0

    def __init__(self, http: httpx.AsyncClient, base_url: str) -> None:
        self._http = http
        self.base_url = base_url.rstrip("/")

    # ── capability set ───────────────────────────────────────────────

    @abc.abstractmethod
    async def complete(
        self, history: list[Turn], model: str, config: ProviderConfig,
    ) -> Completion:
        ...

    @abc.abstractmethod
    async def list_models(self, config: ProviderConfig) -> list[str]:
        ...

    def estimate_tokens(self, text: str) -> int:
        """Heuristic token count from character length."""
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def estimate_turn(self, turn: Turn) -> int:
        return self.estimate_tokens(turn.text) + TURN_OVERHEAD_TOKENS

    def estimate_history(self, history: list[Turn]) -> int:
        return sum(self.estimate_turn(t) for t in history)

    def has_model(self, model: str, available: list[str]) -> bool:
        return model in available

    def describe(self, config: ProviderConfig) -> str:
        return f"{self.name.value} (model: {config.model}, url: {self.base_url})"

    # ── helpers ──────────────────────────────────────────────────────

    @staticmethod
    def wire_role(turn: Turn) -> str:
        """Map history roles onto the chat-completion role vocabulary."""
        if turn.role is Role.system:
            return "system"
        if turn.role is Role.assistant:
            return "assistant"
        # Operator text and tool results both reach the model as user input
        return "user"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        model: str = "",
        headers: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            resp = await self._http.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(
                f"request to {self.name.value} timed out", provider=self.name.value,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailable(
                f"cannot reach {self.name.value}: {exc}", provider=self.name.value,
            ) from exc

        self._raise_for_status(resp, model)
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponse(
                f"{self.name.value} returned a non-JSON body",
                provider=self.name.value,
            ) from exc

    def _raise_for_status(self, resp: httpx.Response, model: str) -> None:
        status = resp.status_code
        if status < 400:
            return
        provider = self.name.value
        log.warning("provider.http_error", provider=provider, status=status)
        if status == 429:
            raise RateLimited(
                f"{provider} is rate limiting requests",
                provider=provider,
                retry_after=_parse_retry_after(resp.headers.get("retry-after")),
            )
        if status == 404:
            raise ModelNotFound(
                f"model '{model}' is not available on {provider}", provider=provider,
            )
        if status in (401, 403):
            raise ProviderUnavailable(
                f"{provider} rejected the credentials (HTTP {status})",
                provider=provider,
            )
        raise ProviderUnavailable(f"{provider} returned HTTP {status}", provider=provider)

    def _malformed(self, what: str) -> MalformedResponse:
        return MalformedResponse(
            f"{self.name.value} response is missing {what}", provider=self.name.value,
        )


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
