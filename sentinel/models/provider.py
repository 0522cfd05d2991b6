"""AI provider selection and completion result models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from sentinel.models.server import CredentialRef


class ProviderName(str, Enum):
    hosted_a = "hosted-a"
    hosted_b = "hosted-b"
    local = "local"


# Operator-facing aliases accepted by /provider
PROVIDER_ALIASES: dict[str, ProviderName] = {
    "hosted-a": ProviderName.hosted_a,
    "openai": ProviderName.hosted_a,
    "hosted-b": ProviderName.hosted_b,
    "gemini": ProviderName.hosted_b,
    "local": ProviderName.local,
    "ollama": ProviderName.local,
}


class ProviderConfig(BaseModel):
    """The active provider, model and credential handle."""

    model_config = {"frozen": True}

    provider: ProviderName
    model: str
    credential: CredentialRef = Field(
        default_factory=lambda: CredentialRef(provider=""),
    )


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    exact: bool = False

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Completion(BaseModel):
    text: str
    usage: Usage = Field(default_factory=Usage)
    provider: ProviderName
    model: str
