"""Request and response models for the webhook API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from sentinel.models.session import Turn


class HealthResponse(BaseModel):
    status: str
    version: str
    provider: str


class ChatEvent(BaseModel):
    """A normalized operator event delivered by the chat transport."""

    chat_id: int
    text: str = ""
    callback_data: Optional[str] = None


class Button(BaseModel):
    label: str
    callback_data: str


class MessageKind(str, Enum):
    text = "text"
    approval = "approval"


class OutgoingMessage(BaseModel):
    chat_id: int
    kind: MessageKind = MessageKind.text
    text: str
    buttons: list[Button] = Field(default_factory=list)
    command_id: Optional[str] = None


class ChatEventResponse(BaseModel):
    messages: list[OutgoingMessage]


class ServerCreateRequest(BaseModel):
    alias: str
    host: str
    user: str
    port: int = 22
    key_path: Optional[str] = None


class ProviderResponse(BaseModel):
    provider: str
    model: str
    context_budget: int
    credential_present: bool
    info: str


class ProviderSwitchRequest(BaseModel):
    provider: str
    model: Optional[str] = None


class ModelsResponse(BaseModel):
    provider: str
    models: list[str]


class HistoryResponse(BaseModel):
    session_id: str
    turns: list[Turn]


class DiscoveryReport(BaseModel):
    """Read-only snapshot of a server gathered by /discover."""

    alias: str
    os_release: str = "unknown"
    kernel_version: str = "unknown"
    hostname: str = "unknown"
    uptime: str = "unknown"
    load_average: str = "unknown"
    memory_usage: str = "unknown"
    disk_usage: str = "unknown"
    services: list[str] = Field(default_factory=list)
    timestamp: datetime
