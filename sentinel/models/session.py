"""Conversation history structures."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class Role(str, Enum):
    system = "system"
    operator = "operator"
    assistant = "assistant"
    tool_result = "tool-result"


class Turn(BaseModel):
    """One unit of conversation history."""

    model_config = {"frozen": True}

    turn_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    role: Role
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionKey(BaseModel):
    """Identifies a session: one chat, optionally bound to one server."""

    model_config = {"frozen": True}

    chat_id: int
    alias: Optional[str] = None

    @property
    def session_id(self) -> str:
        return f"{self.chat_id}:{self.alias or '-'}"

    def __str__(self) -> str:
        return self.session_id
