"""Outgoing side of the chat transport.

The orchestrator only ever calls ``send_text`` and ``present_approval``.
``OutboxTransport`` collects those calls per chat so the webhook API can
return them to whichever bot front-end delivered the event.
"""

from __future__ import annotations

from collections import deque
from typing import Protocol

from sentinel.models.commands import ProposedCommand
from sentinel.models.responses import Button, MessageKind, OutgoingMessage

MAX_MESSAGE_LEN = 4000
# Undrained messages kept per chat; the oldest are dropped first
MAX_PENDING_MESSAGES = 200


class ChatTransport(Protocol):
    async def send_text(self, chat_id: int, text: str) -> None:
        ...

    async def present_approval(
        self, chat_id: int, proposed: ProposedCommand,
    ) -> list[Button]:
        ...


def split_message(text: str, limit: int = MAX_MESSAGE_LEN) -> list[str]:
    """Split *text* into chunks of at most *limit* characters.

    Chunks break on the last newline inside the window when there is one.
    """
    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(rest[:cut])
        rest = rest[cut:].lstrip("\n")
    if rest:
        chunks.append(rest)
    return chunks


def approval_buttons(proposed: ProposedCommand) -> list[Button]:
    return [
        Button(label="✅ Run", callback_data=f"approve:{proposed.command_id}"),
        Button(label="❌ Skip", callback_data=f"reject:{proposed.command_id}"),
    ]


class OutboxTransport:
    """Buffers outgoing messages until the caller drains them."""

    def __init__(self) -> None:
        self._outbox: dict[int, deque[OutgoingMessage]] = {}

    def _box(self, chat_id: int) -> deque[OutgoingMessage]:
        box = self._outbox.get(chat_id)
        if box is None:
            box = self._outbox[chat_id] = deque(maxlen=MAX_PENDING_MESSAGES)
        return box

    async def send_text(self, chat_id: int, text: str) -> None:
        box = self._box(chat_id)
        for chunk in split_message(text):
            box.append(OutgoingMessage(chat_id=chat_id, text=chunk))

    async def present_approval(
        self, chat_id: int, proposed: ProposedCommand,
    ) -> list[Button]:
        buttons = approval_buttons(proposed)
        title = f"AI suggests running:\n{proposed.command}"
        self._box(chat_id).append(
            OutgoingMessage(
                chat_id=chat_id,
                kind=MessageKind.approval,
                text=title,
                buttons=buttons,
                command_id=proposed.command_id,
            ),
        )
        return buttons

    def drain(self, chat_id: int) -> list[OutgoingMessage]:
        return list(self._outbox.pop(chat_id, ()))

    def peek(self, chat_id: int) -> list[OutgoingMessage]:
        return list(self._outbox.get(chat_id, ()))


# Singleton instance
outbox = OutboxTransport()
