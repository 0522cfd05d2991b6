"""Tests for outgoing message buffering and chunking."""

from __future__ import annotations

import pytest

from sentinel.models.commands import ProposedCommand
from sentinel.models.responses import MessageKind
from sentinel.models.session import SessionKey
from sentinel.services.chat_transport import (
    MAX_MESSAGE_LEN,
    MAX_PENDING_MESSAGES,
    OutboxTransport,
    split_message,
)


class TestSplitMessage:
    def test_short_message_single_chunk(self):
        assert split_message("hello") == ["hello"]

    def test_long_message_split_on_newlines(self):
        text = "\n".join(f"line {i:05d}" for i in range(2000))
        chunks = split_message(text)
        assert len(chunks) > 1
        assert all(len(c) <= MAX_MESSAGE_LEN for c in chunks)
        assert all(not c.startswith("\n") for c in chunks)
        assert "\n".join(chunks) == text

    def test_no_newline_hard_split(self):
        chunks = split_message("a" * 9000)
        assert [len(c) for c in chunks] == [4000, 4000, 1000]


class TestOutbox:
    @pytest.mark.asyncio
    async def test_drain_per_chat(self):
        box = OutboxTransport()
        await box.send_text(1, "one")
        await box.send_text(2, "two")
        assert [m.text for m in box.peek(1)] == ["one"]
        assert [m.text for m in box.drain(1)] == ["one"]
        assert box.drain(1) == []
        assert [m.text for m in box.drain(2)] == ["two"]

    @pytest.mark.asyncio
    async def test_approval_prompt(self):
        box = OutboxTransport()
        proposed = ProposedCommand(
            session=SessionKey(chat_id=1, alias="prod"), command="df -h", turn_id="t2",
        )
        buttons = await box.present_approval(1, proposed)
        message = box.drain(1)[0]
        assert message.kind is MessageKind.approval
        assert message.command_id == proposed.command_id
        assert message.buttons == buttons
        assert "df -h" in message.text

    @pytest.mark.asyncio
    async def test_undrained_messages_are_capped(self):
        box = OutboxTransport()
        for i in range(MAX_PENDING_MESSAGES + 25):
            await box.send_text(7, f"note {i}")
        pending = box.peek(7)
        assert len(pending) == MAX_PENDING_MESSAGES
        assert pending[0].text == "note 25"
        assert pending[-1].text == f"note {MAX_PENDING_MESSAGES + 24}"
        box.drain(7)
        assert box.peek(7) == []
