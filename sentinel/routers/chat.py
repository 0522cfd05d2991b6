"""Webhook used by the chat front-end.

The bot process posts each normalized operator event here and relays the
returned messages (text and approval prompts) back to the chat.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from sentinel.auth import require_api_key
from sentinel.models.responses import ChatEvent, ChatEventResponse
from sentinel.services.chat_transport import outbox
from sentinel.services.orchestrator import orchestrator

router = APIRouter(
    prefix="/chat",
    tags=["chat"],
    dependencies=[Depends(require_api_key)],
)


@router.post("/events", response_model=ChatEventResponse)
async def post_event(event: ChatEvent) -> ChatEventResponse:
    await orchestrator.handle_event(event)
    return ChatEventResponse(messages=outbox.drain(event.chat_id))


@router.get("/{chat_id}/messages", response_model=ChatEventResponse)
async def poll_messages(chat_id: int) -> ChatEventResponse:
    """Messages produced outside a request, e.g. by approval expiry."""
    return ChatEventResponse(messages=outbox.drain(chat_id))
