"""Read-only access to session transcripts."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from sentinel.auth import require_api_key
from sentinel.models.responses import HistoryResponse
from sentinel.services.orchestrator import orchestrator
from sentinel.services.session_log import session_log

router = APIRouter(
    prefix="/sessions",
    tags=["sessions"],
    dependencies=[Depends(require_api_key)],
)


@router.get("", response_model=list[str])
async def list_sessions() -> list[str]:
    """Session ids with a persisted transcript."""
    return session_log.session_ids()


@router.get("/{session_id}/history", response_model=HistoryResponse)
async def get_history(
    session_id: str, limit: int | None = Query(default=None, ge=1),
) -> HistoryResponse:
    """Live history when the session is in memory, else the transcript."""
    for session in orchestrator.contexts.sessions():
        if session.session_id == session_id:
            turns = session.turns[-limit:] if limit else list(session.turns)
            return HistoryResponse(session_id=session_id, turns=turns)
    turns = session_log.read(session_id, limit=limit)
    if not turns:
        raise HTTPException(status_code=404, detail="Session not found")
    return HistoryResponse(session_id=session_id, turns=turns)
