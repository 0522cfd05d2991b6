"""Server registry endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from sentinel.auth import require_api_key
from sentinel.errors import ServerExists, ServerNotFound
from sentinel.models.responses import ServerCreateRequest
from sentinel.models.server import Server
from sentinel.services.server_store import server_store

router = APIRouter(
    prefix="/servers",
    tags=["servers"],
    dependencies=[Depends(require_api_key)],
)


@router.get("", response_model=list[Server])
async def list_servers() -> list[Server]:
    return server_store.list_servers()


@router.post("", response_model=Server, status_code=201)
async def add_server(req: ServerCreateRequest) -> Server:
    try:
        server = Server(**req.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    try:
        return server_store.add_server(server)
    except ServerExists as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.delete("/{alias}", response_model=Server)
async def remove_server(alias: str) -> Server:
    try:
        return server_store.remove_server(alias)
    except ServerNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
