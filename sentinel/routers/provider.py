"""Active AI provider inspection and switching."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from sentinel.auth import require_api_key
from sentinel.errors import ModelNotFound, ProviderError
from sentinel.models.provider import PROVIDER_ALIASES
from sentinel.models.responses import (
    ModelsResponse,
    ProviderResponse,
    ProviderSwitchRequest,
)
from sentinel.services.ai_client import ai_client

router = APIRouter(
    prefix="/provider",
    tags=["provider"],
    dependencies=[Depends(require_api_key)],
)


def _current() -> ProviderResponse:
    config = ai_client.config
    return ProviderResponse(
        provider=config.provider.value,
        model=config.model,
        context_budget=ai_client.context_budget(config),
        credential_present=config.credential.present,
        info=ai_client.describe(),
    )


@router.get("", response_model=ProviderResponse)
async def get_provider() -> ProviderResponse:
    return _current()


@router.put("", response_model=ProviderResponse)
async def switch_provider(req: ProviderSwitchRequest) -> ProviderResponse:
    name = PROVIDER_ALIASES.get(req.provider.lower())
    if name is None:
        raise HTTPException(status_code=422, detail=f"Unknown provider '{req.provider}'")
    try:
        await ai_client.switch(name, req.model)
    except ModelNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=exc.user_message())
    return _current()


@router.get("/models", response_model=ModelsResponse)
async def list_models() -> ModelsResponse:
    try:
        models = await ai_client.list_models()
    except ProviderError as exc:
        raise HTTPException(status_code=502, detail=exc.user_message())
    return ModelsResponse(provider=ai_client.config.provider.value, models=models)
