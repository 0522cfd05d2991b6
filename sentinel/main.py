"""FastAPI application entry-point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from sentinel import __version__
from sentinel.routers import chat, health, provider, servers, sessions
from sentinel.services.ai_client import ai_client
from sentinel.services.ssh_manager import ssh_manager
from sentinel.utils.logging import get_logger, setup_logging

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    setup_logging()
    log.info("sentinel.started", version=__version__, provider=ai_client.describe())
    yield
    # Shutdown: close SSH sessions and the provider HTTP pool
    await ssh_manager.close()
    await ai_client.close()


app = FastAPI(
    title="Sentinel",
    description="Chat-operated SSH investigation assistant",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(chat.router)
app.include_router(servers.router)
app.include_router(provider.router)
app.include_router(sessions.router)
