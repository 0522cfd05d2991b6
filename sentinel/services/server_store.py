"""Server registry and provider credential lookup.

Servers live in memory keyed by alias and are optionally mirrored to a JSON
file so ``/add`` survives a restart. Provider credentials are read from the
environment variable named in settings and wrapped in an opaque
``CredentialRef``; callers never see the raw secret.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from pydantic import SecretStr, TypeAdapter, ValidationError

from sentinel.config import Settings, settings
from sentinel.errors import ServerExists, ServerNotFound
from sentinel.models.provider import ProviderName
from sentinel.models.server import CredentialRef, Server
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

_server_list = TypeAdapter(list[Server])


class ServerStore:
    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._servers: dict[str, Server] = {}
        self._lock = threading.Lock()
        self._path = (
            Path(self._cfg.sentinel_servers_file)
            if self._cfg.sentinel_servers_file
            else None
        )
        self._load()

    # ── persistence ──────────────────────────────────────────────────

    def _load(self) -> None:
        if self._path is None or not self._path.is_file():
            return
        try:
            servers = _server_list.validate_json(self._path.read_bytes())
        except (OSError, ValidationError) as exc:
            log.error("servers.load_failed", path=str(self._path), error=str(exc))
            return
        self._servers = {s.alias: s for s in servers}
        log.info("servers.loaded", count=len(self._servers))

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_bytes(_server_list.dump_json(list(self._servers.values()), indent=2))
        tmp.replace(self._path)

    # ── servers ──────────────────────────────────────────────────────

    def add_server(self, server: Server) -> Server:
        with self._lock:
            if server.alias in self._servers:
                raise ServerExists(f"'{server.alias}' is already configured")
            self._servers[server.alias] = server
            self._save()
        log.info("servers.added", alias=server.alias, target=server.target)
        return server

    def remove_server(self, alias: str) -> Server:
        with self._lock:
            server = self._servers.pop(alias, None)
            if server is None:
                raise ServerNotFound(f"'{alias}' is not configured")
            self._save()
        log.info("servers.removed", alias=alias)
        return server

    def get_server(self, alias: str) -> Server:
        server = self._servers.get(alias)
        if server is None:
            raise ServerNotFound(f"'{alias}' is not configured")
        return server

    def list_servers(self) -> list[Server]:
        return sorted(self._servers.values(), key=lambda s: s.alias)

    # ── credentials ──────────────────────────────────────────────────

    def get_provider_credential(self, provider: ProviderName) -> CredentialRef:
        env_name = {
            ProviderName.hosted_a: self._cfg.sentinel_hosted_a_key_env,
            ProviderName.hosted_b: self._cfg.sentinel_hosted_b_key_env,
        }.get(provider)
        if env_name is None:
            # local model server needs no credential
            return CredentialRef(provider=provider.value)
        return CredentialRef(
            provider=provider.value,
            source=f"env:{env_name}",
            secret=SecretStr(os.getenv(env_name, "")),
        )


# Singleton instance
server_store = ServerStore()
