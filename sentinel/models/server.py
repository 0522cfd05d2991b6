"""Managed server and credential handle models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, SecretStr


class Server(BaseModel):
    """A remote host reachable over SSH. Immutable once added."""

    model_config = {"frozen": True}

    alias: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$")
    host: str = Field(min_length=1)
    user: str = Field(min_length=1)
    port: int = Field(default=22, ge=1, le=65535)
    key_path: Optional[str] = None

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"


class CredentialRef(BaseModel):
    """Opaque credential handle handed to a provider adapter.

    The secret never appears in ``repr`` or logs; only adapters call
    :meth:`reveal` when building a request.
    """

    model_config = {"frozen": True}

    provider: str
    source: str = ""
    secret: SecretStr = SecretStr("")

    @property
    def present(self) -> bool:
        return bool(self.secret.get_secret_value())

    def reveal(self) -> str:
        return self.secret.get_secret_value()
