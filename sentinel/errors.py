"""Exception taxonomy.

Every error that reaches the orchestrator is turned into exactly one chat
message; ``category`` is the prefix shown to the operator.
"""

from __future__ import annotations


class SentinelError(Exception):
    category = "Error"

    def user_message(self) -> str:
        return f"{self.category}: {self}"


# ── AI provider ──────────────────────────────────────────────────────────


class ProviderError(SentinelError):
    category = "AI provider error"

    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(message)
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Network, auth or server-side failure. Never retried."""


class ModelNotFound(ProviderError):
    category = "Model not found"


class RateLimited(ProviderError):
    category = "AI provider rate limit"

    def __init__(
        self, message: str, *, provider: str = "", retry_after: float | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class MalformedResponse(ProviderError):
    category = "Malformed AI response"


# ── execution gate ───────────────────────────────────────────────────────


class GateConflict(SentinelError):
    category = "Command already pending"


class InvalidTransition(SentinelError):
    category = "Invalid command state change"


class InvariantViolation(SentinelError, AssertionError):
    category = "Internal error"


# ── remote execution ─────────────────────────────────────────────────────


class ExecutionError(SentinelError):
    category = "Execution error"


class ConnectionFailed(ExecutionError):
    category = "Connection failed"


class CommandTimeout(ExecutionError):
    category = "Command timed out"


# ── context / storage ────────────────────────────────────────────────────


class BudgetExceeded(SentinelError):
    category = "Context too large"


class ServerNotFound(SentinelError):
    category = "Unknown server"


class ServerExists(SentinelError):
    category = "Server already exists"
