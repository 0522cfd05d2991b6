"""Proposed command lifecycle and execution result models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from sentinel.errors import InvalidTransition
from sentinel.models.session import SessionKey


class CommandState(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"
    executed = "executed"


_TRANSITIONS: dict[CommandState, frozenset[CommandState]] = {
    CommandState.pending: frozenset(
        {CommandState.approved, CommandState.rejected, CommandState.expired},
    ),
    CommandState.approved: frozenset({CommandState.executed}),
    CommandState.rejected: frozenset(),
    CommandState.expired: frozenset(),
    CommandState.executed: frozenset(),
}


class ExecutionResult(BaseModel):
    """Normalized outcome of one remote command. Immutable."""

    model_config = {"frozen": True}

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    duration: float = 0.0
    timed_out: bool = False

    def as_tool_text(self) -> str:
        """Render the result as fed back to the model."""
        parts = [f"exit code: {self.exit_code}"]
        if self.timed_out:
            parts.append(f"hard timeout reached after {self.duration:.1f}s")
        if self.stdout:
            parts.append(f"stdout:\n{self.stdout}")
        if self.stderr:
            parts.append(f"stderr:\n{self.stderr}")
        if not self.stdout and not self.stderr:
            parts.append("(no output)")
        return "\n".join(parts)


class RawOutput(BaseModel):
    """What the SSH transport hands back before normalization."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    timed_out: bool = False


class ProposedCommand(BaseModel):
    """A command extracted from an AI response awaiting operator disposition."""

    command_id: str = Field(default_factory=lambda: uuid4().hex[:8])
    session: SessionKey
    command: str
    turn_id: str = Field(description="Id of the assistant turn that proposed it")
    state: CommandState = CommandState.pending
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None
    result: Optional[ExecutionResult] = None

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def transition(self, new_state: CommandState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"command {self.command_id}: {self.state.value} -> {new_state.value}",
            )
        self.state = new_state
        if new_state is not CommandState.approved:
            self.resolved_at = datetime.now(timezone.utc)
