"""Approval state machine for AI-proposed commands.

Each session has one slot holding its outstanding command (pending, or
approved and running). Further commands from the same AI response wait in a
FIFO queue and are promoted one at a time once the slot is free. A new
proposal batch while anything is outstanding or queued is refused with
``GateConflict``; nothing is ever overwritten.

Pending commands expire after ``sentinel_approval_timeout_seconds`` via a
loop timer, the same way the SSH manager schedules its idle close.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Optional

from sentinel.config import Settings, settings
from sentinel.errors import GateConflict, InvariantViolation
from sentinel.models.commands import CommandState, ExecutionResult, ProposedCommand
from sentinel.models.session import SessionKey
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

ExpiryCallback = Callable[[ProposedCommand], Awaitable[None]]

# Resolved commands remembered per session for /status and late callbacks
COMMAND_HISTORY = 50


class ExecutionGate:
    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._slots: dict[SessionKey, ProposedCommand] = {}
        self._queues: dict[SessionKey, deque[tuple[str, str]]] = {}
        self._commands: dict[str, ProposedCommand] = {}
        self._by_session: dict[SessionKey, deque[str]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self.on_expire: Optional[ExpiryCallback] = None

    @property
    def approval_timeout(self) -> float:
        return self._cfg.sentinel_approval_timeout_seconds

    # ── queries ──────────────────────────────────────────────────────

    def get(self, command_id: str) -> Optional[ProposedCommand]:
        return self._commands.get(command_id)

    def current(self, key: SessionKey) -> Optional[ProposedCommand]:
        """The outstanding (pending or approved) command for *key*."""
        return self._slots.get(key)

    def queued(self, key: SessionKey) -> list[str]:
        return [cmd for cmd, _ in self._queues.get(key, ())]

    def has_outstanding(self, key: SessionKey) -> bool:
        return key in self._slots or bool(self._queues.get(key))

    def commands(self, key: SessionKey) -> list[ProposedCommand]:
        """Commands proposed for *key*, oldest first.

        At most ``COMMAND_HISTORY`` resolved commands are retained per session.
        """
        return [self._commands[i] for i in self._by_session.get(key, ())]

    # ── proposals ────────────────────────────────────────────────────

    def propose(
        self, key: SessionKey, commands: list[str], turn_id: str,
    ) -> ProposedCommand:
        """Open a new proposal batch; the first command becomes pending."""
        if not commands:
            raise ValueError("no commands to propose")
        if self.has_outstanding(key):
            current = self._slots.get(key)
            what = f"'{current.command}' ({current.command_id})" if current else "a queued command"
            log.info("gate.conflict", session=str(key), outstanding=what)
            raise GateConflict(
                f"{what} is still awaiting a decision; approve or reject it first",
            )
        first, *rest = commands
        if rest:
            self._queues[key] = deque((cmd, turn_id) for cmd in rest)
        return self._insert(key, first, turn_id)

    def advance(self, key: SessionKey) -> Optional[ProposedCommand]:
        """Promote the next queued command once the slot is free."""
        if key in self._slots:
            return None
        queue = self._queues.get(key)
        if not queue:
            self._queues.pop(key, None)
            return None
        command, turn_id = queue.popleft()
        if not queue:
            del self._queues[key]
        return self._insert(key, command, turn_id)

    def _insert(self, key: SessionKey, command: str, turn_id: str) -> ProposedCommand:
        proposed = ProposedCommand(session=key, command=command, turn_id=turn_id)
        self._commands[proposed.command_id] = proposed
        self._by_session.setdefault(key, deque()).append(proposed.command_id)
        self._prune(key)

        occupant = self._slots.get(key)
        if occupant is not None and not occupant.terminal:
            log.error(
                "gate.invariant_violation",
                session=str(key),
                occupant=occupant.command_id,
                newer=proposed.command_id,
            )
            if self._cfg.sentinel_strict_invariants:
                raise InvariantViolation(
                    f"two outstanding commands for {key}:"
                    f" {occupant.command_id} and {proposed.command_id}",
                )
            proposed.transition(CommandState.rejected)
            return proposed

        self._slots[key] = proposed
        self._arm_timer(proposed)
        log.info(
            "gate.proposed",
            session=str(key),
            command_id=proposed.command_id,
            command=command,
            queued=len(self._queues.get(key, ())),
        )
        return proposed

    # ── operator decisions ───────────────────────────────────────────

    def approve(self, command_id: str) -> ProposedCommand:
        proposed = self._require(command_id)
        proposed.transition(CommandState.approved)
        self._cancel_timer(command_id)
        log.info("gate.approved", session=str(proposed.session), command_id=command_id)
        return proposed

    def reject(self, command_id: str) -> ProposedCommand:
        proposed = self._require(command_id)
        proposed.transition(CommandState.rejected)
        self._release(proposed)
        log.info("gate.rejected", session=str(proposed.session), command_id=command_id)
        return proposed

    def complete(self, command_id: str, result: ExecutionResult) -> ProposedCommand:
        proposed = self._require(command_id)
        proposed.result = result
        proposed.transition(CommandState.executed)
        self._release(proposed)
        log.info(
            "gate.executed",
            session=str(proposed.session),
            command_id=command_id,
            exit_code=result.exit_code,
        )
        return proposed

    def abandon(self, command_id: str) -> None:
        """Free the slot of an approved command whose execution failed."""
        proposed = self._require(command_id)
        if proposed.state is CommandState.approved:
            self._release(proposed)

    def discard(self, key: SessionKey) -> int:
        """Reject the pending command and drop the queue for *key*."""
        dropped = len(self._queues.pop(key, ()))
        current = self._slots.get(key)
        if current is not None and current.state is CommandState.pending:
            current.transition(CommandState.rejected)
            self._release(current)
            dropped += 1
        return dropped

    def forget(self, key: SessionKey) -> int:
        """Discard outstanding work for *key* and drop its command records."""
        dropped = self.discard(key)
        for command_id in self._by_session.pop(key, ()):
            self._cancel_timer(command_id)
            proposed = self._commands.pop(command_id, None)
            if proposed is not None and self._slots.get(key) is proposed:
                del self._slots[key]
        return dropped

    # ── expiry ───────────────────────────────────────────────────────

    def _arm_timer(self, proposed: ProposedCommand) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[proposed.command_id] = loop.call_later(
            self.approval_timeout,
            lambda: asyncio.ensure_future(self.expire(proposed.command_id)),
        )

    def _cancel_timer(self, command_id: str) -> None:
        handle = self._timers.pop(command_id, None)
        if handle is not None:
            handle.cancel()

    async def expire(self, command_id: str) -> Optional[ProposedCommand]:
        """Move a still-pending command to expired and notify the owner."""
        self._timers.pop(command_id, None)
        proposed = self._commands.get(command_id)
        if proposed is None or proposed.state is not CommandState.pending:
            return None
        proposed.transition(CommandState.expired)
        self._release(proposed)
        log.info("gate.expired", session=str(proposed.session), command_id=command_id)
        if self.on_expire is not None:
            await self.on_expire(proposed)
        return proposed

    # ── helpers ──────────────────────────────────────────────────────

    def _require(self, command_id: str) -> ProposedCommand:
        proposed = self._commands.get(command_id)
        if proposed is None:
            raise KeyError(command_id)
        return proposed

    def _release(self, proposed: ProposedCommand) -> None:
        self._cancel_timer(proposed.command_id)
        if self._slots.get(proposed.session) is proposed:
            del self._slots[proposed.session]

    def _prune(self, key: SessionKey) -> None:
        ids = self._by_session[key]
        current = self._slots.get(key)
        while len(ids) > COMMAND_HISTORY:
            oldest = self._commands[ids[0]]
            if oldest is current:
                break
            ids.popleft()
            del self._commands[oldest.command_id]
