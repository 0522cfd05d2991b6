"""Investigation orchestrator: the /ask and /investigate loops.

Operator events arrive already normalized (chat id, text, optional button
callback). Every operation on a session runs under that session's lock, so
two approvals or two AI calls for the same (chat, server) pair never
interleave; different sessions proceed in parallel.

Flow for one AI turn::

    operator text -> history -> build_prompt -> provider -> extract
        -> narrative to operator -> first command to the gate (rest queued)

After a command is executed, skipped or expired the next queued command is
surfaced; once the queue is empty an investigation re-prompts the model with
the results until it stops proposing commands or the turn ceiling is hit.
Every failure ends up as exactly one chat message.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from sentinel.config import Settings, settings
from sentinel.errors import (
    CommandTimeout,
    ExecutionError,
    GateConflict,
    ProviderUnavailable,
    SentinelError,
    ServerNotFound,
)
from sentinel.models.commands import CommandState, ExecutionResult, ProposedCommand
from sentinel.models.provider import PROVIDER_ALIASES
from sentinel.models.responses import ChatEvent
from sentinel.models.server import Server
from sentinel.models.session import Role, SessionKey, Turn
from sentinel.services.ai_client import AIClient, ai_client
from sentinel.services.chat_transport import ChatTransport, outbox
from sentinel.services.command_extractor import extract
from sentinel.services.context_manager import ContextManager, Session
from sentinel.services.discovery import discover, format_report
from sentinel.services.execution_gate import ExecutionGate
from sentinel.services.remote_executor import RemoteExecutor, remote_executor
from sentinel.services.server_store import ServerStore, server_store
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

HELP_TEXT = "\n".join(
    [
        "Available commands:",
        "  /status - show provider, server and pending command",
        "  /servers - list configured servers",
        "  /add <alias> <host> <user> [port] - add a server",
        "  /remove <alias> - remove a server",
        "  /use <alias> - work on a server in this chat",
        "  /exec <alias> <cmd> - run a command directly",
        "  /discover <alias> - gather a read-only system report",
        "  /ask <question> - ask the AI (plain text works too)",
        "  /investigate <alias> [goal] - let the AI investigate a server",
        "  /approve <id> | /reject <id> - decide on a proposed command",
        "  /history - show recent turns of this session",
        "  /reset - forget this session",
        "  /provider <hosted-a|hosted-b|local> [model] - switch AI provider",
        "  /models - list models of the active provider",
    ],
)

DEFAULT_GOAL = "Check the overall health of this server and report any problems."


class Investigation:
    """Loop state for one /investigate run."""

    def __init__(self, key: SessionKey, goal: str, max_turns: int) -> None:
        self.key = key
        self.goal = goal
        self.max_turns = max_turns
        self.ai_turns = 0
        self.executed = 0
        self.skipped = 0
        self.active = True

    def summary(self) -> str:
        return (
            f"{self.ai_turns} AI turn(s), {self.executed} command(s) executed,"
            f" {self.skipped} skipped or expired"
        )


def format_result(command: str, result: ExecutionResult) -> str:
    header = f"$ {command}\nexit code {result.exit_code} in {result.duration:.1f}s"
    if result.timed_out:
        header += " (hard timeout reached, partial output)"
    body = []
    if result.stdout:
        body.append(result.stdout)
    if result.stderr:
        body.append(f"stderr:\n{result.stderr}")
    if not body:
        body.append("(no output)")
    return header + "\n\n" + "\n".join(body)


class Orchestrator:
    def __init__(
        self,
        transport: ChatTransport | None = None,
        client: AIClient | None = None,
        contexts: ContextManager | None = None,
        gate: ExecutionGate | None = None,
        executor: RemoteExecutor | None = None,
        store: ServerStore | None = None,
        cfg: Settings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self.transport = transport or outbox
        self.client = client or ai_client
        self.contexts = contexts or ContextManager(self.client)
        self.gate = gate or ExecutionGate(self._cfg)
        self.executor = executor or remote_executor
        self.store = store or server_store
        self.gate.on_expire = self._on_expired
        self._bound: dict[int, Optional[str]] = {}
        self._investigations: dict[SessionKey, Investigation] = {}

    @property
    def turn_timeout(self) -> float:
        return self._cfg.sentinel_turn_timeout_seconds

    async def _bounded(
        self, awaitable: Awaitable[T], on_timeout: Callable[[], SentinelError],
    ) -> T:
        """Await under the per-turn timeout; a timeout raises *on_timeout()*."""
        try:
            return await asyncio.wait_for(awaitable, self.turn_timeout)
        except asyncio.TimeoutError:
            raise on_timeout() from None

    def _provider_timeout(self, provider: str) -> ProviderUnavailable:
        return ProviderUnavailable(
            f"{provider} did not answer within {self.turn_timeout:g}s",
            provider=provider,
        )

    def session_key(self, chat_id: int) -> SessionKey:
        return SessionKey(chat_id=chat_id, alias=self._bound.get(chat_id))

    def investigation(self, key: SessionKey) -> Optional[Investigation]:
        return self._investigations.get(key)

    # ── entry point ───────────────────────────────────────────────────

    async def handle_event(self, event: ChatEvent) -> None:
        """Process one operator event; failures become one chat message."""
        try:
            if event.callback_data:
                await self._handle_callback(event.chat_id, event.callback_data)
            else:
                await self._handle_text(event.chat_id, event.text.strip())
        except SentinelError as exc:
            log.warning(
                "orchestrator.failed",
                chat_id=event.chat_id,
                error=type(exc).__name__,
                detail=str(exc),
            )
            await self.transport.send_text(event.chat_id, exc.user_message())

    async def _handle_callback(self, chat_id: int, data: str) -> None:
        action, _, command_id = data.partition(":")
        if action == "approve":
            await self.resolve(chat_id, command_id, approve=True)
        elif action == "reject":
            await self.resolve(chat_id, command_id, approve=False)
        else:
            await self.transport.send_text(chat_id, f"Unknown action '{action}'.")

    async def _handle_text(self, chat_id: int, text: str) -> None:
        if not text:
            return
        if not text.startswith("/"):
            await self.ask(chat_id, text)
            return

        name, _, rest = text.partition(" ")
        name = name.split("@", 1)[0].lower()
        rest = rest.strip()
        args = rest.split()

        if name in ("/help", "/start"):
            await self.transport.send_text(chat_id, HELP_TEXT)
        elif name == "/status":
            await self.status(chat_id)
        elif name == "/servers":
            await self.list_servers(chat_id)
        elif name == "/add" and len(args) in (3, 4):
            await self.add_server(chat_id, *args)
        elif name == "/remove" and len(args) == 1:
            await self.remove_server(chat_id, args[0])
        elif name == "/use" and len(args) == 1:
            await self.use(chat_id, args[0])
        elif name == "/exec" and len(args) >= 2:
            alias, _, command = rest.partition(" ")
            await self.exec_direct(chat_id, alias, command.strip())
        elif name == "/discover" and len(args) == 1:
            await self.discover(chat_id, args[0])
        elif name == "/ask" and rest:
            await self.ask(chat_id, rest)
        elif name == "/investigate" and args:
            alias, _, goal = rest.partition(" ")
            await self.investigate(chat_id, alias, goal.strip() or DEFAULT_GOAL)
        elif name == "/approve" and len(args) == 1:
            await self.resolve(chat_id, args[0], approve=True)
        elif name == "/reject" and len(args) == 1:
            await self.resolve(chat_id, args[0], approve=False)
        elif name == "/history":
            await self.history(chat_id)
        elif name == "/reset":
            await self.reset(chat_id)
        elif name == "/provider" and args and len(args) <= 2:
            await self.switch_provider(chat_id, args[0], args[1] if len(args) > 1 else None)
        elif name == "/models":
            await self.list_models(chat_id)
        else:
            await self.transport.send_text(
                chat_id, f"Unknown or incomplete command '{name}'. Send /help.",
            )

    # ── servers ───────────────────────────────────────────────────────

    async def list_servers(self, chat_id: int) -> None:
        servers = self.store.list_servers()
        if not servers:
            await self.transport.send_text(chat_id, "No servers configured.")
            return
        lines = ["Configured servers:"]
        lines.extend(f"  {s.alias} - {s.target}" for s in servers)
        await self.transport.send_text(chat_id, "\n".join(lines))

    async def add_server(
        self, chat_id: int, alias: str, host: str, user: str, port: str = "22",
    ) -> None:
        if not port.isdigit():
            await self.transport.send_text(chat_id, f"Invalid port '{port}'.")
            return
        try:
            server = Server(alias=alias, host=host, user=user, port=int(port))
        except ValueError as exc:
            await self.transport.send_text(chat_id, f"Invalid server definition: {exc}")
            return
        self.store.add_server(server)
        await self.transport.send_text(
            chat_id, f"Server '{alias}' added ({server.target}, key-based auth).",
        )

    async def remove_server(self, chat_id: int, alias: str) -> None:
        self.store.remove_server(alias)
        for cid, bound in list(self._bound.items()):
            if bound == alias:
                self._bound[cid] = None
        await self.transport.send_text(chat_id, f"Server '{alias}' removed.")

    async def use(self, chat_id: int, alias: str) -> None:
        self.store.get_server(alias)
        self._bound[chat_id] = alias
        self.contexts.get_or_create(SessionKey(chat_id=chat_id, alias=alias))
        await self.transport.send_text(
            chat_id, f"Now working on '{alias}'. Ask away or send /investigate {alias}.",
        )

    async def exec_direct(self, chat_id: int, alias: str, command: str) -> None:
        """Operator-issued command: no AI, no approval step."""
        server = self.store.get_server(alias)
        result = await self._execute(server, command)
        await self.transport.send_text(chat_id, format_result(command, result))
        session = self.contexts.get(SessionKey(chat_id=chat_id, alias=alias))
        if session is not None:
            async with session.lock:
                self.contexts.append(
                    session,
                    Turn(
                        role=Role.tool_result,
                        text=f"Operator ran: {command}\n{result.as_tool_text()}",
                    ),
                )

    async def discover(self, chat_id: int, alias: str) -> None:
        server = self.store.get_server(alias)
        await self.transport.send_text(chat_id, f"Discovering {alias}...")
        report = await self._bounded(
            discover(server, executor=self.executor),
            lambda: CommandTimeout(
                f"discovery of {alias} exceeded {self.turn_timeout:g}s",
            ),
        )
        await self.transport.send_text(chat_id, format_report(report))

    # ── status / provider ────────────────────────────────────────────

    async def status(self, chat_id: int) -> None:
        key = self.session_key(chat_id)
        lines = [
            "System status: operational",
            f"AI: {self.client.describe()}",
            f"Server: {key.alias or '(none)'}",
        ]
        session = self.contexts.get(key)
        if session is not None:
            lines.append(
                f"Session: {len(session.turns)} turn(s),"
                f" ~{session.token_estimate} tokens in history",
            )
        current = self.gate.current(key)
        if current is not None:
            lines.append(
                f"Awaiting decision: {current.command} ({current.command_id})",
            )
        inv = self._investigations.get(key)
        if inv is not None and inv.active:
            lines.append(f"Investigation running: {inv.summary()}")
        await self.transport.send_text(chat_id, "\n".join(lines))

    async def switch_provider(self, chat_id: int, name: str, model: Optional[str]) -> None:
        provider = PROVIDER_ALIASES.get(name.lower())
        if provider is None:
            await self.transport.send_text(
                chat_id, f"Unknown provider '{name}'. Use hosted-a, hosted-b or local.",
            )
            return
        config = await self._bounded(
            self.client.switch(provider, model),
            lambda: self._provider_timeout(provider.value),
        )
        await self.transport.send_text(
            chat_id,
            f"AI provider set to {config.provider.value} (model: {config.model},"
            f" context budget {self.client.context_budget(config)} tokens).",
        )

    async def list_models(self, chat_id: int) -> None:
        active = self.client.config
        models = await self._bounded(
            self.client.list_models(),
            lambda: self._provider_timeout(active.provider.value),
        )
        if not models:
            await self.transport.send_text(chat_id, "The provider reports no models.")
            return
        lines = [f"Models on {active.provider.value}:"]
        lines.extend(
            f"  {'*' if m == active.model else '-'} {m}" for m in models
        )
        await self.transport.send_text(chat_id, "\n".join(lines))

    # ── sessions ──────────────────────────────────────────────────────

    async def history(self, chat_id: int, limit: int = 10) -> None:
        session = self.contexts.get(self.session_key(chat_id))
        if session is None:
            await self.transport.send_text(chat_id, "No active session.")
            return
        turns = [t for t in session.turns if t.role is not Role.system][-limit:]
        if not turns:
            await self.transport.send_text(chat_id, "The session is empty.")
            return
        lines = []
        for turn in turns:
            text = turn.text if len(turn.text) <= 300 else turn.text[:300] + "..."
            lines.append(f"[{turn.role.value}] {text}")
        await self.transport.send_text(chat_id, "\n\n".join(lines))

    async def reset(self, chat_id: int) -> None:
        key = self.session_key(chat_id)
        session = self.contexts.get(key)
        if session is None:
            await self.transport.send_text(chat_id, "No active session.")
            return
        async with session.lock:
            dropped = self.gate.forget(key)
            self._investigations.pop(key, None)
            self.contexts.reset(key)
        note = f" {dropped} pending command(s) discarded." if dropped else ""
        await self.transport.send_text(chat_id, f"Session reset.{note}")

    # ── AI loop ───────────────────────────────────────────────────────

    async def ask(self, chat_id: int, question: str) -> None:
        key = self.session_key(chat_id)
        self._check_free(key)
        session = self.contexts.get_or_create(key)
        async with session.lock:
            self._check_free(key)
            self.contexts.append(session, Turn(role=Role.operator, text=question))
            await self._ai_turn(session)

    async def investigate(self, chat_id: int, alias: str, goal: str) -> None:
        self.store.get_server(alias)
        key = SessionKey(chat_id=chat_id, alias=alias)
        self._check_free(key)
        self._bound[chat_id] = alias
        session = self.contexts.get_or_create(key)
        async with session.lock:
            self._check_free(key)
            inv = Investigation(key, goal, self._cfg.sentinel_max_investigation_turns)
            self._investigations[key] = inv
            log.info("investigation.started", session=str(key), goal=goal)
            await self.transport.send_text(chat_id, f"Investigating {alias}...")
            self.contexts.append(
                session, Turn(role=Role.operator, text=f"Investigate: {goal}"),
            )
            await self._ai_turn(session)

    def _check_free(self, key: SessionKey) -> None:
        if self.gate.has_outstanding(key):
            current = self.gate.current(key)
            detail = (
                f"'{current.command}' ({current.command_id})"
                if current else "a queued command"
            )
            raise GateConflict(
                f"{detail} is still awaiting a decision; approve or reject it first",
            )

    async def _complete(self, session: Session):
        config = self.client.config
        prompt = self.contexts.build_prompt(session, config)
        completion = await self._bounded(
            self.client.complete(prompt, config),
            lambda: self._provider_timeout(config.provider.value),
        )
        self.contexts.record_usage(session, config, completion.usage.total_tokens)
        return completion

    async def _ai_turn(self, session: Session) -> None:
        """One model call plus extraction. Caller holds ``session.lock``."""
        key = session.key
        chat_id = key.chat_id
        inv = self._investigations.get(key)
        if inv is not None and inv.active:
            inv.ai_turns += 1
        try:
            completion = await self._complete(session)
        except SentinelError:
            self._end_investigation(key)
            raise

        turn = self.contexts.append(
            session, Turn(role=Role.assistant, text=completion.text),
        )
        extraction = extract(completion.text)
        if extraction.narrative.strip():
            await self.transport.send_text(chat_id, extraction.narrative)

        if not extraction.commands:
            if inv is not None and inv.active:
                self._end_investigation(key)
                await self.transport.send_text(
                    chat_id,
                    f"Investigation of {key.alias} finished ({inv.summary()}).",
                )
            return

        if key.alias is None:
            suggestions = "\n".join(f"  {c}" for c in extraction.commands)
            await self.transport.send_text(
                chat_id,
                "Suggested commands (select a server with /use <alias> to run them):\n"
                + suggestions,
            )
            return

        try:
            proposed = self.gate.propose(key, extraction.commands, turn.turn_id)
        except SentinelError:
            self._end_investigation(key)
            raise
        await self._present(proposed)

    async def _present(self, proposed: ProposedCommand) -> None:
        if proposed.state is CommandState.rejected:
            # Refused by the gate's invariant check
            await self._record_declined(proposed, "was refused by the execution gate")
            return
        await self.transport.present_approval(proposed.session.chat_id, proposed)

    def _end_investigation(self, key: SessionKey) -> None:
        inv = self._investigations.get(key)
        if inv is not None and inv.active:
            inv.active = False
            log.info("investigation.ended", session=str(key), summary=inv.summary())

    # ── gate resolution ───────────────────────────────────────────────

    async def resolve(self, chat_id: int, command_id: str, *, approve: bool) -> None:
        proposed = self.gate.get(command_id)
        if proposed is None or proposed.session.chat_id != chat_id:
            await self.transport.send_text(chat_id, f"No command with id '{command_id}'.")
            return
        session = self.contexts.get(proposed.session)
        if session is None:
            await self.transport.send_text(chat_id, "That session was reset.")
            return

        async with session.lock:
            if proposed.state is not CommandState.pending:
                await self.transport.send_text(
                    chat_id,
                    f"Command {command_id} is already {proposed.state.value}.",
                )
                return
            if approve:
                ok = await self._run_approved(session, proposed)
                if not ok:
                    return
            else:
                self.gate.reject(command_id)
                await self._record_declined(proposed, "was skipped by the operator")
            await self._after_resolution(session)

    async def _run_approved(self, session: Session, proposed: ProposedCommand) -> bool:
        key = session.key
        self.gate.approve(proposed.command_id)
        try:
            server = self.store.get_server(key.alias or "")
        except ServerNotFound:
            self.gate.abandon(proposed.command_id)
            self.gate.discard(key)
            self._end_investigation(key)
            raise

        await self.transport.send_text(
            key.chat_id, f"Executing on {server.alias}: {proposed.command}",
        )
        try:
            result = await self._execute(server, proposed.command)
        except ExecutionError as exc:
            self.gate.abandon(proposed.command_id)
            dropped = self.gate.discard(key)
            self._end_investigation(key)
            self.contexts.append(
                session,
                Turn(
                    role=Role.tool_result,
                    text=f"Command could not run: {proposed.command}\n{exc}",
                ),
            )
            log.warning(
                "orchestrator.exec_failed",
                session=str(key),
                command_id=proposed.command_id,
                dropped=dropped,
            )
            raise

        self.gate.complete(proposed.command_id, result)
        inv = self._investigations.get(key)
        if inv is not None and inv.active:
            inv.executed += 1
        self.contexts.append(
            session,
            Turn(
                role=Role.tool_result,
                text=f"Command output for `{proposed.command}`:\n{result.as_tool_text()}",
            ),
        )
        await self.transport.send_text(key.chat_id, format_result(proposed.command, result))
        return True

    async def _execute(self, server: Server, command: str) -> ExecutionResult:
        return await self._bounded(
            self.executor.run(server, command),
            lambda: CommandTimeout(
                f"'{command}' on {server.alias} exceeded {self.turn_timeout:g}s",
            ),
        )

    async def _record_declined(self, proposed: ProposedCommand, reason: str) -> None:
        session = self.contexts.get(proposed.session)
        if session is not None:
            self.contexts.append(
                session,
                Turn(
                    role=Role.tool_result,
                    text=f"The command `{proposed.command}` {reason} and did not run.",
                ),
            )
        inv = self._investigations.get(proposed.session)
        if inv is not None and inv.active:
            inv.skipped += 1
        await self.transport.send_text(
            proposed.session.chat_id, f"Command {reason}: {proposed.command}",
        )

    async def _after_resolution(self, session: Session) -> None:
        """Surface the next queued command or continue the investigation."""
        key = session.key
        nxt = self.gate.advance(key)
        if nxt is not None:
            await self._present(nxt)
            if nxt.state is CommandState.rejected:
                await self._after_resolution(session)
            return

        inv = self._investigations.get(key)
        if inv is None or not inv.active:
            return
        if inv.ai_turns >= inv.max_turns:
            self._end_investigation(key)
            await self.transport.send_text(
                key.chat_id,
                f"Investigation of {key.alias} stopped: turn limit of"
                f" {inv.max_turns} reached ({inv.summary()}). Send /ask to continue.",
            )
            return
        await self._ai_turn(session)

    async def _on_expired(self, proposed: ProposedCommand) -> None:
        session = self.contexts.get(proposed.session)
        if session is None:
            return
        chat_id = proposed.session.chat_id
        try:
            async with session.lock:
                await self._record_declined(
                    proposed,
                    f"expired after {self.gate.approval_timeout:g}s without a decision",
                )
                await self._after_resolution(session)
        except SentinelError as exc:
            log.warning("orchestrator.failed", chat_id=chat_id, error=type(exc).__name__)
            await self.transport.send_text(chat_id, exc.user_message())


# Singleton instance
orchestrator = Orchestrator()
