"""Per-(chat, server) conversation state and context-window budgeting.

Sessions are created lazily and live in memory. ``build_prompt`` never
mutates a session; only ``append`` and ``reset`` do. When history outgrows
the active model's budget the oldest non-system turns are dropped first,
and the most recent operator turn is never dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

from sentinel.errors import BudgetExceeded
from sentinel.models.provider import ProviderConfig
from sentinel.models.session import Role, SessionKey, Turn
from sentinel.services.ai_client import AIClient, ai_client
from sentinel.services.session_log import SessionLog, session_log
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

SYSTEM_PROMPT = "\n".join(
    [
        "You are Sentinel, an assistant that helps an operator inspect and"
        " remediate Linux servers over SSH.",
        "To propose a shell command, put it alone on a line that starts with"
        " 'RUN: ' followed by the literal command, e.g.",
        "RUN: df -h",
        "Propose one command per line and explain briefly why you need it.",
        "The operator approves or skips every command before it runs. Results"
        " come back to you as 'Command output'.",
        "Prefer read-only diagnostics. When you have enough information, give"
        " your conclusion without any RUN: line.",
    ],
)

SERVER_PROMPT = "You are working on the server '{alias}'."


def fit_to_budget(
    turns: list[Turn], budget: int, estimate: Callable[[Turn], int],
) -> list[Turn]:
    """Return the suffix-preserving subset of *turns* that fits *budget*.

    System turns and the most recent operator turn are kept; everything else
    is dropped oldest first. Raises ``BudgetExceeded`` when the kept turns
    alone are over budget.
    """
    costs = [estimate(t) for t in turns]
    total = sum(costs)
    if total <= budget:
        return list(turns)

    latest_operator = next(
        (i for i in range(len(turns) - 1, -1, -1) if turns[i].role is Role.operator),
        None,
    )
    dropped: set[int] = set()
    for i, turn in enumerate(turns):
        if total <= budget:
            break
        if turn.role is Role.system or i == latest_operator:
            continue
        dropped.add(i)
        total -= costs[i]

    if total > budget:
        raise BudgetExceeded(
            f"the latest request needs about {total} tokens but the model"
            f" accepts {budget}; shorten it or /reset the session",
        )
    return [t for i, t in enumerate(turns) if i not in dropped]


class Session:
    """Conversation and execution state for one ``SessionKey``."""

    def __init__(self, key: SessionKey, config: ProviderConfig) -> None:
        self.key = key
        self.turns: list[Turn] = []
        self.provider = config.provider
        self.model = config.model
        self.token_estimate = 0
        self.usage_total = 0
        self.created_at = datetime.now(timezone.utc)
        self.lock = asyncio.Lock()

    @property
    def session_id(self) -> str:
        return self.key.session_id


class ContextManager:
    def __init__(
        self,
        client: AIClient | None = None,
        sink: SessionLog | None = None,
    ) -> None:
        self._client = client or ai_client
        self._sink = sink or session_log
        self._sessions: dict[SessionKey, Session] = {}

    # ── lifecycle ────────────────────────────────────────────────────

    def get(self, key: SessionKey) -> Optional[Session]:
        return self._sessions.get(key)

    def get_or_create(self, key: SessionKey) -> Session:
        session = self._sessions.get(key)
        if session is not None:
            return session
        session = Session(key, self._client.config)
        self._sessions[key] = session
        prompt = SYSTEM_PROMPT
        if key.alias:
            prompt = f"{prompt}\n{SERVER_PROMPT.format(alias=key.alias)}"
        self.append(session, Turn(role=Role.system, text=prompt))
        log.info("session.created", session=session.session_id)
        return session

    def reset(self, key: SessionKey) -> bool:
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        log.info("session.reset", session=session.session_id, turns=len(session.turns))
        return True

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    # ── history ──────────────────────────────────────────────────────

    def _estimate(self, turn: Turn) -> int:
        return self._client.provider.estimate_turn(turn)

    def append(self, session: Session, turn: Turn) -> Turn:
        """Append *turn* and return it.

        Compaction renumbers positions, so callers refer to turns by
        ``turn_id``.
        """
        session.turns.append(turn)
        session.token_estimate += self._estimate(turn)
        self._sink.append(session.session_id, turn)

        budget = self._client.context_budget()
        if session.token_estimate > budget:
            try:
                kept = fit_to_budget(session.turns, budget, self._estimate)
            except BudgetExceeded:
                # build_prompt reports it to the operator
                kept = session.turns
            if len(kept) != len(session.turns):
                log.info(
                    "session.truncated",
                    session=session.session_id,
                    dropped=len(session.turns) - len(kept),
                )
                session.turns = kept
                session.token_estimate = sum(self._estimate(t) for t in kept)
        return turn

    def build_prompt(
        self, session: Session, config: ProviderConfig | None = None,
    ) -> list[Turn]:
        """History that fits the budget of *config* (default: active). Pure."""
        config = config or self._client.config
        return fit_to_budget(
            session.turns,
            self._client.context_budget(config),
            self._client.provider_for(config).estimate_turn,
        )

    def record_usage(self, session: Session, config: ProviderConfig, tokens: int) -> None:
        session.provider = config.provider
        session.model = config.model
        session.usage_total += tokens
