"""Append-only JSON-lines log of completed turns, one file per session id."""

from __future__ import annotations

import re
import threading
from pathlib import Path

from pydantic import ValidationError

from sentinel.config import Settings, settings
from sentinel.models.session import Turn
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def session_file(directory: Path, session_id: str) -> Path:
    return directory / f"{_UNSAFE.sub('_', session_id)}.jsonl"


class SessionLog:
    def __init__(self, cfg: Settings | None = None, directory: str | None = None) -> None:
        self._cfg = cfg or settings
        root = directory if directory is not None else self._cfg.sentinel_session_log_dir
        self._dir = Path(root) if root else None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._dir is not None

    def append(self, session_id: str, turn: Turn) -> None:
        if self._dir is None:
            return
        line = turn.model_dump_json() + "\n"
        with self._lock:
            self._dir.mkdir(parents=True, exist_ok=True)
            with session_file(self._dir, session_id).open("a", encoding="utf-8") as fh:
                fh.write(line)

    def read(self, session_id: str, limit: int | None = None) -> list[Turn]:
        if self._dir is None:
            return []
        path = session_file(self._dir, session_id)
        if not path.is_file():
            return []
        turns: list[Turn] = []
        with path.open("r", encoding="utf-8") as fh:
            for lineno, raw in enumerate(fh, start=1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    turns.append(Turn.model_validate_json(raw))
                except ValidationError:
                    log.warning("session_log.bad_line", session=session_id, line=lineno)
        if limit is not None:
            turns = turns[-limit:]
        return turns

    def session_ids(self) -> list[str]:
        if self._dir is None or not self._dir.is_dir():
            return []
        return sorted(p.stem for p in self._dir.glob("*.jsonl"))


# Singleton instance
session_log = SessionLog()
