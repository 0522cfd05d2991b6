"""Run approved commands on a server and normalize the outcome."""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

from sentinel.config import Settings, settings
from sentinel.models.commands import ExecutionResult, RawOutput
from sentinel.models.server import Server
from sentinel.services.ssh_manager import ssh_manager
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

TRUNCATION_MARKER = "\n[... output truncated ...]"

# Extra time the transport gets to hand back partial output after its deadline
_GRACE_SECONDS = 5.0


class SSHTransport(Protocol):
    async def exec(self, server: Server, command: str, timeout: float) -> RawOutput:
        ...


def truncate_output(text: str, limit: int) -> tuple[str, bool]:
    """Cap *text* at *limit* UTF-8 bytes, marker included.

    The marker counts against the limit, so truncating an already truncated
    text is a no-op. A limit too small for the marker gets a bare cut.
    """
    raw = text.encode("utf-8")
    if len(raw) <= limit:
        return text, False
    marker = TRUNCATION_MARKER.encode("utf-8")
    if limit < len(marker):
        return raw[:max(limit, 0)].decode("utf-8", errors="ignore"), True
    keep = limit - len(marker)
    head = raw[:keep].decode("utf-8", errors="ignore")
    return head + TRUNCATION_MARKER, True


class RemoteExecutor:
    def __init__(
        self, transport: SSHTransport | None = None, cfg: Settings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._transport = transport or ssh_manager

    async def run(
        self, server: Server, command: str, timeout: float | None = None,
    ) -> ExecutionResult:
        """Execute *command*; a non-zero exit code is data, not an error.

        ``ConnectionFailed`` from the transport propagates unchanged.
        """
        timeout = timeout or self._cfg.sentinel_command_timeout_seconds
        limit = self._cfg.sentinel_output_limit_bytes
        log.info("exec.start", alias=server.alias, command=command, timeout=timeout)

        started = time.monotonic()
        try:
            raw = await asyncio.wait_for(
                self._transport.exec(server, command, timeout),
                timeout=timeout + _GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            log.warning("exec.transport_unresponsive", alias=server.alias)
            raw = RawOutput(exit_code=-1, timed_out=True)
        duration = time.monotonic() - started

        stdout, out_cut = truncate_output(raw.stdout, limit)
        stderr, err_cut = truncate_output(raw.stderr, limit)
        result = ExecutionResult(
            exit_code=raw.exit_code,
            stdout=stdout,
            stderr=stderr,
            stdout_truncated=out_cut,
            stderr_truncated=err_cut,
            duration=round(duration, 3),
            timed_out=raw.timed_out,
        )
        log.info(
            "exec.done",
            alias=server.alias,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            duration=result.duration,
        )
        return result


# Singleton instance
remote_executor = RemoteExecutor()
