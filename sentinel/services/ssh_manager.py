"""SSH transport with connection reuse, idle timeout, and per-server locks.

Uses paramiko run inside a small thread pool so the async event loop is
never blocked. One client is kept per server alias and closed after
``sentinel_ssh_idle_timeout_seconds`` without use.
"""

from __future__ import annotations

import asyncio
import select
import socket
import time
from concurrent.futures import ThreadPoolExecutor

import paramiko

from sentinel.config import Settings, settings
from sentinel.errors import ConnectionFailed
from sentinel.models.commands import RawOutput
from sentinel.models.server import Server
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

# Poll interval for select() while waiting on the channel
_POLL_INTERVAL = 0.2
_CHUNK = 65536


class SSHSessionManager:
    """Keeps one paramiko client per server alias."""

    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._clients: dict[str, paramiko.SSHClient] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._idle_handles: dict[str, asyncio.TimerHandle] = {}
        self._last_used: dict[str, float] = {}
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ssh")

    # ── connection lifecycle ──────────────────────────────────────────

    def _lock(self, alias: str) -> asyncio.Lock:
        lock = self._locks.get(alias)
        if lock is None:
            lock = self._locks[alias] = asyncio.Lock()
        return lock

    def _connect_kwargs(self, server: Server) -> dict:
        kwargs: dict = dict(
            hostname=server.host,
            port=server.port,
            username=server.user,
            timeout=self._cfg.sentinel_ssh_connect_timeout_seconds,
            banner_timeout=self._cfg.sentinel_ssh_connect_timeout_seconds,
            auth_timeout=self._cfg.sentinel_ssh_connect_timeout_seconds,
            allow_agent=True,
            look_for_keys=True,
        )
        key_path = server.key_path or self._cfg.sentinel_ssh_key_path
        if key_path:
            kwargs["key_filename"] = key_path
        return kwargs

    def _open_sync(self, server: Server) -> paramiko.SSHClient:
        log.info("ssh.connecting", alias=server.alias, target=server.target)
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(**self._connect_kwargs(server))
        except paramiko.AuthenticationException as exc:
            client.close()
            raise ConnectionFailed(
                f"authentication to {server.target} failed: {exc}",
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise ConnectionFailed(f"cannot reach {server.target}: {exc}") from exc
        log.info("ssh.connected", alias=server.alias)
        return client

    def _close_sync(self, alias: str) -> None:
        client = self._clients.pop(alias, None)
        if client is not None:
            try:
                client.close()
            except Exception:
                pass
            log.info("ssh.closed", alias=alias)

    async def _ensure(self, server: Server) -> paramiko.SSHClient:
        client = self._clients.get(server.alias)
        if client is not None:
            transport = client.get_transport()
            if transport is not None and transport.is_active():
                return client
            await self._run(self._close_sync, server.alias)
        client = await self._run(self._open_sync, server)
        self._clients[server.alias] = client
        return client

    # ── idle timeout ──────────────────────────────────────────────────

    def _reset_idle(self, alias: str) -> None:
        self._last_used[alias] = time.monotonic()
        handle = self._idle_handles.pop(alias, None)
        if handle is not None:
            handle.cancel()
        try:
            loop = asyncio.get_running_loop()
            self._idle_handles[alias] = loop.call_later(
                self._cfg.sentinel_ssh_idle_timeout_seconds,
                lambda: asyncio.ensure_future(self._idle_close(alias)),
            )
        except RuntimeError:
            pass

    async def _idle_close(self, alias: str) -> None:
        async with self._lock(alias):
            elapsed = time.monotonic() - self._last_used.get(alias, 0.0)
            if elapsed >= self._cfg.sentinel_ssh_idle_timeout_seconds:
                log.info("ssh.idle_timeout", alias=alias, elapsed=elapsed)
                await self._run(self._close_sync, alias)

    # ── helpers ───────────────────────────────────────────────────────

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    # ── public ────────────────────────────────────────────────────────

    async def exec(self, server: Server, command: str, timeout: float) -> RawOutput:
        """Run *command* on *server*, reading for at most *timeout* seconds."""
        async with self._lock(server.alias):
            client = await self._ensure(server)
            self._reset_idle(server.alias)
            try:
                return await self._run(
                    _exec_wrapper, client, command, timeout,
                    self._cfg.sentinel_output_limit_bytes,
                )
            except (paramiko.SSHException, OSError) as exc:
                # Broken transport: drop it so the next call reconnects
                await self._run(self._close_sync, server.alias)
                raise ConnectionFailed(
                    f"SSH session to {server.target} failed: {exc}",
                ) from exc

    async def close(self) -> None:
        for alias in list(self._clients):
            async with self._lock(alias):
                handle = self._idle_handles.pop(alias, None)
                if handle is not None:
                    handle.cancel()
                await self._run(self._close_sync, alias)


# ── module-level sync wrapper (executor-friendly) ─────────────────────────


class _CappedBuffer:
    """Keeps the first ``limit + 1`` bytes of a stream; the extra byte marks a cut."""

    def __init__(self, limit: int) -> None:
        self._keep = limit + 1
        self.data = bytearray()
        self.discarded = 0

    def feed(self, chunk: bytes) -> None:
        room = max(self._keep - len(self.data), 0)
        self.data += chunk[:room]
        self.discarded += len(chunk) - len(chunk[:room])

    def text(self) -> str:
        return bytes(self.data).decode("utf-8", errors="replace")


def _exec_wrapper(
    client: paramiko.SSHClient, command: str, timeout: float, limit: int,
) -> RawOutput:
    """Execute on a fresh channel; stop reading at the deadline.

    At most one chunk per stream is read between deadline checks, so a
    command that never stops writing still times out. Output past *limit*
    bytes is read and discarded. On timeout the channel is closed, which
    makes sshd hang up on the remote process, and whatever was kept is
    returned.
    """
    transport = client.get_transport()
    if transport is None or not transport.is_active():
        raise paramiko.SSHException("transport not active")

    channel = transport.open_session()
    channel.exec_command(command)
    channel.setblocking(0)

    stdout = _CappedBuffer(limit)
    stderr = _CappedBuffer(limit)
    deadline = time.monotonic() + timeout
    timed_out = False
    try:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                timed_out = True
                break
            readable, _, _ = select.select(
                [channel], [], [], min(remaining, _POLL_INTERVAL),
            )
            if readable or channel.recv_ready() or channel.recv_stderr_ready():
                try:
                    if channel.recv_ready():
                        stdout.feed(channel.recv(_CHUNK))
                    if channel.recv_stderr_ready():
                        stderr.feed(channel.recv_stderr(_CHUNK))
                except socket.timeout:
                    pass
            if (
                channel.exit_status_ready()
                and not channel.recv_ready()
                and not channel.recv_stderr_ready()
            ):
                break
        exit_code = channel.recv_exit_status() if not timed_out else -1
    finally:
        channel.close()

    if timed_out:
        log.warning("ssh.exec_timeout", command=command[:80], timeout=timeout)
    if stdout.discarded or stderr.discarded:
        log.info(
            "ssh.output_capped",
            command=command[:80],
            stdout_discarded=stdout.discarded,
            stderr_discarded=stderr.discarded,
        )
    return RawOutput(
        stdout=stdout.text(),
        stderr=stderr.text(),
        exit_code=exit_code,
        timed_out=timed_out,
    )


# ── Singleton instance ────────────────────────────────────────────────────

ssh_manager = SSHSessionManager()
