"""Mock SSH transport for testing without a real server.

Provides canned Linux command outputs so that investigation flows can be
tested end to end.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from sentinel.models.commands import RawOutput
from sentinel.models.server import Server

# ── Canned outputs ────────────────────────────────────────────────────────

DF_H = """\
Filesystem      Size  Used Avail Use% Mounted on
/dev/sda1        50G   22G   26G  45% /
tmpfs           2.0G     0  2.0G   0% /dev/shm
"""

UPTIME = " 10:14:02 up 14 days,  3:22,  1 user,  load average: 0.08, 0.03, 0.01\n"

FREE_H = """\
               total        used        free      shared  buff/cache   available
Mem:           3.8Gi       1.1Gi       1.2Gi        12Mi       1.5Gi       2.5Gi
"""

CANNED: dict[str, RawOutput] = {
    "df -h": RawOutput(stdout=DF_H, exit_code=0),
    "uptime": RawOutput(stdout=UPTIME, exit_code=0),
    "free -h": RawOutput(stdout=FREE_H, exit_code=0),
    "hostname": RawOutput(stdout="prod-web-01\n", exit_code=0),
    "uname -r": RawOutput(stdout="6.1.0-18-amd64\n", exit_code=0),
    "cat /nonexistent": RawOutput(
        stderr="cat: /nonexistent: No such file or directory\n", exit_code=1,
    ),
}


class MockSSHManager:
    """Drop-in replacement for ``SSHSessionManager``.

    ``sleep <seconds>`` blocks for that long (bounded by the timeout) and
    reports a timeout when it is cut short. Set ``fail_with`` to make every
    call raise.
    """

    def __init__(self) -> None:
        self.history: list[tuple[str, str]] = []
        self.outputs: dict[str, RawOutput] = dict(CANNED)
        self.fail_with: Optional[Exception] = None
        self.connected: set[str] = set()

    async def exec(self, server: Server, command: str, timeout: float) -> RawOutput:
        self.history.append((server.alias, command))
        if self.fail_with is not None:
            raise self.fail_with
        self.connected.add(server.alias)

        if command.startswith("sleep "):
            wanted = float(command.split()[1])
            await asyncio.sleep(min(wanted, timeout))
            if wanted > timeout:
                return RawOutput(stdout="partial\n", exit_code=-1, timed_out=True)
            return RawOutput(exit_code=0)

        if command in self.outputs:
            return self.outputs[command]
        return RawOutput(
            stderr=f"bash: {command.split()[0]}: command not found\n", exit_code=127,
        )

    async def close(self) -> None:
        self.connected.clear()
