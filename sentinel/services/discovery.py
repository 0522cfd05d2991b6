"""Read-only server snapshot for ``/discover``.

Each probe is a fixed command run through the remote executor. A probe that
fails or exits non-zero leaves its field as ``unknown``; a connection
failure aborts the whole report.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sentinel.models.responses import DiscoveryReport
from sentinel.models.server import Server
from sentinel.services.remote_executor import RemoteExecutor, remote_executor
from sentinel.utils.logging import get_logger

log = get_logger(__name__)

PROBES: dict[str, str] = {
    "os_release": "grep PRETTY_NAME /etc/os-release | cut -d= -f2 | tr -d '\"'",
    "kernel_version": "uname -r",
    "hostname": "hostname",
    "uptime": "uptime -p",
    "load_average": "cut -d' ' -f1-3 /proc/loadavg",
    "memory_usage": "free -h | awk '/^Mem:/ {print $3 \"/\" $2}'",
    "disk_usage": "df -h / | awk 'NR==2 {print $3 \"/\" $2 \" (\" $5 \")\"}'",
}

SERVICES_PROBE = (
    "systemctl list-units --type=service --state=running --no-legend --plain"
    " | awk '{print $1}' | head -n 25"
)


async def discover(
    server: Server, *, executor: RemoteExecutor | None = None, timeout: float = 15.0,
) -> DiscoveryReport:
    _exec = executor or remote_executor
    fields: dict[str, str] = {}
    for name, command in PROBES.items():
        result = await _exec.run(server, command, timeout)
        value = result.stdout.strip()
        if result.exit_code == 0 and value:
            fields[name] = value

    services: list[str] = []
    result = await _exec.run(server, SERVICES_PROBE, timeout)
    if result.exit_code == 0:
        services = [line.strip() for line in result.stdout.splitlines() if line.strip()]

    log.info("discovery.done", alias=server.alias, fields=len(fields), services=len(services))
    return DiscoveryReport(
        alias=server.alias,
        services=services,
        timestamp=datetime.now(timezone.utc),
        **fields,
    )


def format_report(report: DiscoveryReport) -> str:
    lines = [
        f"Discovery report for {report.alias}",
        f"OS: {report.os_release}",
        f"Kernel: {report.kernel_version}",
        f"Hostname: {report.hostname}",
        f"Uptime: {report.uptime}",
        f"Load: {report.load_average}",
        f"Memory: {report.memory_usage}",
        f"Disk /: {report.disk_usage}",
    ]
    if report.services:
        lines.append(f"Running services ({len(report.services)}):")
        lines.extend(f"  {name}" for name in report.services)
    return "\n".join(lines)
