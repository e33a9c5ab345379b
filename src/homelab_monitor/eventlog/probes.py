"""Subsystem probes feeding the snapshot collector.

Two kinds of probe live here:

- Built-in local probes (system metrics via psutil, macOS power events via
  ``pmset``) that need nothing but the host.
- Protocols for collaborator probes (Docker, Tailscale, network scanner,
  traffic, IDS, service health, speed test). Their implementations are
  protocol clients outside this package and are injected into the collector.
  Methods may be plain functions or coroutines; the collector accepts both.
"""

import asyncio
import inspect
import re
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Optional, Protocol, Union

import psutil
import structlog

from .models import (
    ContainerBrief,
    DeviceBrief,
    PowerEvent,
    PowerSnapshot,
    SecuritySummary,
    ServiceHealthEntry,
    SpeedtestSnapshot,
    SystemSnapshot,
    TailscaleSnapshot,
    TrafficSummary,
    utc_now,
)

logger = structlog.get_logger(__name__)

MaybeAwaitable = Union[Any, Awaitable[Any]]


# ---------------------------------------------------------------------------
# Collaborator results and protocols
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TailscalePeer:
    name: str
    online: bool


@dataclass(frozen=True)
class TailscaleStatus:
    """Raw status reported by the Tailscale client."""

    installed: bool
    connected: bool = False
    backend_state: str = ""
    self_ip: Optional[str] = None
    peers: list[TailscalePeer] = field(default_factory=list)


class DockerProbe(Protocol):
    def is_docker_available(self) -> MaybeAwaitable: ...

    def list_containers(self) -> MaybeAwaitable: ...  # -> list[ContainerBrief]


class TailscaleProbe(Protocol):
    def get_status(self) -> MaybeAwaitable: ...  # -> TailscaleStatus


class NetworkScanner(Protocol):
    def scan_network(self, network_range: str, quick: bool) -> MaybeAwaitable: ...  # -> list[DeviceBrief]


class TrafficProbe(Protocol):
    def get_traffic(self) -> MaybeAwaitable: ...  # -> Optional[TrafficSummary]


class SecurityProbe(Protocol):
    def get_security(self) -> MaybeAwaitable: ...  # -> Optional[SecuritySummary]


class HealthProbe(Protocol):
    def check_all_services(self) -> MaybeAwaitable: ...  # -> list[ServiceHealthEntry]


class SpeedtestProbe(Protocol):
    def run(self) -> MaybeAwaitable: ...  # -> SpeedtestSnapshot


async def call_probe(fn, *args: Any) -> Any:
    """Call a sync or async probe method without blocking the event loop.

    Coroutine functions are awaited directly; plain callables run in a worker
    thread, and an awaitable they return is awaited afterwards.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result


# ---------------------------------------------------------------------------
# Collaborator adapters (return the shape the collector merges)
# ---------------------------------------------------------------------------


async def probe_docker(docker: DockerProbe) -> Optional[list[ContainerBrief]]:
    """Return the container list, or None when the Docker daemon is not available."""
    if not await call_probe(docker.is_docker_available):
        return None
    containers = await call_probe(docker.list_containers)
    return [ContainerBrief(name=c.name, is_running=bool(c.is_running)) for c in containers]


async def probe_tailscale(tailscale: TailscaleProbe) -> Optional[TailscaleSnapshot]:
    """Return the VPN summary, or None when Tailscale is not installed."""
    status = await call_probe(tailscale.get_status)
    if not status.installed:
        return None
    peers = list(status.peers)
    return TailscaleSnapshot(
        is_connected=bool(status.connected),
        backend_state=status.backend_state,
        self_ip=status.self_ip,
        peer_count=len(peers),
        online_peer_count=sum(1 for p in peers if p.online),
    )


async def probe_network(scanner: NetworkScanner, network_range: str, quick: bool) -> list[DeviceBrief]:
    devices = await call_probe(scanner.scan_network, network_range, quick)
    return list(devices)


async def probe_traffic(traffic: TrafficProbe) -> Optional[TrafficSummary]:
    return await call_probe(traffic.get_traffic)


async def probe_security(security: SecurityProbe) -> Optional[SecuritySummary]:
    return await call_probe(security.get_security)


async def probe_services(health: HealthProbe) -> list[ServiceHealthEntry]:
    results = await call_probe(health.check_all_services)
    return [ServiceHealthEntry(name=r.name, is_healthy=bool(r.is_healthy)) for r in results]


async def probe_speedtest(speedtest: SpeedtestProbe) -> SpeedtestSnapshot:
    return await call_probe(speedtest.run)


# ---------------------------------------------------------------------------
# Built-in system probe (psutil)
# ---------------------------------------------------------------------------


def collect_system_metrics(cpu_interval: float = 0.5) -> SystemSnapshot:
    """Collect host CPU, memory, disk usage and uptime (blocking).

    ``cpu_percent`` samples over ``cpu_interval`` seconds, so callers should
    run this in a worker thread.
    """
    cpu = psutil.cpu_percent(interval=cpu_interval)
    memory = psutil.virtual_memory().percent
    disk = psutil.disk_usage("/").percent
    uptime_seconds = int(time.time() - psutil.boot_time())

    return SystemSnapshot(
        cpu_percent=round(cpu, 1),
        memory_percent=round(memory, 1),
        disk_percent=round(disk, 1),
        uptime=format_uptime(uptime_seconds),
    )


def format_uptime(seconds: int) -> str:
    """Format an uptime in seconds as "3d 4h 12m" / "4h 12m" / "12m"."""
    seconds = max(0, seconds)
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


# ---------------------------------------------------------------------------
# Built-in power probe (macOS pmset)
# ---------------------------------------------------------------------------

# "2026-02-10 14:30:00 +0100 Sleep     Entering Sleep state due to 'Idle Sleep'"
_PMSET_EVENT = re.compile(
    r"^(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})\s+([+-]\d{4})\s+(Sleep|Wake|DarkWake)\s"
)


def parse_pmset_log(output: str, since: datetime) -> list[PowerEvent]:
    """Extract Sleep/Wake/DarkWake events at or after ``since`` from ``pmset -g log``.

    Unparseable lines are ignored. Event timestamps are converted to UTC.
    """
    events: list[PowerEvent] = []
    for line in output.splitlines():
        match = _PMSET_EVENT.match(line)
        if not match:
            continue
        stamp = re.sub(r"\s+", " ", match.group(1))
        try:
            local = datetime.strptime(f"{stamp} {match.group(2)}", "%Y-%m-%d %H:%M:%S %z")
        except ValueError:
            continue
        when = local.astimezone(since.tzinfo) if since.tzinfo else local
        if when >= since:
            events.append(PowerEvent(timestamp=when, type=match.group(3)))
    return events


async def collect_power_events(lookback_minutes: int = 10, timeout: float = 10.0) -> Optional[PowerSnapshot]:
    """Read recent power events from ``pmset``.

    Returns:
        PowerSnapshot with events from the last ``lookback_minutes``, or None
        when ``pmset`` is not installed (non-macOS hosts).

    Raises:
        RuntimeError: If ``pmset`` exits with a non-zero status.
    """
    if shutil.which("pmset") is None:
        return None

    proc = await asyncio.create_subprocess_exec(
        "pmset", "-g", "log",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    finally:
        # Also reached on cancellation by the collector's own timeout.
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()

    if proc.returncode != 0:
        raise RuntimeError(f"pmset exited with status {proc.returncode}")

    since = utc_now() - timedelta(minutes=lookback_minutes)
    events = parse_pmset_log(stdout.decode("utf-8", errors="replace"), since)
    logger.debug("power_events_parsed", count=len(events))
    return PowerSnapshot(recent_events=events)
