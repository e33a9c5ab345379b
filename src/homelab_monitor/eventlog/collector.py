"""Snapshot collector.

Runs every configured probe concurrently and merges the outcomes into one
``Snapshot``. Each probe call is isolated by ``run_probe``: exceptions and
timeouts become a failed ``ProbeResult`` instead of propagating, so
``collect_snapshot`` always returns a snapshot, even when every subsystem
is down. Failures are recorded in ``Snapshot.errors``.

Design principles:
- Independent failure domains: one unreachable subsystem never aborts the rest
- Per-probe timeout: a hung probe cannot stall the whole snapshot
- No retries: retry/backoff belongs to the scheduler
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from .models import (
    DockerSnapshot,
    NetworkSnapshot,
    Snapshot,
    utc_now,
)
from .probes import (
    DockerProbe,
    HealthProbe,
    NetworkScanner,
    SecurityProbe,
    SpeedtestProbe,
    TailscaleProbe,
    TrafficProbe,
    collect_power_events,
    collect_system_metrics,
    probe_docker,
    probe_network,
    probe_security,
    probe_services,
    probe_speedtest,
    probe_tailscale,
    probe_traffic,
)

logger = structlog.get_logger(__name__)


@dataclass
class CollectorSettings:
    """Tunables for one collection pass."""

    probe_timeout_seconds: float = 10.0
    network_range: str = "192.168.1.0/24"
    quick_scan: bool = True
    power_lookback_minutes: int = 10
    cpu_sample_seconds: float = 0.5

    @classmethod
    def from_config(cls, config) -> "CollectorSettings":
        """Build settings from a ConfigManager (or anything with ``get(key)``)."""
        return cls(
            probe_timeout_seconds=float(config.get("collector.probe_timeout_seconds")),
            network_range=config.get("collector.network_range"),
            quick_scan=bool(config.get("collector.quick_scan")),
            power_lookback_minutes=int(config.get("collector.power_lookback_minutes")),
        )


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one probe call: either a value or an error message."""

    name: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_probe(
    name: str,
    probe: Callable[[], Awaitable[Any]],
    timeout: float,
) -> ProbeResult:
    """Await ``probe()`` with a timeout, converting any failure into a ProbeResult.

    Never raises (except on cancellation of the caller).
    """
    try:
        value = await asyncio.wait_for(probe(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("probe_timed_out", probe=name, timeout_seconds=timeout)
        return ProbeResult(name=name, error=f"timed out after {timeout:g}s")
    except Exception as exc:  # noqa: BLE001
        message = str(exc) or type(exc).__name__
        logger.warning("probe_failed", probe=name, error=message)
        return ProbeResult(name=name, error=message)
    return ProbeResult(name=name, value=value)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def assemble_snapshot(timestamp: datetime, results: dict[str, ProbeResult]) -> Snapshot:
    """Merge probe outcomes into a Snapshot.

    Total over its inputs: every combination of missing, failed and
    successful results produces a valid Snapshot. Successful values are
    already normalised by the probe adapters. A key absent from ``results``
    means the probe was not configured; its sub-record is None and no error
    is recorded.

    Args:
        timestamp: Collection time (UTC).
        results: ProbeResult per probe name ("system", "power", "tailscale",
            "docker", "network", "traffic", "security", "services", "speedtest").
    """
    errors: list[str] = []

    def value_or_error(name: str, label: str) -> Any:
        result = results.get(name)
        if result is None:
            return None
        if not result.ok:
            errors.append(f"{label}: {result.error}")
            return None
        return result.value

    system = value_or_error("system", "System")
    power = value_or_error("power", "Power")

    tailscale = value_or_error("tailscale", "Tailscale")
    if tailscale is None and "tailscale" in results and results["tailscale"].ok:
        errors.append("Tailscale not installed")

    docker = None
    if "docker" in results:
        containers = value_or_error("docker", "Docker")
        if containers is None:
            if results["docker"].ok:
                errors.append("Docker not available")
            docker = DockerSnapshot(available=False, running_count=0, total_count=0)
        else:
            docker = DockerSnapshot(
                available=True,
                running_count=sum(1 for c in containers if c.is_running),
                total_count=len(containers),
                containers=containers,
            )

    devices = value_or_error("network", "Network")
    traffic = value_or_error("traffic", "Traffic")
    security = value_or_error("security", "Security")
    network = None
    if devices is not None or traffic is not None or security is not None:
        network = NetworkSnapshot(
            device_count=len(devices) if devices is not None else None,
            devices=devices,
            traffic=traffic,
            security=security,
        )

    services = value_or_error("services", "Health") or []
    speedtest = value_or_error("speedtest", "Speedtest")

    return Snapshot(
        timestamp=timestamp,
        system=system,
        docker=docker,
        tailscale=tailscale,
        network=network,
        power=power,
        speedtest=speedtest,
        services=services,
        errors=errors,
    )


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class SnapshotCollector:
    """Gathers one Snapshot from all subsystems concurrently.

    Collaborator probes are optional; a probe left as None is simply not
    collected. The built-in system and power probes can be switched off for
    tests or non-local collection.
    """

    def __init__(
        self,
        docker: Optional[DockerProbe] = None,
        tailscale: Optional[TailscaleProbe] = None,
        scanner: Optional[NetworkScanner] = None,
        traffic: Optional[TrafficProbe] = None,
        security: Optional[SecurityProbe] = None,
        health: Optional[HealthProbe] = None,
        speedtest: Optional[SpeedtestProbe] = None,
        settings: Optional[CollectorSettings] = None,
        collect_system: bool = True,
        collect_power: bool = True,
    ):
        self.docker = docker
        self.tailscale = tailscale
        self.scanner = scanner
        self.traffic = traffic
        self.security = security
        self.health = health
        self.speedtest = speedtest
        self.settings = settings or CollectorSettings()
        self.collect_system = collect_system
        self.collect_power = collect_power

    def _probes(self, include_speedtest: bool) -> dict[str, Callable[[], Awaitable[Any]]]:
        s = self.settings
        probes: dict[str, Callable[[], Awaitable[Any]]] = {}

        if self.collect_system:
            probes["system"] = lambda: asyncio.to_thread(collect_system_metrics, s.cpu_sample_seconds)
        if self.collect_power:
            probes["power"] = lambda: collect_power_events(s.power_lookback_minutes, s.probe_timeout_seconds)
        if self.tailscale is not None:
            probes["tailscale"] = lambda: probe_tailscale(self.tailscale)
        if self.docker is not None:
            probes["docker"] = lambda: probe_docker(self.docker)
        if self.scanner is not None:
            probes["network"] = lambda: probe_network(self.scanner, s.network_range, s.quick_scan)
        if self.traffic is not None:
            probes["traffic"] = lambda: probe_traffic(self.traffic)
        if self.security is not None:
            probes["security"] = lambda: probe_security(self.security)
        if self.health is not None:
            probes["services"] = lambda: probe_services(self.health)
        if include_speedtest:
            if self.speedtest is None:
                logger.warning("speedtest_requested_without_probe")
            else:
                probes["speedtest"] = lambda: probe_speedtest(self.speedtest)
        return probes

    async def collect_snapshot(self, include_speedtest: bool = False) -> Snapshot:
        """Collect one Snapshot stamped with the current UTC time.

        Args:
            include_speedtest: Also run the speed test probe (slow; only on request).

        Returns:
            A Snapshot; never raises for probe failures.
        """
        timestamp = utc_now()
        probes = self._probes(include_speedtest)
        timeout = self.settings.probe_timeout_seconds

        outcomes = await asyncio.gather(
            *(run_probe(name, probe, timeout) for name, probe in probes.items())
        )
        results = {result.name: result for result in outcomes}
        snapshot = assemble_snapshot(timestamp, results)

        logger.debug(
            "snapshot_collected",
            timestamp=timestamp.isoformat(),
            probes=len(results),
            failed=sum(1 for r in outcomes if not r.ok),
        )
        return snapshot
