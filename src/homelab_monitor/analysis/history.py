"""History facets computed from an ordered snapshot sequence.

``build_history`` is the single computation behind both narrative forms
(terminal timeline and LLM prose digest). Each facet is independent and
empty/None when the snapshots carry no data for it.

Change facets (Docker, service health, network devices) compare each
snapshot with the most recent earlier snapshot that carried data for that
subsystem, so an outage of one collector does not show up as every
container stopping and restarting.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal, Optional

from ..eventlog.models import AlertBrief, PowerEvent, Snapshot
from .formatters import format_duration


@dataclass(frozen=True)
class HistorySettings:
    gap_threshold_minutes: float = 10.0
    power_event_limit: int = 20
    security_top_alerts: int = 3

    @classmethod
    def from_config(cls, config) -> "HistorySettings":
        return cls(
            gap_threshold_minutes=float(config.get("narrator.gap_threshold_minutes")),
            power_event_limit=int(config.get("narrator.power_event_limit")),
            security_top_alerts=int(config.get("narrator.security_top_alerts")),
        )


@dataclass(frozen=True)
class Gap:
    """Two consecutive snapshots further apart than the gap threshold."""

    start: datetime
    end: datetime
    after_index: int  # Index of the snapshot preceding the gap

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def label(self) -> str:
        return format_duration(self.duration)


@dataclass(frozen=True)
class ConnectivitySummary:
    samples: int  # Snapshots carrying Tailscale data
    connected_samples: int
    disconnections: int  # connected -> disconnected transitions

    @property
    def connected_fraction(self) -> float:
        return self.connected_samples / self.samples if self.samples else 0.0


@dataclass(frozen=True)
class ContainerChange:
    timestamp: datetime
    name: str
    change: Literal["stopped", "started"]


@dataclass(frozen=True)
class ServiceChange:
    timestamp: datetime
    name: str
    change: Literal["down", "recovered"]


@dataclass(frozen=True)
class DeviceChange:
    timestamp: datetime
    ip: str
    change: Literal["new device", "device left"]
    label: str = ""  # hostname or vendor when known


@dataclass(frozen=True)
class SecurityDigestEntry:
    timestamp: datetime
    critical_count: int
    high_count: int
    top_alerts: list[AlertBrief] = field(default_factory=list)


@dataclass(frozen=True)
class TrafficTrend:
    minimum: int
    mean: float
    maximum: int
    samples: int


@dataclass
class HistoryDigest:
    """All facets for one snapshot sequence."""

    snapshot_count: int = 0
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    gaps: list[Gap] = field(default_factory=list)
    power_events: list[PowerEvent] = field(default_factory=list)
    power_event_total: int = 0
    connectivity: Optional[ConnectivitySummary] = None
    container_changes: list[ContainerChange] = field(default_factory=list)
    service_changes: list[ServiceChange] = field(default_factory=list)
    device_changes: list[DeviceChange] = field(default_factory=list)
    security: list[SecurityDigestEntry] = field(default_factory=list)
    traffic: Optional[TrafficTrend] = None

    @property
    def span(self) -> Optional[timedelta]:
        if self.first_timestamp is None or self.last_timestamp is None:
            return None
        return self.last_timestamp - self.first_timestamp


def build_history(
    snapshots: list[Snapshot],
    settings: Optional[HistorySettings] = None,
) -> HistoryDigest:
    """Compute every history facet for ``snapshots`` (chronological order)."""
    settings = settings or HistorySettings()
    if not snapshots:
        return HistoryDigest()

    power_events = _power_events(snapshots)
    return HistoryDigest(
        snapshot_count=len(snapshots),
        first_timestamp=snapshots[0].timestamp,
        last_timestamp=snapshots[-1].timestamp,
        gaps=detect_gaps(snapshots, settings.gap_threshold_minutes),
        # Most recent events win when capped.
        power_events=power_events[max(0, len(power_events) - settings.power_event_limit):],
        power_event_total=len(power_events),
        connectivity=_connectivity(snapshots),
        container_changes=_container_changes(snapshots),
        service_changes=_service_changes(snapshots),
        device_changes=_device_changes(snapshots),
        security=_security_digest(snapshots, settings.security_top_alerts),
        traffic=_traffic_trend(snapshots),
    )


def detect_gaps(snapshots: list[Snapshot], threshold_minutes: float = 10.0) -> list[Gap]:
    """Return every consecutive pair whose timestamps differ by more than the threshold."""
    threshold = timedelta(minutes=threshold_minutes)
    gaps = []
    for i in range(1, len(snapshots)):
        start, end = snapshots[i - 1].timestamp, snapshots[i].timestamp
        if end - start > threshold:
            gaps.append(Gap(start=start, end=end, after_index=i - 1))
    return gaps


def _power_events(snapshots: list[Snapshot]) -> list[PowerEvent]:
    events = [
        event
        for snapshot in snapshots
        if snapshot.power is not None
        for event in snapshot.power.recent_events
    ]
    return sorted(events, key=lambda e: e.timestamp)


def _connectivity(snapshots: list[Snapshot]) -> Optional[ConnectivitySummary]:
    states = [s.tailscale.is_connected for s in snapshots if s.tailscale is not None]
    if not states:
        return None
    disconnections = sum(
        1 for before, after in zip(states, states[1:]) if before and not after
    )
    return ConnectivitySummary(
        samples=len(states),
        connected_samples=sum(1 for s in states if s),
        disconnections=disconnections,
    )


def _container_changes(snapshots: list[Snapshot]) -> list[ContainerChange]:
    changes: list[ContainerChange] = []
    previous: Optional[set[str]] = None
    for snapshot in snapshots:
        docker = snapshot.docker
        if docker is None or not docker.available:
            continue
        running = {c.name for c in docker.containers if c.is_running}
        if previous is not None:
            for name in sorted(previous - running):
                changes.append(ContainerChange(snapshot.timestamp, name, "stopped"))
            for name in sorted(running - previous):
                changes.append(ContainerChange(snapshot.timestamp, name, "started"))
        previous = running
    return changes


def _service_changes(snapshots: list[Snapshot]) -> list[ServiceChange]:
    changes: list[ServiceChange] = []
    last_state: dict[str, bool] = {}
    for snapshot in snapshots:
        for entry in snapshot.services:
            before = last_state.get(entry.name)
            if before is True and not entry.is_healthy:
                changes.append(ServiceChange(snapshot.timestamp, entry.name, "down"))
            elif before is False and entry.is_healthy:
                changes.append(ServiceChange(snapshot.timestamp, entry.name, "recovered"))
            last_state[entry.name] = entry.is_healthy
    return changes


def _device_changes(snapshots: list[Snapshot]) -> list[DeviceChange]:
    changes: list[DeviceChange] = []
    previous: Optional[set[str]] = None
    labels: dict[str, str] = {}
    for snapshot in snapshots:
        ips = snapshot.device_ips()
        if ips is None:
            continue
        for device in snapshot.network.devices:
            label = device.hostname or device.vendor
            if label:
                labels[device.ip] = label
        if previous is not None:
            for ip in sorted(ips - previous):
                changes.append(DeviceChange(snapshot.timestamp, ip, "new device", labels.get(ip, "")))
            for ip in sorted(previous - ips):
                changes.append(DeviceChange(snapshot.timestamp, ip, "device left", labels.get(ip, "")))
        previous = ips
    return changes


def _security_digest(snapshots: list[Snapshot], top_n: int) -> list[SecurityDigestEntry]:
    entries = []
    for snapshot in snapshots:
        security = snapshot.network.security if snapshot.network else None
        if security is None or security.critical_count + security.high_count <= 0:
            continue
        entries.append(SecurityDigestEntry(
            timestamp=snapshot.timestamp,
            critical_count=security.critical_count,
            high_count=security.high_count,
            top_alerts=list(security.recent_alerts[:top_n]),
        ))
    return entries


def _traffic_trend(snapshots: list[Snapshot]) -> Optional[TrafficTrend]:
    values = [
        s.network.traffic.total_bytes
        for s in snapshots
        if s.network is not None and s.network.traffic is not None
    ]
    if not values:
        return None
    return TrafficTrend(
        minimum=min(values),
        mean=sum(values) / len(values),
        maximum=max(values),
        samples=len(values),
    )
