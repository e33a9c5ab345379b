"""Event log data models.

One ``Snapshot`` is a point-in-time observation of the homelab: system
metrics, containers, VPN, network devices/traffic/security, power events,
an optional speed test and service health. Every sub-record is optional
because its source may be unreachable when the snapshot is taken; absence
is always ``None``, never a sentinel value such as ``-1``.

Snapshots are serialized as one compact JSON object per line (JSONL) with
snake_case keys. ``None`` fields are omitted on write and restored as
``None`` on read, so ``snapshot_from_json(snapshot_to_json(s)) == s``.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

Severity = Literal["info", "warning", "critical"]
AnomalyType = Literal[
    "new_device",
    "device_gone",
    "traffic_spike",
    "security_alert",
    "device_count_anomaly",
]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are assumed to be UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


def as_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC; naive values are assumed to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return as_utc(value).isoformat()


# ---------------------------------------------------------------------------
# Sub-records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SystemSnapshot:
    """Host resource usage."""

    cpu_percent: float
    memory_percent: float
    disk_percent: float
    uptime: str  # Human-readable, e.g. "3d 4h 12m"


@dataclass(frozen=True)
class ContainerBrief:
    name: str
    is_running: bool


@dataclass(frozen=True)
class DockerSnapshot:
    """Container state. ``available=False`` when the Docker daemon is unreachable."""

    available: bool
    running_count: int
    total_count: int
    containers: list[ContainerBrief] = field(default_factory=list)


@dataclass(frozen=True)
class TailscaleSnapshot:
    """VPN connectivity."""

    is_connected: bool
    backend_state: str  # "Running" | "Stopped" | "NeedsLogin" | ...
    self_ip: Optional[str]
    peer_count: int
    online_peer_count: int


@dataclass(frozen=True)
class DeviceBrief:
    ip: str
    mac: Optional[str] = None
    hostname: Optional[str] = None
    vendor: Optional[str] = None


@dataclass(frozen=True)
class TopTalker:
    ip: str
    total_bytes: int
    name: Optional[str] = None


@dataclass(frozen=True)
class TrafficSummary:
    """Aggregate traffic counters (e.g. from ntopng)."""

    total_bytes: int
    top_talkers: list[TopTalker] = field(default_factory=list)


@dataclass(frozen=True)
class AlertBrief:
    severity: str  # "critical" | "high" | "medium" | "low"
    signature: str
    source_ip: str
    destination_ip: str
    category: Optional[str] = None


@dataclass(frozen=True)
class SecuritySummary:
    """IDS alert counters (e.g. from Suricata)."""

    total_alerts: int
    critical_count: int
    high_count: int
    recent_alerts: list[AlertBrief] = field(default_factory=list)


@dataclass(frozen=True)
class NetworkSnapshot:
    """LAN state.

    ``device_count`` and ``devices`` are ``None`` when the device scan failed
    but traffic or security data was still collected.
    """

    device_count: Optional[int]
    devices: Optional[list[DeviceBrief]]
    traffic: Optional[TrafficSummary] = None
    security: Optional[SecuritySummary] = None


@dataclass(frozen=True)
class PowerEvent:
    timestamp: datetime
    type: str  # "Sleep" | "Wake" | "DarkWake"


@dataclass(frozen=True)
class PowerSnapshot:
    """Power events observed since the previous snapshot."""

    recent_events: list[PowerEvent] = field(default_factory=list)


@dataclass(frozen=True)
class SpeedtestSnapshot:
    """Internet speed test result, present only when a test was requested."""

    download_mbps: Optional[float] = None
    upload_mbps: Optional[float] = None
    ping_ms: Optional[float] = None
    server: str = ""
    isp: str = ""
    ip: str = ""


@dataclass(frozen=True)
class ServiceHealthEntry:
    name: str
    is_healthy: bool


@dataclass(frozen=True)
class Snapshot:
    """One timestamped observation of homelab state."""

    timestamp: datetime
    system: Optional[SystemSnapshot] = None
    docker: Optional[DockerSnapshot] = None
    tailscale: Optional[TailscaleSnapshot] = None
    network: Optional[NetworkSnapshot] = None
    power: Optional[PowerSnapshot] = None
    speedtest: Optional[SpeedtestSnapshot] = None
    services: list[ServiceHealthEntry] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)  # Diagnostic only

    def device_ips(self) -> Optional[set[str]]:
        """Return the set of scanned device IPs, or None if no scan data exists."""
        if self.network is None or self.network.devices is None:
            return None
        return {device.ip for device in self.network.devices}


@dataclass(frozen=True)
class Anomaly:
    """A derived, never-persisted signal about a change between snapshots."""

    timestamp: datetime
    type: AnomalyType
    severity: Severity
    description: str
    details: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop None values so absent sub-records are omitted from the JSON line."""
    return {key: value for key, value in data.items() if value is not None}


def _system_to_dict(s: SystemSnapshot) -> dict[str, Any]:
    return {
        "cpu_percent": s.cpu_percent,
        "memory_percent": s.memory_percent,
        "disk_percent": s.disk_percent,
        "uptime": s.uptime,
    }


def _docker_to_dict(d: DockerSnapshot) -> dict[str, Any]:
    return {
        "available": d.available,
        "running_count": d.running_count,
        "total_count": d.total_count,
        "containers": [{"name": c.name, "is_running": c.is_running} for c in d.containers],
    }


def _tailscale_to_dict(t: TailscaleSnapshot) -> dict[str, Any]:
    return _compact({
        "is_connected": t.is_connected,
        "backend_state": t.backend_state,
        "self_ip": t.self_ip,
        "peer_count": t.peer_count,
        "online_peer_count": t.online_peer_count,
    })


def _network_to_dict(n: NetworkSnapshot) -> dict[str, Any]:
    devices = None
    if n.devices is not None:
        devices = [
            _compact({"ip": d.ip, "mac": d.mac, "hostname": d.hostname, "vendor": d.vendor})
            for d in n.devices
        ]
    traffic = None
    if n.traffic is not None:
        traffic = {
            "total_bytes": n.traffic.total_bytes,
            "top_talkers": [
                _compact({"ip": t.ip, "name": t.name, "total_bytes": t.total_bytes})
                for t in n.traffic.top_talkers
            ],
        }
    security = None
    if n.security is not None:
        security = {
            "total_alerts": n.security.total_alerts,
            "critical_count": n.security.critical_count,
            "high_count": n.security.high_count,
            "recent_alerts": [
                _compact({
                    "severity": a.severity,
                    "signature": a.signature,
                    "source_ip": a.source_ip,
                    "destination_ip": a.destination_ip,
                    "category": a.category,
                })
                for a in n.security.recent_alerts
            ],
        }
    return _compact({
        "device_count": n.device_count,
        "devices": devices,
        "traffic": traffic,
        "security": security,
    })


def _speedtest_to_dict(s: SpeedtestSnapshot) -> dict[str, Any]:
    return _compact({
        "download_mbps": s.download_mbps,
        "upload_mbps": s.upload_mbps,
        "ping_ms": s.ping_ms,
        "server": s.server,
        "isp": s.isp,
        "ip": s.ip,
    })


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    """Convert a Snapshot to a JSON-compatible dict, omitting absent sub-records."""
    power = None
    if snapshot.power is not None:
        power = {
            "recent_events": [
                {"timestamp": format_timestamp(e.timestamp), "type": e.type}
                for e in snapshot.power.recent_events
            ]
        }
    return _compact({
        "timestamp": format_timestamp(snapshot.timestamp),
        "system": _system_to_dict(snapshot.system) if snapshot.system else None,
        "docker": _docker_to_dict(snapshot.docker) if snapshot.docker else None,
        "tailscale": _tailscale_to_dict(snapshot.tailscale) if snapshot.tailscale else None,
        "network": _network_to_dict(snapshot.network) if snapshot.network else None,
        "power": power,
        "speedtest": _speedtest_to_dict(snapshot.speedtest) if snapshot.speedtest else None,
        "services": [{"name": s.name, "is_healthy": s.is_healthy} for s in snapshot.services],
        "errors": list(snapshot.errors),
    })


def snapshot_from_dict(data: dict[str, Any]) -> Snapshot:
    """Rebuild a Snapshot from its dict form.

    Raises:
        KeyError, TypeError, ValueError: If required fields are missing or malformed.
    """
    system = None
    if data.get("system") is not None:
        s = data["system"]
        system = SystemSnapshot(
            cpu_percent=float(s["cpu_percent"]),
            memory_percent=float(s["memory_percent"]),
            disk_percent=float(s["disk_percent"]),
            uptime=str(s.get("uptime", "")),
        )

    docker = None
    if data.get("docker") is not None:
        d = data["docker"]
        docker = DockerSnapshot(
            available=bool(d["available"]),
            running_count=int(d["running_count"]),
            total_count=int(d["total_count"]),
            containers=[
                ContainerBrief(name=c["name"], is_running=bool(c["is_running"]))
                for c in d.get("containers", [])
            ],
        )

    tailscale = None
    if data.get("tailscale") is not None:
        t = data["tailscale"]
        tailscale = TailscaleSnapshot(
            is_connected=bool(t["is_connected"]),
            backend_state=str(t.get("backend_state", "")),
            self_ip=t.get("self_ip"),
            peer_count=int(t.get("peer_count", 0)),
            online_peer_count=int(t.get("online_peer_count", 0)),
        )

    network = None
    if data.get("network") is not None:
        network = _network_from_dict(data["network"])

    power = None
    if data.get("power") is not None:
        power = PowerSnapshot(
            recent_events=[
                PowerEvent(timestamp=parse_timestamp(e["timestamp"]), type=e["type"])
                for e in data["power"].get("recent_events", [])
            ]
        )

    speedtest = None
    if data.get("speedtest") is not None:
        st = data["speedtest"]
        speedtest = SpeedtestSnapshot(
            download_mbps=st.get("download_mbps"),
            upload_mbps=st.get("upload_mbps"),
            ping_ms=st.get("ping_ms"),
            server=st.get("server", ""),
            isp=st.get("isp", ""),
            ip=st.get("ip", ""),
        )

    return Snapshot(
        timestamp=parse_timestamp(data["timestamp"]),
        system=system,
        docker=docker,
        tailscale=tailscale,
        network=network,
        power=power,
        speedtest=speedtest,
        services=[
            ServiceHealthEntry(name=s["name"], is_healthy=bool(s["is_healthy"]))
            for s in data.get("services", [])
        ],
        errors=[str(e) for e in data.get("errors", [])],
    )


def _network_from_dict(n: dict[str, Any]) -> NetworkSnapshot:
    devices = None
    if n.get("devices") is not None:
        devices = [
            DeviceBrief(
                ip=d["ip"],
                mac=d.get("mac"),
                hostname=d.get("hostname"),
                vendor=d.get("vendor"),
            )
            for d in n["devices"]
        ]

    traffic = None
    if n.get("traffic") is not None:
        traffic = TrafficSummary(
            total_bytes=int(n["traffic"]["total_bytes"]),
            top_talkers=[
                TopTalker(ip=t["ip"], name=t.get("name"), total_bytes=int(t["total_bytes"]))
                for t in n["traffic"].get("top_talkers", [])
            ],
        )

    security = None
    if n.get("security") is not None:
        sec = n["security"]
        security = SecuritySummary(
            total_alerts=int(sec["total_alerts"]),
            critical_count=int(sec["critical_count"]),
            high_count=int(sec["high_count"]),
            recent_alerts=[
                AlertBrief(
                    severity=a["severity"],
                    signature=a["signature"],
                    source_ip=a["source_ip"],
                    destination_ip=a["destination_ip"],
                    category=a.get("category"),
                )
                for a in sec.get("recent_alerts", [])
            ],
        )

    device_count = n.get("device_count")
    return NetworkSnapshot(
        device_count=int(device_count) if device_count is not None else None,
        devices=devices,
        traffic=traffic,
        security=security,
    )


def snapshot_to_json(snapshot: Snapshot) -> str:
    """Serialize a Snapshot to a single compact JSON line (no trailing newline)."""
    return json.dumps(snapshot_to_dict(snapshot), separators=(",", ":"), ensure_ascii=False)


def snapshot_from_json(line: str) -> Snapshot:
    """Parse one JSONL line into a Snapshot.

    Raises:
        ValueError: If the line is not valid JSON, holds NaN/Infinity, or is
            not a snapshot object.
    """
    data = json.loads(line, parse_constant=_reject_constant)
    if not isinstance(data, dict):
        raise ValueError(f"Expected JSON object, got {type(data).__name__}")
    try:
        return snapshot_from_dict(data)
    except (KeyError, TypeError, AttributeError, OverflowError) as exc:
        raise ValueError(f"Malformed snapshot record: {exc!r}") from exc


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-finite number not allowed: {name}")
