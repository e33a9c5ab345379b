"""Network anomaly detection over consecutive event log snapshots.

``detect_anomalies`` is a pure function: no I/O, no state kept between
calls, same output for the same input. For every consecutive pair
``(prev, curr)`` it runs five independent checks, and every check that
fires contributes an Anomaly, so one pair can yield several.

A check whose inputs are missing (sub-record is None) simply stays quiet
for that pair.
"""

from dataclasses import dataclass
from typing import Optional

from ..eventlog.models import Anomaly, Snapshot
from .formatters import format_bytes


@dataclass(frozen=True)
class DetectorSettings:
    """Detection thresholds."""

    trailing_window: int = 6  # Prior snapshots used for rolling averages
    spike_multiplier: float = 3.0  # Traffic spike: current > multiplier x average
    traffic_min_samples: int = 2
    device_count_tolerance: float = 0.30  # Fractional deviation from average
    device_count_min_samples: int = 3
    hysteresis_window: int = 4  # Snapshots inspected back from prev for DeviceGone
    hysteresis_min_sightings: int = 3

    @classmethod
    def from_config(cls, config) -> "DetectorSettings":
        return cls(
            trailing_window=int(config.get("detector.trailing_window")),
            spike_multiplier=float(config.get("detector.spike_multiplier")),
            traffic_min_samples=int(config.get("detector.traffic_min_samples")),
            device_count_tolerance=float(config.get("detector.device_count_tolerance")),
            device_count_min_samples=int(config.get("detector.device_count_min_samples")),
            hysteresis_window=int(config.get("detector.hysteresis_window")),
            hysteresis_min_sightings=int(config.get("detector.hysteresis_min_sightings")),
        )


def detect_anomalies(
    snapshots: list[Snapshot],
    settings: Optional[DetectorSettings] = None,
) -> list[Anomaly]:
    """Analyze an ordered snapshot sequence and return detected anomalies.

    Args:
        snapshots: Snapshots in chronological (append) order.
        settings: Thresholds (defaults when omitted).

    Returns:
        Anomalies in pair order; empty for fewer than two snapshots.
    """
    settings = settings or DetectorSettings()
    anomalies: list[Anomaly] = []
    if len(snapshots) < 2:
        return anomalies

    for i in range(1, len(snapshots)):
        prev, curr = snapshots[i - 1], snapshots[i]
        anomalies.extend(_detect_new_devices(prev, curr))
        anomalies.extend(_detect_device_departures(snapshots, i, settings))
        anomalies.extend(_detect_traffic_spike(snapshots, i, settings))
        anomalies.extend(_detect_security_alert(curr))
        anomalies.extend(_detect_device_count_anomaly(snapshots, i, settings))

    return anomalies


def _detect_new_devices(prev: Snapshot, curr: Snapshot) -> list[Anomaly]:
    prev_ips = prev.device_ips()
    if prev_ips is None or curr.device_ips() is None:
        return []

    found = []
    seen: set[str] = set()
    for device in curr.network.devices:
        if device.ip in prev_ips or device.ip in seen:
            continue
        seen.add(device.ip)
        label = device.hostname or device.vendor or "unknown"
        found.append(Anomaly(
            timestamp=curr.timestamp,
            type="new_device",
            severity="warning",
            description=f"New device: {device.ip} ({label})",
            details={
                "ip": device.ip,
                "mac": device.mac or "",
                "hostname": device.hostname or "",
                "vendor": device.vendor or "",
            },
        ))
    return found


def _detect_device_departures(
    snapshots: list[Snapshot], index: int, settings: DetectorSettings
) -> list[Anomaly]:
    prev, curr = snapshots[index - 1], snapshots[index]
    prev_ips = prev.device_ips()
    curr_ips = curr.device_ips()
    if prev_ips is None or curr_ips is None:
        return []

    found = []
    for ip in sorted(prev_ips - curr_ips):
        # Count consecutive sightings walking back from prev
        sightings = 0
        lowest = max(0, index - settings.hysteresis_window)
        for j in range(index - 1, lowest - 1, -1):
            ips = snapshots[j].device_ips()
            if ips is None or ip not in ips:
                break
            sightings += 1

        if sightings >= settings.hysteresis_min_sightings:
            found.append(Anomaly(
                timestamp=curr.timestamp,
                type="device_gone",
                severity="info",
                description=f"Device left network: {ip}",
                details={"ip": ip, "consecutive_sightings": str(sightings)},
            ))
    return found


def _trailing_values(values: list[Optional[float]]) -> list[float]:
    return [v for v in values if v is not None and v > 0]


def _traffic_bytes(snapshot: Snapshot) -> Optional[int]:
    if snapshot.network is None or snapshot.network.traffic is None:
        return None
    return snapshot.network.traffic.total_bytes


def _device_count(snapshot: Snapshot) -> Optional[int]:
    if snapshot.network is None:
        return None
    return snapshot.network.device_count


def _detect_traffic_spike(
    snapshots: list[Snapshot], index: int, settings: DetectorSettings
) -> list[Anomaly]:
    curr = snapshots[index]
    current = _traffic_bytes(curr)
    if not current:
        return []

    start = max(0, index - settings.trailing_window)
    window = _trailing_values([_traffic_bytes(s) for s in snapshots[start:index]])
    if len(window) < settings.traffic_min_samples:
        return []

    average = sum(window) / len(window)
    if current <= average * settings.spike_multiplier:
        return []

    return [Anomaly(
        timestamp=curr.timestamp,
        type="traffic_spike",
        severity="warning",
        description=f"Traffic spike: {format_bytes(current)} (avg: {format_bytes(average)})",
        details={
            "current_bytes": str(current),
            "average_bytes": str(int(average)),
            "window_size": str(len(window)),
        },
    )]


def _detect_security_alert(curr: Snapshot) -> list[Anomaly]:
    security = curr.network.security if curr.network else None
    if security is None:
        return []

    if security.critical_count > 0:
        signature = _first_signature(security.recent_alerts, "critical")
        return [Anomaly(
            timestamp=curr.timestamp,
            type="security_alert",
            severity="critical",
            description=f"{security.critical_count} critical alert(s): {signature}",
            details={
                "critical_count": str(security.critical_count),
                "high_count": str(security.high_count),
                "signature": signature,
            },
        )]

    if security.high_count > 0:
        signature = _first_signature(security.recent_alerts, "high")
        return [Anomaly(
            timestamp=curr.timestamp,
            type="security_alert",
            severity="warning",
            description=f"{security.high_count} high severity alert(s): {signature}",
            details={
                "high_count": str(security.high_count),
                "signature": signature,
            },
        )]

    return []


def _first_signature(alerts, severity: str) -> str:
    for alert in alerts:
        if alert.severity.lower() == severity:
            return alert.signature
    return "unknown"


def _detect_device_count_anomaly(
    snapshots: list[Snapshot], index: int, settings: DetectorSettings
) -> list[Anomaly]:
    curr = snapshots[index]
    current = _device_count(curr)
    if not current:
        return []

    start = max(0, index - settings.trailing_window)
    window = _trailing_values([_device_count(s) for s in snapshots[start:index]])
    if len(window) < settings.device_count_min_samples:
        return []

    average = sum(window) / len(window)
    if abs(current - average) <= average * settings.device_count_tolerance:
        return []

    direction = "increase" if current > average else "decrease"
    return [Anomaly(
        timestamp=curr.timestamp,
        type="device_count_anomaly",
        severity="warning",
        description=f"Device count {direction}: {current} (avg: {average:.0f})",
        details={
            "current_count": str(current),
            "average_count": f"{average:.0f}",
            "direction": direction,
        },
    )]
