"""Integration tests: collect -> append -> query -> detect -> narrate."""

from datetime import timedelta

import pytest

from src.homelab_monitor.analysis.anomaly_detector import DetectorSettings, detect_anomalies
from src.homelab_monitor.analysis.history import HistorySettings
from src.homelab_monitor.analysis.narrator import NarratorSettings, build_narrative
from src.homelab_monitor.config.manager import ConfigManager, resolve_event_log_path
from src.homelab_monitor.eventlog.collector import CollectorSettings, SnapshotCollector
from src.homelab_monitor.eventlog.models import (
    DeviceBrief,
    NetworkSnapshot,
    Snapshot,
    TrafficSummary,
    utc_now,
)
from src.homelab_monitor.eventlog.store import EventLogStore
from src.homelab_monitor.observability.cycle import collect_and_append


class SwitchableScanner:
    """Network scanner whose visible devices can be changed between scans."""

    def __init__(self):
        self.devices = [DeviceBrief(ip="192.168.1.10", hostname="nas")]

    async def scan_network(self, network_range, quick):
        return list(self.devices)


class BrokenTraffic:
    def get_traffic(self):
        raise ConnectionError("ntopng unreachable")


def _snapshot(ts, ips):
    return Snapshot(
        timestamp=ts,
        network=NetworkSnapshot(
            device_count=len(ips),
            devices=[DeviceBrief(ip=ip) for ip in ips],
            traffic=TrafficSummary(total_bytes=50_000_000),
        ),
    )


@pytest.mark.asyncio
async def test_gap_and_new_device_scenario(tmp_path):
    """A at T+0; A and B at T+30m; then a 2h35m silence until T+3h5m."""
    store = EventLogStore(tmp_path / "events.jsonl")
    t = utc_now() - timedelta(hours=4)
    await store.append(_snapshot(t, ["A"]))
    await store.append(_snapshot(t + timedelta(minutes=30), ["A", "B"]))
    await store.append(_snapshot(t + timedelta(hours=3, minutes=5), ["A", "B"]))

    snapshots = await store.query()
    anomalies = detect_anomalies(snapshots)
    settings = NarratorSettings(history=HistorySettings(gap_threshold_minutes=35))
    narrative = build_narrative(snapshots, anomalies, settings)

    assert len(narrative.digest.gaps) == 1
    assert narrative.digest.gaps[0].label == "2h 35m"
    new_devices = [a for a in anomalies if a.type == "new_device"]
    assert len(new_devices) == 1
    assert new_devices[0].details["ip"] == "B"
    assert [a for a in anomalies if a.type == "traffic_spike"] == []
    assert "Gaps detected (1) - possible sleep/outage" in narrative.prose


@pytest.mark.asyncio
async def test_collected_snapshots_feed_detector(tmp_path):
    store = EventLogStore(tmp_path / "homelab" / "events.jsonl")
    scanner = SwitchableScanner()
    collector = SnapshotCollector(
        scanner=scanner,
        traffic=BrokenTraffic(),
        settings=CollectorSettings(probe_timeout_seconds=1.0),
        collect_system=False,
        collect_power=False,
    )

    await collect_and_append(collector, store)
    scanner.devices = scanner.devices + [DeviceBrief(ip="192.168.1.77", vendor="Espressif")]
    await collect_and_append(collector, store)

    result = await store.query_with_stats()
    assert len(result.snapshots) == 2
    assert result.skipped_lines == 0
    assert result.snapshots[0].errors == ["Traffic: ntopng unreachable"]

    anomalies = detect_anomalies(result.snapshots, DetectorSettings())
    assert [(a.type, a.details["ip"]) for a in anomalies] == [("new_device", "192.168.1.77")]

    narrative = build_narrative(result.snapshots, anomalies)
    assert "Network device changes (1):" in narrative.prose
    assert "new device: 192.168.1.77 (Espressif)" in narrative.prose
    assert all("1 warn" in row.issues for row in narrative.timeline)


@pytest.mark.asyncio
async def test_configured_log_location(tmp_path):
    volume = tmp_path / "T9"
    volume.mkdir()
    config_file = tmp_path / "config.toml"
    config_file.write_text(f'[eventlog]\nexternal_volume = "{volume}"\nretention_days = 1\n')
    config = ConfigManager(config_file=config_file, env_file=tmp_path / ".env")
    config.load_static_config()
    config.load_dynamic_config_defaults()

    store = EventLogStore(resolve_event_log_path(config))
    await store.append(Snapshot(timestamp=utc_now() - timedelta(days=2)))
    await store.append(Snapshot(timestamp=utc_now()))
    removed = await store.cleanup(config.get("eventlog.retention_days"))

    assert store.path == volume / "homelab" / "events.jsonl"
    assert removed == 1
    assert len(await store.query()) == 1
