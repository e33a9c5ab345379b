"""Unit tests for event log snapshot models and JSON serialization."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from src.homelab_monitor.eventlog.models import (
    AlertBrief,
    ContainerBrief,
    DeviceBrief,
    DockerSnapshot,
    NetworkSnapshot,
    PowerEvent,
    PowerSnapshot,
    SecuritySummary,
    ServiceHealthEntry,
    Snapshot,
    SpeedtestSnapshot,
    SystemSnapshot,
    TailscaleSnapshot,
    TopTalker,
    TrafficSummary,
    parse_timestamp,
    snapshot_from_json,
    snapshot_to_dict,
    snapshot_to_json,
)

T0 = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)


def _full_snapshot() -> Snapshot:
    return Snapshot(
        timestamp=T0,
        system=SystemSnapshot(cpu_percent=12.5, memory_percent=61.0, disk_percent=40.2, uptime="3d 4h 12m"),
        docker=DockerSnapshot(
            available=True,
            running_count=1,
            total_count=2,
            containers=[
                ContainerBrief(name="grafana", is_running=True),
                ContainerBrief(name="prometheus", is_running=False),
            ],
        ),
        tailscale=TailscaleSnapshot(
            is_connected=True,
            backend_state="Running",
            self_ip="100.64.0.1",
            peer_count=3,
            online_peer_count=2,
        ),
        network=NetworkSnapshot(
            device_count=2,
            devices=[
                DeviceBrief(ip="192.168.1.10", mac="aa:bb:cc:dd:ee:ff", hostname="nas", vendor="Synology"),
                DeviceBrief(ip="192.168.1.20"),
            ],
            traffic=TrafficSummary(
                total_bytes=104857600,
                top_talkers=[TopTalker(ip="192.168.1.10", total_bytes=50000000, name="nas")],
            ),
            security=SecuritySummary(
                total_alerts=2,
                critical_count=1,
                high_count=1,
                recent_alerts=[
                    AlertBrief(
                        severity="critical",
                        signature="ET EXPLOIT Test",
                        source_ip="10.0.0.5",
                        destination_ip="192.168.1.10",
                        category="Attempted Admin",
                    ),
                ],
            ),
        ),
        power=PowerSnapshot(recent_events=[PowerEvent(timestamp=T0 - timedelta(minutes=3), type="Wake")]),
        speedtest=SpeedtestSnapshot(download_mbps=250.5, upload_mbps=40.1, ping_ms=12.0, server="Berlin", isp="ISP", ip="1.2.3.4"),
        services=[ServiceHealthEntry(name="Prometheus", is_healthy=True)],
        errors=["Speedtest: slow"],
    )


class TestSnapshotSerialization:

    def test_round_trip_full_snapshot(self):
        """Every sub-record, including nested lists, survives a JSON round trip."""
        snapshot = _full_snapshot()
        assert snapshot_from_json(snapshot_to_json(snapshot)) == snapshot

    def test_round_trip_empty_snapshot(self):
        snapshot = Snapshot(timestamp=T0)
        restored = snapshot_from_json(snapshot_to_json(snapshot))
        assert restored == snapshot
        assert restored.system is None
        assert restored.network is None

    def test_json_is_single_compact_line(self):
        line = snapshot_to_json(_full_snapshot())
        assert "\n" not in line
        assert line == json.dumps(json.loads(line), separators=(",", ":"), ensure_ascii=False)

    def test_absent_fields_omitted(self):
        data = json.loads(snapshot_to_json(Snapshot(timestamp=T0)))
        assert set(data) == {"timestamp", "services", "errors"}

    def test_keys_are_snake_case(self):
        data = snapshot_to_dict(_full_snapshot())
        assert "cpu_percent" in data["system"]
        assert "online_peer_count" in data["tailscale"]
        assert "total_bytes" in data["network"]["traffic"]

    def test_absent_device_scan_distinct_from_empty(self):
        """A failed scan (None) and an empty LAN ([]) stay distinguishable."""
        failed = Snapshot(timestamp=T0, network=NetworkSnapshot(device_count=None, devices=None,
                                                                traffic=TrafficSummary(total_bytes=1)))
        empty = Snapshot(timestamp=T0, network=NetworkSnapshot(device_count=0, devices=[]))

        assert snapshot_from_json(snapshot_to_json(failed)).device_ips() is None
        assert snapshot_from_json(snapshot_to_json(empty)).device_ips() == set()

    def test_timestamp_is_iso_utc(self):
        data = snapshot_to_dict(Snapshot(timestamp=T0))
        assert data["timestamp"] == "2026-02-10T12:00:00+00:00"

    def test_round_trip_line_separator_characters(self):
        """U+0085, U+2028 and U+2029 stay inside a single JSON line."""
        snapshot = Snapshot(
            timestamp=T0,
            network=NetworkSnapshot(
                device_count=1,
                devices=[DeviceBrief(ip="192.168.1.10", hostname="nas\u2028m\u00fcnchen")],
            ),
            errors=["Docker: bad\x85thing", "Security: eve\u2029.json"],
        )
        line = snapshot_to_json(snapshot)
        assert "\n" not in line
        assert snapshot_from_json(line) == snapshot

    @pytest.mark.parametrize("line", [
        "not json",
        "[1, 2, 3]",
        '{"system": {"cpu_percent": 1}}',
        '{"timestamp": "2026-02-10T12:00:00Z", "docker": {"available": true}}',
        '{"timestamp": "yesterday"}',
        '{"timestamp": "2026-02-10T12:00:00Z", "docker": {"available": true, "running_count": Infinity, "total_count": 1}}',
        '{"timestamp": "2026-02-10T12:00:00Z", "system": {"cpu_percent": NaN, "memory_percent": 1, "disk_percent": 1}}',
        '{"timestamp": "2026-02-10T12:00:00Z", "docker": {"available": true, "running_count": 1e400, "total_count": 1}}',
    ])
    def test_malformed_lines_raise_value_error(self, line):
        with pytest.raises(ValueError):
            snapshot_from_json(line)


class TestTimestamps:

    def test_parse_zulu_suffix(self):
        assert parse_timestamp("2026-02-10T12:00:00Z") == T0

    def test_parse_naive_assumed_utc(self):
        assert parse_timestamp("2026-02-10T12:00:00") == T0

    def test_parse_offset_normalized_to_utc(self):
        parsed = parse_timestamp("2026-02-10T13:00:00+01:00")
        assert parsed == T0
        assert parsed.utcoffset() == timedelta(0)
