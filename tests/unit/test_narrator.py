"""Unit tests for the history narrator (timeline and prose digest)."""

from datetime import datetime, timedelta, timezone

from src.homelab_monitor.analysis.history import HistorySettings, build_history
from src.homelab_monitor.analysis.narrator import (
    NarratorSettings,
    build_narrative,
    format_timeline,
    has_changed,
    render_prose,
    snapshot_issues,
)
from src.homelab_monitor.eventlog.models import (
    Anomaly,
    ContainerBrief,
    DockerSnapshot,
    NetworkSnapshot,
    PowerEvent,
    PowerSnapshot,
    ServiceHealthEntry,
    Snapshot,
    SystemSnapshot,
    TailscaleSnapshot,
)

T0 = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)


def _system(cpu: float = 10.0, mem: float = 50.0) -> SystemSnapshot:
    return SystemSnapshot(cpu_percent=cpu, memory_percent=mem, disk_percent=30.0, uptime="1h 0m")


def _tailscale(connected: bool) -> TailscaleSnapshot:
    return TailscaleSnapshot(
        is_connected=connected,
        backend_state="Running" if connected else "Stopped",
        self_ip="100.64.0.1",
        peer_count=2,
        online_peer_count=2 if connected else 0,
    )


def _docker(grafana_running: bool) -> DockerSnapshot:
    containers = [ContainerBrief("grafana", grafana_running), ContainerBrief("prometheus", True)]
    return DockerSnapshot(
        available=True,
        running_count=sum(1 for c in containers if c.is_running),
        total_count=2,
        containers=containers,
    )


def _eventful_history() -> list[Snapshot]:
    return [
        Snapshot(
            timestamp=T0,
            system=_system(),
            docker=_docker(True),
            tailscale=_tailscale(True),
            services=[ServiceHealthEntry("Prometheus", True)],
        ),
        Snapshot(
            timestamp=T0 + timedelta(minutes=5),
            system=_system(),
            docker=_docker(False),
            tailscale=_tailscale(False),
            power=PowerSnapshot([
                PowerEvent(T0 + timedelta(minutes=1), "Sleep"),
                PowerEvent(T0 + timedelta(minutes=4), "Wake"),
            ]),
            services=[ServiceHealthEntry("Prometheus", False)],
        ),
        Snapshot(timestamp=T0 + timedelta(hours=3), system=_system()),
    ]


# ---------------------------------------------------------------------------
# Prose
# ---------------------------------------------------------------------------


class TestProse:

    def test_sections(self):
        prose = build_narrative(_eventful_history()).prose

        assert prose.startswith("=== EVENT HISTORY ===")
        assert "Total snapshots: 3" in prose
        assert "Gaps detected (1) - possible sleep/outage" in prose
        assert "Power events (2)" in prose
        assert "Tailscale: connected 50% of time, 1 disconnection(s)" in prose
        assert "Docker changes (1)" in prose
        assert "grafana stopped" in prose
        assert "Service health changes (1)" in prose
        assert "Prometheus down" in prose

    def test_quiet_history_omits_sections(self):
        prose = build_narrative([Snapshot(timestamp=T0), Snapshot(timestamp=T0 + timedelta(minutes=5))]).prose
        assert "Total snapshots: 2" in prose
        assert "Gaps detected" not in prose
        assert "Tailscale:" not in prose
        assert "Docker changes" not in prose

    def test_empty_history(self):
        narrative = build_narrative([])
        assert narrative.prose == ""
        assert narrative.timeline == []
        assert narrative.summary.entries == 0

    def test_sections_are_bounded(self):
        snapshots = [Snapshot(timestamp=T0 + timedelta(hours=i)) for i in range(13)]
        digest = build_history(snapshots)
        prose = render_prose(digest, [], limit=10)

        assert "Gaps detected (12) - possible sleep/outage" in prose
        assert prose.count("  - ") == 10
        assert "  ... and 2 more" in prose

    def test_anomalies_listed(self):
        anomaly = Anomaly(
            timestamp=T0 + timedelta(minutes=5),
            type="new_device",
            severity="warning",
            description="New device: 192.168.1.55 (Espressif)",
        )
        prose = build_narrative(_eventful_history(), anomalies=[anomaly]).prose
        assert "Detected anomalies (1):" in prose
        assert "[warning] 2026-02-10 12:05 new_device: New device: 192.168.1.55 (Espressif)" in prose


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


class TestTimeline:

    def test_gap_row_inserted(self):
        timeline = build_narrative(_eventful_history()).timeline

        assert [row.kind for row in timeline] == ["snapshot", "snapshot", "gap", "snapshot"]
        assert timeline[2].cells()[0] == "--- GAP: 2h 55m ---"

    def test_snapshot_row_cells(self):
        row = build_narrative(_eventful_history()).timeline[1]
        time, cpu, mem, docker, tailscale, power, devices, issues = row.cells()

        assert time == "02-10 12:05"
        assert cpu == "10"
        assert docker == "1/2"
        assert tailscale == "Stopped"
        assert power == "Sleep, Wake"
        assert devices == "-"
        assert issues == "VPN down, 1 stopped"

    def test_healthy_row_shows_ok(self):
        row = build_narrative(_eventful_history()).timeline[0]
        assert row.cells()[-1] == "OK"

    def test_missing_subrecords_render_placeholders(self):
        row = build_narrative([Snapshot(timestamp=T0)]).timeline[0]
        assert row.cells()[1:7] == ["-", "-", "n/a", "?", "", "-"]

    def test_changes_only(self):
        steady = [Snapshot(timestamp=T0 + timedelta(minutes=5 * i), system=_system()) for i in range(4)]
        changed = Snapshot(timestamp=T0 + timedelta(minutes=20), system=_system(cpu=90.0))

        timeline = build_narrative(steady + [changed], changes_only=True).timeline

        assert [row.timestamp for row in timeline] == [steady[0].timestamp, changed.timestamp]

    def test_changes_only_keeps_gap_rows(self):
        steady = [
            Snapshot(timestamp=T0, system=_system()),
            Snapshot(timestamp=T0 + timedelta(hours=1), system=_system()),
        ]
        timeline = build_narrative(steady, changes_only=True).timeline
        assert [row.kind for row in timeline] == ["snapshot", "gap"]

    def test_custom_gap_threshold(self):
        settings = NarratorSettings(history=HistorySettings(gap_threshold_minutes=240))
        narrative = build_narrative(_eventful_history(), settings=settings)
        assert narrative.summary.gaps == 0

    def test_summary_footer(self):
        summary = build_narrative(_eventful_history()).summary
        assert str(summary) == (
            "Entries: 3 | Gaps: 1 | Sleep/Wake: 2 | Container changes: 1 | Tailscale drops: 1"
        )

    def test_format_timeline(self):
        text = format_timeline(build_narrative(_eventful_history()).timeline)
        lines = text.splitlines()
        assert lines[0].split() == ["Time", "CPU%", "Mem%", "Docker", "Tailscale", "Power", "Devices", "Issues"]
        assert len(lines) == 5
        assert "--- GAP: 2h 55m ---" in lines[3]


class TestIssues:

    def test_all_flags(self):
        snapshot = Snapshot(
            timestamp=T0,
            system=_system(cpu=85.0, mem=95.0),
            docker=_docker(False),
            tailscale=_tailscale(False),
            errors=["Traffic: timed out after 10s", "Security: refused"],
        )
        assert snapshot_issues(snapshot) == ["CPU high", "Mem high", "VPN down", "1 stopped", "2 warn"]

    def test_no_flags(self):
        assert snapshot_issues(Snapshot(timestamp=T0, system=_system())) == []

    def test_has_changed(self):
        base = Snapshot(timestamp=T0, system=_system(), network=NetworkSnapshot(device_count=5, devices=None))
        same = Snapshot(timestamp=T0, system=_system(cpu=25.0), network=NetworkSnapshot(device_count=5, devices=None))
        more = Snapshot(timestamp=T0, system=_system(), network=NetworkSnapshot(device_count=6, devices=None))
        assert not has_changed(base, same)
        assert has_changed(base, more)
