"""History narrator.

Turns a snapshot sequence into two views of the same facts:

- ``timeline``: one row per snapshot for terminal display, with a synthetic
  gap row wherever the history digest recorded a gap
- ``prose``: a bounded plain-text digest meant to be embedded in an LLM prompt

Both are rendered from one ``HistoryDigest`` so they can never disagree.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from ..eventlog.models import Anomaly, Snapshot
from .formatters import format_bytes, format_duration
from .history import Gap, HistoryDigest, HistorySettings, build_history

CPU_HIGH_PERCENT = 80.0
MEMORY_HIGH_PERCENT = 90.0
CPU_CHANGE_PERCENT = 20.0


@dataclass(frozen=True)
class NarratorSettings:
    history: HistorySettings = field(default_factory=HistorySettings)
    prose_item_limit: int = 15  # Max bullets per prose section

    @classmethod
    def from_config(cls, config) -> "NarratorSettings":
        return cls(
            history=HistorySettings.from_config(config),
            prose_item_limit=int(config.get("narrator.prose_item_limit")),
        )


@dataclass(frozen=True)
class TimelineRow:
    """One timeline line: either a snapshot or a synthetic gap marker."""

    kind: Literal["snapshot", "gap"]
    timestamp: datetime
    cpu_percent: Optional[float] = None
    memory_percent: Optional[float] = None
    docker: str = ""
    tailscale: str = ""
    power: str = ""
    devices: Optional[int] = None
    issues: list[str] = field(default_factory=list)
    gap: Optional[Gap] = None

    def cells(self) -> list[str]:
        """Column values: time, CPU%, Mem%, Docker, Tailscale, Power, Devices, Issues."""
        if self.kind == "gap":
            return [f"--- GAP: {self.gap.label} ---", "", "", "", "", "", "", ""]
        return [
            self.timestamp.strftime("%m-%d %H:%M"),
            _number(self.cpu_percent),
            _number(self.memory_percent),
            self.docker,
            self.tailscale,
            self.power,
            "-" if self.devices is None else str(self.devices),
            ", ".join(self.issues) if self.issues else "OK",
        ]


TIMELINE_HEADERS = ["Time", "CPU%", "Mem%", "Docker", "Tailscale", "Power", "Devices", "Issues"]


@dataclass(frozen=True)
class TimelineSummary:
    entries: int
    gaps: int
    sleep_wake_events: int
    container_changes: int
    tailscale_drops: int

    def __str__(self) -> str:
        return (
            f"Entries: {self.entries} | Gaps: {self.gaps} | Sleep/Wake: {self.sleep_wake_events}"
            f" | Container changes: {self.container_changes} | Tailscale drops: {self.tailscale_drops}"
        )


@dataclass
class Narrative:
    digest: HistoryDigest
    timeline: list[TimelineRow]
    summary: TimelineSummary
    prose: str


def build_narrative(
    snapshots: list[Snapshot],
    anomalies: Optional[list[Anomaly]] = None,
    settings: Optional[NarratorSettings] = None,
    changes_only: bool = False,
) -> Narrative:
    """Build the timeline and prose digest for ``snapshots``.

    Args:
        snapshots: Chronologically ordered snapshots.
        anomalies: Optional detector output, listed in the prose digest.
        settings: Narrator settings (defaults when omitted).
        changes_only: Drop timeline rows whose state did not change from the
            previous snapshot (gap rows are always kept).
    """
    settings = settings or NarratorSettings()
    digest = build_history(snapshots, settings.history)
    timeline = render_timeline(snapshots, digest, changes_only=changes_only)
    summary = TimelineSummary(
        entries=digest.snapshot_count,
        gaps=len(digest.gaps),
        sleep_wake_events=digest.power_event_total,
        container_changes=len(digest.container_changes),
        tailscale_drops=digest.connectivity.disconnections if digest.connectivity else 0,
    )
    prose = render_prose(digest, anomalies or [], settings.prose_item_limit)
    return Narrative(digest=digest, timeline=timeline, summary=summary, prose=prose)


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


def render_timeline(
    snapshots: list[Snapshot],
    digest: HistoryDigest,
    changes_only: bool = False,
) -> list[TimelineRow]:
    gaps_after = {gap.after_index: gap for gap in digest.gaps}
    rows: list[TimelineRow] = []
    for i, snapshot in enumerate(snapshots):
        if i > 0 and (i - 1) in gaps_after:
            gap = gaps_after[i - 1]
            rows.append(TimelineRow(kind="gap", timestamp=gap.start, gap=gap))
        if changes_only and i > 0 and not has_changed(snapshots[i - 1], snapshot):
            continue
        rows.append(_snapshot_row(snapshot))
    return rows


def _snapshot_row(snapshot: Snapshot) -> TimelineRow:
    system = snapshot.system
    docker = snapshot.docker
    tailscale = snapshot.tailscale

    if docker is not None and docker.available:
        docker_text = f"{docker.running_count}/{docker.total_count}"
    else:
        docker_text = "n/a"

    power_text = ""
    if snapshot.power is not None and snapshot.power.recent_events:
        power_text = ", ".join(e.type for e in snapshot.power.recent_events)

    return TimelineRow(
        kind="snapshot",
        timestamp=snapshot.timestamp,
        cpu_percent=system.cpu_percent if system else None,
        memory_percent=system.memory_percent if system else None,
        docker=docker_text,
        tailscale=(tailscale.backend_state or "?") if tailscale else "?",
        power=power_text,
        devices=snapshot.network.device_count if snapshot.network else None,
        issues=snapshot_issues(snapshot),
    )


def snapshot_issues(snapshot: Snapshot) -> list[str]:
    """Short issue flags for one snapshot."""
    issues = []
    if snapshot.system is not None:
        if snapshot.system.cpu_percent > CPU_HIGH_PERCENT:
            issues.append("CPU high")
        if snapshot.system.memory_percent > MEMORY_HIGH_PERCENT:
            issues.append("Mem high")
    if snapshot.tailscale is not None and not snapshot.tailscale.is_connected:
        issues.append("VPN down")
    docker = snapshot.docker
    if docker is not None and docker.available and docker.running_count < docker.total_count:
        issues.append(f"{docker.total_count - docker.running_count} stopped")
    if snapshot.errors:
        issues.append(f"{len(snapshot.errors)} warn")
    return issues


def has_changed(prev: Snapshot, curr: Snapshot) -> bool:
    """True when ``curr`` differs from ``prev`` in a way worth a timeline row."""

    def running(s: Snapshot) -> Optional[int]:
        return s.docker.running_count if s.docker else None

    def connected(s: Snapshot) -> Optional[bool]:
        return s.tailscale.is_connected if s.tailscale else None

    def online_peers(s: Snapshot) -> Optional[int]:
        return s.tailscale.online_peer_count if s.tailscale else None

    def devices(s: Snapshot) -> Optional[int]:
        return s.network.device_count if s.network else None

    def cpu(s: Snapshot) -> float:
        return s.system.cpu_percent if s.system else 0.0

    if running(prev) != running(curr):
        return True
    if connected(prev) != connected(curr) or online_peers(prev) != online_peers(curr):
        return True
    if curr.power is not None and curr.power.recent_events:
        return True
    if abs(cpu(prev) - cpu(curr)) > CPU_CHANGE_PERCENT:
        return True
    if devices(prev) != devices(curr):
        return True
    return bool(curr.errors) and not prev.errors


def format_timeline(rows: list[TimelineRow]) -> str:
    """Render rows as a fixed-width plain-text table."""
    table = [TIMELINE_HEADERS] + [row.cells() for row in rows]
    widths = [max(len(line[col]) for line in table) for col in range(len(TIMELINE_HEADERS))]
    return "\n".join(
        "  ".join(cell.ljust(width) for cell, width in zip(line, widths)).rstrip()
        for line in table
    )


def _number(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:g}"


# ---------------------------------------------------------------------------
# Prose
# ---------------------------------------------------------------------------


def _when(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M")


def _bullets(lines: list[str], limit: int, out: list[str]) -> None:
    for line in lines[:limit]:
        out.append(f"  - {line}")
    if len(lines) > limit:
        out.append(f"  ... and {len(lines) - limit} more")


def render_prose(digest: HistoryDigest, anomalies: list[Anomaly], limit: int = 15) -> str:
    """Render the digest as a bounded plain-text section for an LLM prompt.

    Returns an empty string when there are no snapshots.
    """
    if digest.snapshot_count == 0:
        return ""

    out = ["=== EVENT HISTORY ==="]
    out.append(
        f"Period: {_when(digest.first_timestamp)} to {_when(digest.last_timestamp)} UTC"
        f" ({format_duration(digest.span)})"
    )
    out.append(f"Total snapshots: {digest.snapshot_count}")

    if digest.gaps:
        out.append(f"Gaps detected ({len(digest.gaps)}) - possible sleep/outage:")
        _bullets(
            [f"{_when(g.start)} -> {_when(g.end)} ({g.label})" for g in digest.gaps],
            limit, out,
        )

    if digest.power_events:
        out.append(f"Power events ({digest.power_event_total}):")
        _bullets([f"{_when(e.timestamp)} {e.type}" for e in digest.power_events], limit, out)

    if digest.connectivity is not None:
        c = digest.connectivity
        out.append(
            f"Tailscale: connected {c.connected_fraction:.0%} of time,"
            f" {c.disconnections} disconnection(s)"
        )

    if digest.container_changes:
        out.append(f"Docker changes ({len(digest.container_changes)}):")
        _bullets(
            [f"{_when(c.timestamp)} {c.name} {c.change}" for c in digest.container_changes],
            limit, out,
        )

    if digest.service_changes:
        out.append(f"Service health changes ({len(digest.service_changes)}):")
        _bullets(
            [f"{_when(c.timestamp)} {c.name} {c.change}" for c in digest.service_changes],
            limit, out,
        )

    if digest.device_changes:
        out.append(f"Network device changes ({len(digest.device_changes)}):")
        _bullets(
            [
                f"{_when(c.timestamp)} {c.change}: {c.ip}" + (f" ({c.label})" if c.label else "")
                for c in digest.device_changes
            ],
            limit, out,
        )

    if digest.security:
        out.append(f"Security alerts ({len(digest.security)} snapshot(s)):")
        lines = []
        for entry in digest.security:
            alerts = "; ".join(
                f"{a.signature} ({a.source_ip} -> {a.destination_ip})" for a in entry.top_alerts
            )
            line = f"{_when(entry.timestamp)} {entry.critical_count} critical, {entry.high_count} high"
            lines.append(f"{line}: {alerts}" if alerts else line)
        _bullets(lines, limit, out)

    if digest.traffic is not None:
        t = digest.traffic
        out.append(
            f"Traffic: min={format_bytes(t.minimum)}, avg={format_bytes(t.mean)},"
            f" max={format_bytes(t.maximum)} ({t.samples} sample(s))"
        )

    if anomalies:
        out.append(f"Detected anomalies ({len(anomalies)}):")
        _bullets(
            [f"[{a.severity}] {_when(a.timestamp)} {a.type}: {a.description}" for a in anomalies],
            limit, out,
        )

    return "\n".join(out)
