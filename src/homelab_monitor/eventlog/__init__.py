# Event Log - Snapshot model, collection and JSONL persistence

from .models import Anomaly, Snapshot, snapshot_from_json, snapshot_to_json
from .collector import CollectorSettings, ProbeResult, SnapshotCollector, assemble_snapshot, run_probe
from .store import EventLogStore, QueryResult

__all__ = [
    "Anomaly",
    "Snapshot",
    "snapshot_from_json",
    "snapshot_to_json",
    "CollectorSettings",
    "ProbeResult",
    "SnapshotCollector",
    "assemble_snapshot",
    "run_probe",
    "EventLogStore",
    "QueryResult",
]
