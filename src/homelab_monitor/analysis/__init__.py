"""
Analysis over a snapshot sequence.

Pure functions: anomaly detection between consecutive snapshots, and the
history digest rendered as a terminal timeline and an LLM-ready prose block.
"""

from .anomaly_detector import DetectorSettings, detect_anomalies
from .history import HistoryDigest, HistorySettings, build_history, detect_gaps
from .narrator import Narrative, NarratorSettings, build_narrative, format_timeline, render_prose

__all__ = [
    "DetectorSettings",
    "detect_anomalies",
    "HistoryDigest",
    "HistorySettings",
    "build_history",
    "detect_gaps",
    "Narrative",
    "NarratorSettings",
    "build_narrative",
    "format_timeline",
    "render_prose",
]
