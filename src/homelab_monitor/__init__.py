"""
homelab-monitor.

Append-only observation log of homelab snapshots, with anomaly detection
and history narration over time windows of that log.
"""

__version__ = "0.1.0"
