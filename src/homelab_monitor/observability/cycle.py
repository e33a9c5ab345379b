"""Collection cycle: collect a snapshot, append it, prune old entries.

``event_collector_loop`` runs the cycle as an asyncio background task.
It is an independent failure domain: a failed cycle is logged and the loop
carries on with the next tick.
"""

import asyncio
import time

import structlog

from ..eventlog.collector import SnapshotCollector
from ..eventlog.models import Snapshot
from ..eventlog.store import EventLogStore

logger = structlog.get_logger(__name__)


async def collect_and_append(
    collector: SnapshotCollector,
    store: EventLogStore,
    retention_days: int = 7,
    include_speedtest: bool = False,
) -> Snapshot:
    """Run one cycle and return the snapshot that was written.

    Raises:
        OSError: If the snapshot could not be appended. Cleanup failures are
            logged by the store and do not raise.
    """
    snapshot = await collector.collect_snapshot(include_speedtest=include_speedtest)
    try:
        await store.append(snapshot)
    except OSError as exc:
        logger.error(
            "event_append_failed",
            path=str(store.path),
            timestamp=snapshot.timestamp.isoformat(),
            error=str(exc),
        )
        raise
    await store.cleanup(retention_days)
    return snapshot


async def event_collector_loop(
    collector: SnapshotCollector,
    store: EventLogStore,
    interval_seconds: int = 300,
    retention_days: int = 7,
) -> None:
    """Background task: run a collection cycle every N seconds.

    Errors are caught and logged; the loop never propagates them to the caller.

    Args:
        interval_seconds: Cycle frequency (default 300, range 30-3600).
        retention_days: Entries older than this are pruned after each append.
    """
    logger.info(
        "event_collector_started",
        interval_seconds=interval_seconds,
        path=str(store.path),
    )

    while True:
        try:
            start_ns = time.perf_counter_ns()
            snapshot = await collect_and_append(collector, store, retention_days)
            duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
            logger.info(
                "event_cycle_completed",
                duration_ms=round(duration_ms, 1),
                timestamp=snapshot.timestamp.isoformat(),
                errors=len(snapshot.errors),
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("event_cycle_failed", error=str(exc), exc_info=True)

        await asyncio.sleep(interval_seconds)
