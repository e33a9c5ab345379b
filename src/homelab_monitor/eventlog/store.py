"""Append-only JSONL event log storage.

Each snapshot is one JSON line. Appends are a single ``write`` on an
``O_APPEND`` descriptor under an exclusive ``flock``, so a scheduled
collection and a manual one can run at the same time without interleaving
partial lines.

Failure semantics:
- ``append``: I/O errors propagate
- ``query``: missing/unreadable file -> empty list; corrupt lines are skipped
- ``cleanup``: missing/unreadable file -> no-op

Cleanup rewrites the whole file (read -> filter -> temp file -> atomic
rename). An ``append`` that lands between cleanup's read and its rename is
lost on that pass; the log is never left truncated or duplicated.
"""

import asyncio
import fcntl
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import structlog

from .models import Snapshot, as_utc, snapshot_from_json, snapshot_to_json, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class QueryResult:
    """Snapshots read from the log plus the number of corrupt lines skipped."""

    snapshots: list[Snapshot] = field(default_factory=list)
    skipped_lines: int = 0


class EventLogStore:
    """JSONL-backed snapshot log.

    Blocking file work runs in a worker thread (``asyncio.to_thread``) so the
    event loop is never stalled. Cancelling an awaiting task cannot leave a
    half-written line: every line goes out in one syscall, and cleanup only
    swaps files by atomic rename.
    """

    def __init__(self, path: str | Path):
        """
        Args:
            path: Log file location, resolved once by the caller
                (see ``config.manager.resolve_event_log_path``).
        """
        self.path = Path(path).expanduser()

    @property
    def exists(self) -> bool:
        return self.path.exists()

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    async def append(self, snapshot: Snapshot) -> None:
        """Append one snapshot as a single JSON line.

        Raises:
            OSError: If the directory cannot be created or the write fails.
        """
        line = snapshot_to_json(snapshot) + "\n"
        await asyncio.to_thread(self._append_line, line.encode("utf-8"))
        logger.debug(
            "event_appended",
            path=str(self.path),
            timestamp=snapshot.timestamp.isoformat(),
            error_count=len(snapshot.errors),
        )

    def _append_line(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                written = os.write(fd, data)
                if written != len(data):
                    raise OSError(
                        f"Short write to {self.path}: {written} of {len(data)} bytes"
                    )
                os.fsync(fd)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def query(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[Snapshot]:
        """Return snapshots with ``since <= timestamp <= until`` in file order.

        Args:
            since: Inclusive lower bound (None = unbounded). Naive values are UTC.
            until: Inclusive upper bound (None = unbounded). Naive values are UTC.

        Returns:
            Snapshots in append order. Empty if the log does not exist.
        """
        result = await self.query_with_stats(since=since, until=until)
        return result.snapshots

    async def query_with_stats(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> QueryResult:
        """Like ``query`` but also reports how many corrupt lines were skipped."""
        since = as_utc(since) if since is not None else None
        until = as_utc(until) if until is not None else None
        lines = await asyncio.to_thread(self._read_lines)
        result = QueryResult()

        for line in lines:
            if not line.strip():
                continue
            try:
                snapshot = snapshot_from_json(line)
            except ValueError:
                result.skipped_lines += 1
                continue

            if since is not None and snapshot.timestamp < since:
                continue
            if until is not None and snapshot.timestamp > until:
                continue
            result.snapshots.append(snapshot)

        if result.skipped_lines:
            logger.warning(
                "event_log_lines_skipped",
                path=str(self.path),
                skipped_lines=result.skipped_lines,
            )
        return result

    def _read_lines(self) -> list[str]:
        """Read all lines; a missing or unreadable file reads as empty.

        Splits on ``\\n`` only: U+0085, U+2028 and U+2029 are valid inside a
        JSON string and must not break a record.
        """
        try:
            with open(self.path, "r", encoding="utf-8", errors="replace") as f:
                return f.read().split("\n")
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.warning("event_log_read_failed", path=str(self.path), error=str(exc))
            return []

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def cleanup(self, retention_days: int = 7) -> int:
        """Remove entries older than ``now - retention_days``.

        Malformed lines are dropped as well. No-op when the log is missing
        or cannot be rewritten.

        Returns:
            Number of lines removed (0 on no-op).
        """
        cutoff = utc_now() - timedelta(days=retention_days)
        try:
            removed = await asyncio.to_thread(self._rewrite_since, cutoff)
        except OSError as exc:
            logger.warning("event_log_cleanup_failed", path=str(self.path), error=str(exc))
            return 0

        if removed:
            logger.info(
                "event_log_cleanup_completed",
                path=str(self.path),
                removed=removed,
                retention_days=retention_days,
            )
        return removed

    def _rewrite_since(self, cutoff: datetime) -> int:
        if not self.path.exists():
            return 0

        lines = self._read_lines()
        kept: list[str] = []
        total = 0
        for line in lines:
            if not line.strip():
                continue
            total += 1
            try:
                snapshot = snapshot_from_json(line)
            except ValueError:
                continue
            if snapshot.timestamp >= cutoff:
                kept.append(line)

        removed = total - len(kept)
        if removed == 0:
            return 0

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                for line in kept:
                    tmp.write(line + "\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return removed
