"""Unit tests for the collect -> append -> cleanup cycle and its loop."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import structlog

from src.homelab_monitor.eventlog.collector import CollectorSettings, SnapshotCollector
from src.homelab_monitor.eventlog.models import Snapshot, utc_now
from src.homelab_monitor.eventlog.store import EventLogStore
from src.homelab_monitor.observability.cycle import collect_and_append, event_collector_loop
from src.homelab_monitor.observability.logging_setup import bind_logging_config, configure_logging


def _collector() -> SnapshotCollector:
    return SnapshotCollector(
        settings=CollectorSettings(probe_timeout_seconds=1.0),
        collect_system=False,
        collect_power=False,
    )


# ---------------------------------------------------------------------------
# collect_and_append
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cycle_appends_and_prunes(tmp_path):
    store = EventLogStore(tmp_path / "events.jsonl")
    await store.append(Snapshot(timestamp=utc_now() - timedelta(days=30)))

    snapshot = await collect_and_append(_collector(), store, retention_days=7)

    assert await store.query() == [snapshot]


@pytest.mark.asyncio
async def test_cycle_reraises_append_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    store = EventLogStore(blocker / "events.jsonl")

    with pytest.raises(OSError):
        await collect_and_append(_collector(), store)


# ---------------------------------------------------------------------------
# event_collector_loop error isolation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_event_collector_loop_catches_errors(tmp_path):
    """Loop must survive errors without propagating exceptions."""
    call_count = 0

    async def failing_cycle(*args, **kwargs):
        nonlocal call_count
        call_count += 1
        if call_count < 3:
            raise OSError("disk full")
        # Cancel the task on the 3rd call to end the test
        raise asyncio.CancelledError

    with patch(
        "src.homelab_monitor.observability.cycle.collect_and_append",
        side_effect=failing_cycle,
    ), patch(
        "src.homelab_monitor.observability.cycle.asyncio.sleep",
        new_callable=AsyncMock,
    ):
        with pytest.raises(asyncio.CancelledError):
            await event_collector_loop(_collector(), EventLogStore(tmp_path / "events.jsonl"), interval_seconds=0)

    assert call_count == 3


@pytest.mark.asyncio
async def test_event_collector_loop_writes(tmp_path):
    store = EventLogStore(tmp_path / "events.jsonl")
    task = asyncio.create_task(event_collector_loop(_collector(), store, interval_seconds=999))

    for _ in range(200):
        if store.exists:
            break
        await asyncio.sleep(0.05)

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    assert len(await store.query()) == 1


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------


class FakeConfig:
    def __init__(self, level):
        self.level = level
        self.subscribers = []

    def get(self, key):
        assert key == "logging.level"
        return self.level

    def subscribe(self, callback):
        self.subscribers.append(callback)


@pytest.fixture
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_configure_logging_rejects_unknown_level(reset_structlog):
    with pytest.raises(ValueError, match="Unknown log level"):
        configure_logging("CHATTY")


def test_bind_logging_config_follows_updates(reset_structlog):
    config = FakeConfig("WARNING")

    with patch("src.homelab_monitor.observability.logging_setup.configure_logging") as configure:
        bind_logging_config(config)
        config.subscribers[0]("logging.level", "DEBUG")
        config.subscribers[0]("eventlog.retention_days", 3)

    assert [call.args for call in configure.call_args_list] == [("WARNING",), ("DEBUG",)]


def test_configure_logging_filters_below_level(reset_structlog, capsys):
    configure_logging("WARNING")
    logger = structlog.get_logger("test")
    logger.info("quiet_event")
    logger.warning("loud_event")

    out = capsys.readouterr().out
    assert "quiet_event" not in out
    assert "loud_event" in out
