"""Shared fixtures for fleetwatch tests."""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from fleetwatch.engine import build_engine
from fleetwatch.event_store import create_event_store
from fleetwatch.types import IncomingEvent, format_timestamp


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir):
    """Create an EventStore on a fresh database."""
    event_store = create_event_store(temp_dir / "events.sqlite")
    yield event_store
    event_store.close()


@pytest.fixture
def engine(temp_dir):
    """Create an engine with default components; the sweeper is not started."""
    obs_engine = build_engine(db_path=temp_dir / "events.sqlite")
    yield obs_engine
    obs_engine.close()


@pytest.fixture
def make_event():
    """Factory for IncomingEvent with sensible defaults."""
    def _make(**overrides):
        fields = {"session_id": "sess-1", "event_type": "PreToolUse", "source_app": "test-app"}
        fields.update(overrides)
        return IncomingEvent(**fields)
    return _make


@pytest.fixture
def base_time():
    """A fixed point in time, well in the past so it never races the wall clock."""
    return datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def at(base_time):
    """Canonical timestamp ``seconds`` after base_time."""
    def _at(seconds: float) -> str:
        return format_timestamp(base_time + timedelta(seconds=seconds))
    return _at
