"""
fleetwatch - event correlation and auto-derivation for multi-agent systems.

Agents report lifecycle and tool events; fleetwatch stores them in an
append-only SQLite log after redaction, derives session boundaries, timeouts,
repeated failures, truncated output and run summaries, and answers trace and
context queries over the result.

Main entry points:
- build_engine(): the ingest pipeline and query surface
- create_app(): the FastAPI app around an engine (fleetwatch.api)
- ObservabilityClient: the emitter used by agents
"""

from fleetwatch.client import ObservabilityClient
from fleetwatch.config import FleetwatchConfig
from fleetwatch.engine import IngestResult, ObservabilityEngine, build_engine
from fleetwatch.errors import (
    DuplicateEventError,
    FleetwatchError,
    MalformedEventError,
    NotFoundError,
    TransientStoreError,
)
from fleetwatch.event_store import EventStore, create_event_store
from fleetwatch.event_types import EventType
from fleetwatch.redaction import Redactor, redact_payload
from fleetwatch.types import IncomingEvent, StoredEvent, TraceResponse

__version__ = "0.1.0"

__all__ = [
    "DuplicateEventError",
    "EventStore",
    "EventType",
    "FleetwatchConfig",
    "FleetwatchError",
    "IncomingEvent",
    "IngestResult",
    "MalformedEventError",
    "NotFoundError",
    "ObservabilityClient",
    "ObservabilityEngine",
    "Redactor",
    "StoredEvent",
    "TraceResponse",
    "TransientStoreError",
    "build_engine",
    "create_event_store",
    "redact_payload",
]
