"""
ObservabilityEngine - the ingest pipeline and query surface.

ingest() stores an event, hands it to every broadcast hook, then offers it
to the session tracker and pattern detector. Whatever they derive is stored
and broadcast too, but never offered back: derivation is exactly one level
deep. A terminating run event additionally produces a run.summary, once per
(run_id, agent_id).

Derived events are best effort. If storing one fails it is logged and
dropped; the triggering event is already durable.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from fleetwatch.config import FleetwatchConfig
from fleetwatch.detection import PatternDetector
from fleetwatch.errors import FleetwatchError
from fleetwatch.event_store import EventStore, create_event_store
from fleetwatch.event_types import RUN_TERMINAL_EVENT_TYPES, EventType
from fleetwatch.run_summary import RunSummarizer
from fleetwatch.sessions import SessionTracker
from fleetwatch.tracing import TraceReconstructor
from fleetwatch.types import (
    FilterValues,
    HistoryParams,
    IncomingEvent,
    StoredEvent,
    TraceResponse,
)

logger = logging.getLogger(__name__)

BroadcastHook = Callable[[StoredEvent], object]


@dataclass
class IngestResult:
    """The stored event plus everything derived from it, in storage order."""
    stored: StoredEvent
    derived: list[StoredEvent] = field(default_factory=list)

    @property
    def all_events(self) -> list[StoredEvent]:
        return [self.stored, *self.derived]


class ObservabilityEngine:
    """
    Owns the store and the derivation components.

    Components are injected so they can be replaced in tests; use
    build_engine() for the default wiring.
    """

    def __init__(
        self,
        store: EventStore,
        sessions: SessionTracker | None = None,
        detector: PatternDetector | None = None,
        tracer: TraceReconstructor | None = None,
        summarizer: RunSummarizer | None = None,
        config: FleetwatchConfig | None = None,
    ):
        self.config = config or FleetwatchConfig()
        self.store = store
        self.sessions = sessions or SessionTracker(self.config.sessions)
        self.detector = detector or PatternDetector(store, self.config.detection)
        self.tracer = tracer or TraceReconstructor(store, self.config.trace)
        self.summarizer = summarizer or RunSummarizer(store)

        self._hooks: list[BroadcastHook] = []
        self._hooks_lock = threading.Lock()
        self._summary_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Broadcast hooks
    # ------------------------------------------------------------------

    def subscribe(self, hook: BroadcastHook) -> None:
        """Register a hook that receives every stored event, in storage order."""
        with self._hooks_lock:
            self._hooks.append(hook)

    def unsubscribe(self, hook: BroadcastHook) -> None:
        with self._hooks_lock:
            if hook in self._hooks:
                self._hooks.remove(hook)

    def _broadcast(self, stored: StoredEvent) -> None:
        with self._hooks_lock:
            hooks = list(self._hooks)
        for hook in hooks:
            try:
                hook(stored)
            except Exception as e:
                logger.error(f"Broadcast hook failed for {stored.event_id}: {e}")

    # ------------------------------------------------------------------
    # Ingest pipeline
    # ------------------------------------------------------------------

    def ingest(self, incoming: IncomingEvent) -> IngestResult:
        """
        Store an event and everything it triggers.

        Raises:
            MalformedEventError: required fields missing or invalid
            DuplicateEventError: the event_id is already stored
        """
        stored = self.store.insert(incoming)
        self._broadcast(stored)
        result = IngestResult(stored=stored)

        if incoming.synthetic or stored.is_synthetic:
            return result

        for candidate in self._derive(stored):
            derived = self._store_derived(candidate)
            if derived is not None:
                result.derived.append(derived)

        summary = self._maybe_summarize(stored)
        if summary is not None:
            result.derived.append(summary)

        return result

    def emit_synthetic(self, incoming: IncomingEvent) -> StoredEvent | None:
        """
        Store and broadcast an engine-produced event without detection.

        This is the route for session.ended events from the sweeper.
        """
        incoming.synthetic = True
        return self._store_derived(incoming)

    def _derive(self, stored: StoredEvent) -> list[IncomingEvent]:
        candidates = self.sessions.observe(stored)
        candidates.extend(self.detector.detect(stored))
        return candidates

    def _store_derived(self, candidate: IncomingEvent) -> StoredEvent | None:
        try:
            stored = self.store.insert(candidate)
        except (FleetwatchError, sqlite3.Error) as e:
            logger.warning(f"Dropping derived {candidate.event_type} event: {e}")
            return None
        logger.debug(f"Derived {stored.event_type} ({stored.event_id})")
        self._broadcast(stored)
        return stored

    def _maybe_summarize(self, stored: StoredEvent) -> StoredEvent | None:
        if stored.event_type not in RUN_TERMINAL_EVENT_TYPES:
            return None
        if not stored.run_id or not stored.agent_id:
            return None

        try:
            return self.store_run_summary(stored.run_id, stored.agent_id)
        except sqlite3.Error as e:
            logger.warning(f"run.summary generation failed for {stored.run_id}: {e}")
            return None

    def store_run_summary(self, run_id: str, agent_id: str) -> StoredEvent | None:
        """
        Store a run.summary for (run_id, agent_id) unless one already exists.

        The existence check and the insert run under one lock, so at most one
        summary is ever stored per pair.

        Returns:
            The stored summary, or None if the pair already has one
        """
        with self._summary_lock:
            if self.store.has_event_type(run_id, agent_id, EventType.RUN_SUMMARY.value):
                return None
            summary = self.summarizer.summarize(run_id, agent_id)
            return self._store_derived(summary)

    # ------------------------------------------------------------------
    # Session sweeper
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic session sweep."""
        self.sessions.start(self.emit_synthetic, self.config.sessions.sweep_interval_s)

    def stop(self) -> None:
        self.sessions.stop()

    def close(self) -> None:
        self.stop()
        self.store.close()

    # ------------------------------------------------------------------
    # Query surface (read-only)
    # ------------------------------------------------------------------

    def history(self, params: HistoryParams) -> tuple[list[StoredEvent], int]:
        return self.store.query(params)

    def filters(self) -> FilterValues:
        return self.store.distinct_values()

    def recent(self, n: int) -> list[StoredEvent]:
        return self.store.recent(n)

    def get(self, event_id: str) -> StoredEvent | None:
        return self.store.get(event_id)

    def trace(self, event_id: str) -> TraceResponse:
        return self.tracer.trace(event_id)

    def context(
        self,
        run_id: str,
        ts: str,
        agent_id: str | None = None,
        window_sec: int | None = None,
    ) -> list[StoredEvent]:
        return self.tracer.context(run_id, ts, agent_id=agent_id, window_sec=window_sec)

    def by_category(self, category: str, limit: int = 100) -> list[StoredEvent]:
        return self.store.by_category(category, limit)

    def agent_timeline(self, agent_id: str, since: str | None = None, limit: int = 200) -> list[StoredEvent]:
        return self.store.agent_timeline(agent_id, since=since, limit=limit)


def build_engine(
    config: FleetwatchConfig | None = None,
    db_path: Path | str | None = None,
) -> ObservabilityEngine:
    """
    Create an engine with the default components.

    Args:
        config: Full configuration (defaults if omitted)
        db_path: Database file; overrides config.store.db_path

    Returns:
        An engine whose session sweeper has not been started yet
    """
    config = config or FleetwatchConfig()
    store = create_event_store(db_path, config.store, config.redaction)
    return ObservabilityEngine(store, config=config)
