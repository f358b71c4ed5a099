"""
Pattern detection over newly stored events.

Each rule looks at one event (plus, for repeated failures, a bounded count
query) and may produce a synthetic event:

- tool.timeout           duration over the threshold
- error.unhandled        the same tool failing repeatedly for one agent
- tool.output_truncated  payload carries the redactor's truncation marker

Synthetic events are never fed back in, so derivation is one level deep.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Callable

from fleetwatch.config import DetectionConfig
from fleetwatch.errors import TransientStoreError
from fleetwatch.event_store import EventStore
from fleetwatch.event_types import SYNTHETIC_SOURCE, EventType
from fleetwatch.redaction import TRUNCATION_MARKER
from fleetwatch.types import IncomingEvent, RiskLevel, StoredEvent, format_timestamp, utc_now

logger = logging.getLogger(__name__)

REPEATED_FAILURE = "repeated_failure"


class PatternDetector:
    """
    Stateless rule engine; all state it needs is in the store.

    The repeated-failure rule fires on every qualifying event once the
    threshold is reached, not just on the crossing. Consumers that want one
    alert per burst must dedupe themselves.
    """

    def __init__(
        self,
        store: EventStore,
        config: DetectionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or DetectionConfig()
        self._clock = clock

    def detect(self, stored: StoredEvent) -> list[IncomingEvent]:
        """Run every rule against one stored event."""
        if stored.is_synthetic:
            return []

        derived: list[IncomingEvent] = []
        derived.extend(self._detect_timeout(stored))
        derived.extend(self._detect_repeated_failure(stored))
        derived.extend(self._detect_truncation(stored))
        return derived

    def _detect_timeout(self, stored: StoredEvent) -> list[IncomingEvent]:
        threshold = self.config.timeout_threshold_ms
        if stored.duration_ms is None or stored.duration_ms <= threshold:
            return []

        return [IncomingEvent(
            source_app=SYNTHETIC_SOURCE,
            session_id=stored.session_id,
            event_type=EventType.TOOL_TIMEOUT.value,
            tool_name=stored.tool_name,
            summary=f"Tool timeout: {stored.tool_name or 'unknown'} took {stored.duration_ms}ms",
            parent_event_id=stored.event_id,
            agent_id=stored.agent_id,
            run_id=stored.run_id,
            duration_ms=stored.duration_ms,
            risk_level=RiskLevel.HIGH,
            payload={"threshold_ms": threshold, "actual_ms": stored.duration_ms},
            synthetic=True,
        )]

    def _detect_repeated_failure(self, stored: StoredEvent) -> list[IncomingEvent]:
        if stored.exit_code is None or stored.exit_code == 0 or not stored.tool_name:
            return []

        window = self.config.failure_window_minutes
        since = format_timestamp(self._clock() - timedelta(minutes=window))
        try:
            count = self.store.count_recent_failures(stored.tool_name, stored.agent_id, since)
        except TransientStoreError as e:
            logger.debug(f"Skipping repeated-failure check for {stored.event_id}: {e}")
            return []

        if count < self.config.failure_threshold:
            return []

        return [IncomingEvent(
            source_app=SYNTHETIC_SOURCE,
            session_id=stored.session_id,
            event_type=EventType.ERROR_UNHANDLED.value,
            tool_name=stored.tool_name,
            summary=f"Repeated failures: {stored.tool_name} ({count} in {window}min)",
            agent_id=stored.agent_id,
            run_id=stored.run_id,
            risk_level=RiskLevel.HIGH,
            error_type=REPEATED_FAILURE,
            payload={"error_count": count, "window_minutes": window, "tool": stored.tool_name},
            synthetic=True,
        )]

    def _detect_truncation(self, stored: StoredEvent) -> list[IncomingEvent]:
        if not stored.payload or TRUNCATION_MARKER not in json.dumps(stored.payload):
            return []

        return [IncomingEvent(
            source_app=SYNTHETIC_SOURCE,
            session_id=stored.session_id,
            event_type=EventType.TOOL_OUTPUT_TRUNCATED.value,
            tool_name=stored.tool_name,
            summary=f"Output truncated: {stored.tool_name or 'unknown'}",
            parent_event_id=stored.event_id,
            agent_id=stored.agent_id,
            run_id=stored.run_id,
            payload={"original_event_id": stored.event_id},
            synthetic=True,
        )]
