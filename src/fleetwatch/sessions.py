"""
Session boundary detection.

A session is a (session_id, agent) pair. The first event seen for a pair
emits session.started; a periodic sweep emits session.ended for pairs that
have been quiet longer than the inactivity timeout and forgets them, so the
next event for the same pair starts a fresh session.

State lives on the SessionTracker instance and is lost on restart.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from fleetwatch.config import SessionConfig
from fleetwatch.event_types import SYNTHETIC_SOURCE, EventType
from fleetwatch.types import IncomingEvent, SessionState, StoredEvent, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_AGENT_KEY = "default"


class SessionTracker:
    """
    Tracks active sessions and detects their start and end.

    observe() is called for every stored, non-synthetic event. sweep() is
    called on a fixed interval, either by the caller or by the background
    thread started with start().
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or SessionConfig()
        self._clock = clock
        self._sessions: dict[tuple[str, str], SessionState] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def observe(self, stored: StoredEvent) -> list[IncomingEvent]:
        """Record an event; returns session.started for a new pair."""
        if stored.is_synthetic:
            return []

        agent_key = stored.agent_id or DEFAULT_AGENT_KEY
        key = (stored.session_id, agent_key)

        with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                session.last_event_at = stored.created_at
                session.event_count += 1
                return []

            self._sessions[key] = SessionState(
                session_id=stored.session_id,
                agent_key=agent_key,
                first_event_at=stored.created_at,
                last_event_at=stored.created_at,
                event_count=1,
            )

        logger.debug(f"Session started: {stored.session_id} ({agent_key})")
        return [IncomingEvent(
            source_app=SYNTHETIC_SOURCE,
            session_id=stored.session_id,
            event_type=EventType.SESSION_STARTED.value,
            summary=f"Session started: {stored.session_id}",
            agent_id=stored.agent_id or None,
            run_id=stored.run_id or None,
            payload={"detected_from_event_id": stored.event_id},
            synthetic=True,
        )]

    def sweep(self, now: datetime | None = None) -> list[IncomingEvent]:
        """End every session inactive for longer than the timeout."""
        now = now or self._clock()
        timeout_ms = self.config.inactivity_timeout_s * 1000
        ended: list[IncomingEvent] = []

        with self._lock:
            for key, session in list(self._sessions.items()):
                last_active = parse_timestamp(session.last_event_at)
                idle_ms = (now - last_active).total_seconds() * 1000
                if idle_ms <= timeout_ms:
                    continue

                first_active = parse_timestamp(session.first_event_at)
                duration_ms = int((last_active - first_active).total_seconds() * 1000)
                ended.append(IncomingEvent(
                    source_app=SYNTHETIC_SOURCE,
                    session_id=session.session_id,
                    event_type=EventType.SESSION_ENDED.value,
                    summary=(
                        f"Session ended: {session.session_id} "
                        f"({session.event_count} events, inactive {round(idle_ms / 1000)}s)"
                    ),
                    agent_id=session.agent_key if session.agent_key != DEFAULT_AGENT_KEY else None,
                    payload={
                        "event_count": session.event_count,
                        "first_event_at": session.first_event_at,
                        "last_event_at": session.last_event_at,
                        "duration_ms": duration_ms,
                        "reason": "timeout",
                    },
                    synthetic=True,
                ))
                del self._sessions[key]

        for event in ended:
            logger.info(f"Session ended: {event.session_id} ({event.payload['event_count']} events)")
        return ended

    def active_sessions(self) -> list[SessionState]:
        """Snapshot of the sessions currently tracked."""
        with self._lock:
            return [
                SessionState(s.session_id, s.agent_key, s.first_event_at, s.last_event_at, s.event_count)
                for s in self._sessions.values()
            ]

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Background sweeper
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, emit: Callable[[IncomingEvent], object], interval_s: float | None = None) -> None:
        """
        Start the sweeper thread.

        Args:
            emit: Called with every session.ended event; routes it into storage
            interval_s: Sweep interval (defaults to config.sweep_interval_s)
        """
        if self.running:
            return

        interval = interval_s if interval_s is not None else self.config.sweep_interval_s
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(emit, interval), name="fleetwatch-session-sweeper", daemon=True,
        )
        self._thread.start()
        logger.info(f"Session sweeper started (interval {interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the sweeper thread and wait for it to exit."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Session sweeper stopped")

    def _run(self, emit: Callable[[IncomingEvent], object], interval: float) -> None:
        while not self._stop_event.wait(interval):
            for event in self.sweep():
                try:
                    emit(event)
                except Exception as e:
                    logger.error(f"Session timeout event failed: {e}")
