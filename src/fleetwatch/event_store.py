"""
EventStore - the durable, append-only event log.

Every event the system knows about lives in one SQLite table. Events are
redacted, summarized, and timestamped on insert and never change afterwards.
Secondary indexes cover the history filters, the correlation fields and the
(run_id, agent_id, created_at) lookups used by trace and context queries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from fleetwatch.config import RedactionConfig, StoreConfig
from fleetwatch.errors import DuplicateEventError, MalformedEventError, TransientStoreError
from fleetwatch.event_types import event_category
from fleetwatch.redaction import Redactor
from fleetwatch.storage import SQLiteBackend, StorageBackend
from fleetwatch.types import (
    FilterValues,
    HistoryParams,
    IncomingEvent,
    StoredEvent,
    format_timestamp,
    generate_event_id,
    normalize_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 500

_BASE_SCHEMA = """
    CREATE TABLE IF NOT EXISTS events (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id    TEXT UNIQUE NOT NULL,
        source_app  TEXT NOT NULL DEFAULT 'unknown',
        session_id  TEXT NOT NULL,
        event_type  TEXT NOT NULL,
        tool_name   TEXT,
        summary     TEXT,
        payload     TEXT NOT NULL DEFAULT '{}',
        created_at  TEXT NOT NULL
    );
"""

# Added after the base table existed; applied with ALTER TABLE when missing
_CORRELATION_COLUMNS: list[tuple[str, str]] = [
    ("run_id", "TEXT"),
    ("agent_id", "TEXT"),
    ("parent_event_id", "TEXT"),
    ("task_id", "TEXT"),
    ("duration_ms", "INTEGER"),
    ("exit_code", "INTEGER"),
    ("risk_level", "TEXT CHECK(risk_level IN ('low', 'med', 'high') OR risk_level IS NULL)"),
    ("agent_state", "TEXT"),
    ("error_type", "TEXT"),
]

_INDEXES = """
    CREATE INDEX IF NOT EXISTS idx_events_source_app ON events(source_app);
    CREATE INDEX IF NOT EXISTS idx_events_session_id ON events(session_id);
    CREATE INDEX IF NOT EXISTS idx_events_event_type ON events(event_type);
    CREATE INDEX IF NOT EXISTS idx_events_created_at ON events(created_at DESC);
    CREATE INDEX IF NOT EXISTS idx_events_run_id ON events(run_id);
    CREATE INDEX IF NOT EXISTS idx_events_agent_id ON events(agent_id);
    CREATE INDEX IF NOT EXISTS idx_events_parent_event_id ON events(parent_event_id);
    CREATE INDEX IF NOT EXISTS idx_events_task_id ON events(task_id);
    CREATE INDEX IF NOT EXISTS idx_events_error_type ON events(error_type);
    CREATE INDEX IF NOT EXISTS idx_events_trace_lookup ON events(run_id, agent_id, created_at);
"""

_INSERT_SQL = """
    INSERT INTO events (
        event_id, source_app, session_id, event_type, tool_name, summary, payload, created_at,
        run_id, agent_id, parent_event_id, task_id, duration_ms, exit_code, risk_level,
        agent_state, error_type
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def clamp_limit(limit: int, maximum: int = MAX_QUERY_LIMIT) -> int:
    """Clamp a caller-requested row limit to [0, maximum]."""
    return max(0, min(int(limit), maximum))


def generate_summary(event: IncomingEvent) -> str:
    """
    Build the one-line summary for an event.

    A caller-supplied summary wins. Otherwise well-known tool inputs are
    rendered (command, file path, pattern), falling back to the event type
    and tool name. The result is never empty.
    """
    if event.summary:
        return event.summary

    tool = event.tool_name
    tool_input = event.payload.get("tool_input") if event.payload else None

    if tool and isinstance(tool_input, dict):
        if tool == "Bash" and tool_input.get("command"):
            return f"Bash: {str(tool_input['command'])[:80]}"
        if tool in ("Write", "Read", "Edit") and tool_input.get("file_path"):
            return f"{tool} {tool_input['file_path']}"
        if tool in ("Glob", "Grep") and tool_input.get("pattern"):
            return f"{tool}: {tool_input['pattern']}"
        if tool == "TodoWrite":
            return "TodoWrite"
        if tool == "Task" and tool_input.get("description"):
            return f"Task: {tool_input['description']}"

    base = event.event_type or "event"
    return f"{base}: {tool}" if tool else base


class EventStore:
    """
    Append-only event log on top of a StorageBackend.

    Reads are safe to run concurrently with inserts (WAL mode, one
    connection per thread). Query methods cap their row counts so that no
    single request does unbounded work.
    """

    def __init__(
        self,
        backend: StorageBackend,
        redactor: Redactor | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend
        self.redactor = redactor or Redactor()
        self._clock = clock
        self._init_db()

    def _init_db(self) -> None:
        """Create the table, add missing correlation columns, build indexes."""
        self.backend.execute_script(_BASE_SCHEMA)

        existing = self.backend.table_columns("events")
        for name, column_type in _CORRELATION_COLUMNS:
            if name not in existing:
                logger.info(f"Migrating events table: adding column {name}")
                self.backend.execute(f"ALTER TABLE events ADD COLUMN {name} {column_type}")

        self.backend.execute_script(_INDEXES)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, event: IncomingEvent) -> StoredEvent:
        """
        Redact, summarize and append one event.

        Raises:
            MalformedEventError: session_id/event_type missing or bad timestamp
            DuplicateEventError: event_id already stored
        """
        if not event.session_id or not event.event_type:
            raise MalformedEventError("session_id and event_type are required")

        event_id = event.event_id or generate_event_id()
        summary = generate_summary(event)
        if event.timestamp:
            created_at = normalize_timestamp(event.timestamp)
        else:
            created_at = format_timestamp(self._clock())
        # Derived payloads are built from already-redacted records
        if event.synthetic:
            safe_payload = dict(event.payload or {})
        else:
            safe_payload = self.redactor.redact(event.payload or {})
        source_app = event.source_app or "unknown"

        params = (
            event_id,
            source_app,
            event.session_id,
            event.event_type,
            event.tool_name or None,
            summary,
            json.dumps(safe_payload),
            created_at,
            event.run_id,
            event.agent_id,
            event.parent_event_id,
            event.task_id,
            event.duration_ms,
            event.exit_code,
            event.risk_level.value if event.risk_level else None,
            event.agent_state.value if event.agent_state else None,
            event.error_type,
        )

        try:
            row_id = self.backend.insert(_INSERT_SQL, params)
        except sqlite3.IntegrityError as e:
            if "event_id" in str(e):
                raise DuplicateEventError(event_id) from e
            raise MalformedEventError(str(e)) from e

        logger.debug(f"Stored event {event_id} ({event.event_type}) as row {row_id}")

        return StoredEvent(
            id=row_id,
            event_id=event_id,
            source_app=source_app,
            session_id=event.session_id,
            event_type=event.event_type,
            tool_name=event.tool_name or None,
            summary=summary,
            payload=safe_payload,
            created_at=created_at,
            run_id=event.run_id,
            agent_id=event.agent_id,
            parent_event_id=event.parent_event_id,
            task_id=event.task_id,
            duration_ms=event.duration_ms,
            exit_code=event.exit_code,
            risk_level=event.risk_level,
            agent_state=event.agent_state,
            error_type=event.error_type,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _select(self, where: str, params: list[Any], order: str, limit: int | None = None,
                offset: int = 0) -> list[StoredEvent]:
        query = f"SELECT * FROM events {where} ORDER BY {order}"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = [*params, limit, offset]
        rows = self.backend.fetch_all(query, tuple(params))
        return [StoredEvent.from_row(row) for row in rows]

    def get(self, event_id: str) -> StoredEvent | None:
        """Look up one event by its external event_id."""
        row = self.backend.fetch_one("SELECT * FROM events WHERE event_id = ?", (event_id,))
        return StoredEvent.from_row(row) if row else None

    def query(self, params: HistoryParams) -> tuple[list[StoredEvent], int]:
        """
        History query, newest first.

        Returns the requested page and the total number of matching rows.
        The page size is capped at MAX_QUERY_LIMIT whatever the caller asks.
        """
        where = "WHERE 1=1"
        values: list[Any] = []

        if params.source_app:
            where += " AND source_app = ?"
            values.append(params.source_app)
        if params.session_id:
            where += " AND session_id = ?"
            values.append(params.session_id)
        if params.event_type:
            where += " AND event_type = ?"
            values.append(params.event_type)
        if params.since:
            where += " AND created_at >= ?"
            values.append(normalize_timestamp(params.since))

        count_row = self.backend.fetch_one(f"SELECT COUNT(*) AS cnt FROM events {where}", tuple(values))
        total = count_row["cnt"] if count_row else 0

        events = self._select(
            where, values, "created_at DESC, id DESC",
            limit=clamp_limit(params.limit), offset=max(0, int(params.offset)),
        )
        return events, total

    def distinct_values(self) -> FilterValues:
        """Distinct source apps, session ids and event types for filter menus."""
        def distinct(column: str) -> list[str]:
            rows = self.backend.fetch_all(f"SELECT DISTINCT {column} FROM events ORDER BY {column}")
            return [row[column] for row in rows]

        return FilterValues(
            source_apps=distinct("source_app"),
            session_ids=distinct("session_id"),
            event_types=distinct("event_type"),
        )

    def recent(self, n: int) -> list[StoredEvent]:
        """The last n events, oldest first (snapshot order)."""
        events = self._select("", [], "created_at DESC, id DESC", limit=clamp_limit(n))
        events.reverse()
        return events

    def by_category(self, category: str, limit: int = 100) -> list[StoredEvent]:
        """
        Events whose type starts with ``<category>.``, newest first.

        A full type such as ``task.completed`` selects its whole category.
        """
        return self._select(
            "WHERE event_type LIKE ?", [f"{event_category(category)}.%"], "created_at DESC, id DESC",
            limit=clamp_limit(limit),
        )

    def agent_timeline(self, agent_id: str, since: str | None = None, limit: int = 200) -> list[StoredEvent]:
        """
        Events for one agent.

        With ``since`` the timeline reads forward from that point (oldest
        first); without it, the most recent events are returned newest first.
        """
        if since:
            return self._select(
                "WHERE agent_id = ? AND created_at >= ?", [agent_id, normalize_timestamp(since)],
                "created_at ASC, id ASC", limit=clamp_limit(limit),
            )
        return self._select(
            "WHERE agent_id = ?", [agent_id], "created_at DESC, id DESC", limit=clamp_limit(limit),
        )

    def window(
        self,
        run_id: str,
        agent_id: str | None,
        start: str,
        end: str,
        limit: int | None = None,
        parent_event_id: str | None = None,
    ) -> list[StoredEvent]:
        """
        Events of a run between two canonical timestamps, oldest first.

        agent_id and parent_event_id narrow the scan when given.
        """
        where = "WHERE run_id = ?"
        values: list[Any] = [run_id]
        if agent_id:
            where += " AND agent_id = ?"
            values.append(agent_id)
        if parent_event_id:
            where += " AND parent_event_id = ?"
            values.append(parent_event_id)
        where += " AND created_at >= ? AND created_at <= ?"
        values.extend([start, end])
        return self._select(where, values, "created_at ASC, id ASC", limit=limit)

    def events_for_run(self, run_id: str, agent_id: str) -> list[StoredEvent]:
        """Every event of one (run_id, agent_id) pair, oldest first."""
        return self._select(
            "WHERE run_id = ? AND agent_id = ?", [run_id, agent_id], "created_at ASC, id ASC",
        )

    def has_event_type(self, run_id: str, agent_id: str, event_type: str) -> bool:
        row = self.backend.fetch_one(
            "SELECT 1 AS found FROM events WHERE run_id = ? AND agent_id = ? AND event_type = ? LIMIT 1",
            (run_id, agent_id, event_type),
        )
        return row is not None

    def count_recent_failures(self, tool_name: str, agent_id: str | None, since: str) -> int:
        """
        Count failed invocations of a tool by one agent since a timestamp.

        Events without an agent share one bucket. Lookup failures surface as
        TransientStoreError.
        """
        agent = agent_id or ""
        try:
            row = self.backend.fetch_one(
                """
                SELECT COUNT(*) AS cnt FROM events
                WHERE tool_name = ? AND exit_code IS NOT NULL AND exit_code != 0
                  AND (agent_id = ? OR (agent_id IS NULL AND ? = ''))
                  AND created_at >= ?
                """,
                (tool_name, agent, agent, since),
            )
        except sqlite3.Error as e:
            raise TransientStoreError(f"Failure count lookup failed: {e}") from e
        return row["cnt"] if row else 0

    def close(self) -> None:
        self.backend.close()


def create_event_store(
    db_path: Path | str | None = None,
    store_config: StoreConfig | None = None,
    redaction_config: RedactionConfig | None = None,
) -> EventStore:
    """
    Create an EventStore backed by a SQLite file.

    Args:
        db_path: Database file; overrides store_config.db_path
        store_config: Store configuration (defaults if omitted)
        redaction_config: Truncation budgets for the redactor

    Returns:
        A ready EventStore
    """
    store_config = store_config or StoreConfig()
    backend = SQLiteBackend(db_path or store_config.db_path, busy_timeout_ms=store_config.busy_timeout_ms)
    return EventStore(backend, redactor=Redactor(redaction_config))
