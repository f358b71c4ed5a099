"""
Core types for the event engine.

Events arrive as IncomingEvent (everything a caller may supply) and leave the
store as StoredEvent (the immutable, fully materialized record). The other
types are computed views: traces, run statistics, session state.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from fleetwatch.errors import MalformedEventError
from fleetwatch.event_types import SYNTHETIC_SOURCE


class RiskLevel(str, Enum):
    """Risk classification attached to an event."""
    LOW = "low"
    MED = "med"
    HIGH = "high"


class AgentState(str, Enum):
    """Agent state reported alongside an event."""
    IDLE = "idle"
    ACTIVE = "active"
    WAITING = "waiting"
    ERROR = "error"


def generate_event_id() -> str:
    """Generate a unique event ID using UUID4."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(dt: datetime) -> str:
    """
    Format a datetime as the canonical stored form.

    All stored timestamps share one fixed-width UTC layout
    (``2025-01-01T12:00:00.000Z``) so that SQLite can compare them as text.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as e:
        raise MalformedEventError(f"Invalid timestamp: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def normalize_timestamp(value: str) -> str:
    """Rewrite a caller-supplied timestamp into the canonical stored form."""
    return format_timestamp(parse_timestamp(value))


def _enum_or_none(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise MalformedEventError(f"{field_name} must be one of: {allowed}") from e


def _int_or_none(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"{field_name} must be an integer") from e


@dataclass
class IncomingEvent:
    """
    A candidate event, as submitted by a caller or produced by the engine.

    ``synthetic`` marks events derived by the engine itself. It is not
    persisted; the dispatch loop uses it to keep derived events away from
    pattern detection.
    """
    session_id: str
    event_type: str
    source_app: str = "unknown"
    event_id: str | None = None
    tool_name: str | None = None
    summary: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str | None = None

    # Correlation fields
    run_id: str | None = None
    agent_id: str | None = None
    parent_event_id: str | None = None
    task_id: str | None = None
    duration_ms: int | None = None
    exit_code: int | None = None
    risk_level: RiskLevel | None = None
    agent_state: AgentState | None = None
    error_type: str | None = None

    synthetic: bool = False

    def __post_init__(self) -> None:
        self.risk_level = _enum_or_none(RiskLevel, self.risk_level, "risk_level")
        self.agent_state = _enum_or_none(AgentState, self.agent_state, "agent_state")
        self.duration_ms = _int_or_none(self.duration_ms, "duration_ms")
        self.exit_code = _int_or_none(self.exit_code, "exit_code")
        if self.payload is None:
            self.payload = {}
        if not isinstance(self.payload, dict):
            raise MalformedEventError("payload must be an object")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IncomingEvent:
        """Create from a JSON-like mapping; unknown keys are ignored."""
        return cls(
            session_id=data.get("session_id") or "",
            event_type=data.get("event_type") or "",
            source_app=data.get("source_app") or "unknown",
            event_id=data.get("event_id"),
            tool_name=data.get("tool_name"),
            summary=data.get("summary"),
            payload=data.get("payload") or {},
            timestamp=data.get("timestamp"),
            run_id=data.get("run_id"),
            agent_id=data.get("agent_id"),
            parent_event_id=data.get("parent_event_id"),
            task_id=data.get("task_id"),
            duration_ms=data.get("duration_ms"),
            exit_code=data.get("exit_code"),
            risk_level=data.get("risk_level"),
            agent_state=data.get("agent_state"),
            error_type=data.get("error_type"),
        )


@dataclass(frozen=True)
class StoredEvent:
    """
    A single immutable event in the event store.

    There is no update or delete path: once a StoredEvent exists, it is
    the permanent record.
    """
    id: int
    event_id: str
    source_app: str
    session_id: str
    event_type: str
    tool_name: str | None
    summary: str
    payload: dict[str, Any]
    created_at: str
    run_id: str | None = None
    agent_id: str | None = None
    parent_event_id: str | None = None
    task_id: str | None = None
    duration_ms: int | None = None
    exit_code: int | None = None
    risk_level: RiskLevel | None = None
    agent_state: AgentState | None = None
    error_type: str | None = None

    @property
    def is_synthetic(self) -> bool:
        return self.source_app == SYNTHETIC_SOURCE

    @property
    def timestamp(self) -> datetime:
        return parse_timestamp(self.created_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_id": self.event_id,
            "source_app": self.source_app,
            "session_id": self.session_id,
            "event_type": self.event_type,
            "tool_name": self.tool_name,
            "summary": self.summary,
            "payload": self.payload,
            "created_at": self.created_at,
            "run_id": self.run_id,
            "agent_id": self.agent_id,
            "parent_event_id": self.parent_event_id,
            "task_id": self.task_id,
            "duration_ms": self.duration_ms,
            "exit_code": self.exit_code,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "agent_state": self.agent_state.value if self.agent_state else None,
            "error_type": self.error_type,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> StoredEvent:
        """Create from a database row."""
        return cls(
            id=row["id"],
            event_id=row["event_id"],
            source_app=row["source_app"],
            session_id=row["session_id"],
            event_type=row["event_type"],
            tool_name=row.get("tool_name"),
            summary=row.get("summary") or "",
            payload=json.loads(row["payload"]) if row.get("payload") else {},
            created_at=row["created_at"],
            run_id=row.get("run_id"),
            agent_id=row.get("agent_id"),
            parent_event_id=row.get("parent_event_id"),
            task_id=row.get("task_id"),
            duration_ms=row.get("duration_ms"),
            exit_code=row.get("exit_code"),
            risk_level=RiskLevel(row["risk_level"]) if row.get("risk_level") else None,
            agent_state=AgentState(row["agent_state"]) if row.get("agent_state") else None,
            error_type=row.get("error_type"),
        )


@dataclass
class HistoryParams:
    """Filters and pagination for a history query."""
    limit: int = 100
    offset: int = 0
    source_app: str | None = None
    session_id: str | None = None
    event_type: str | None = None
    since: str | None = None


@dataclass
class FilterValues:
    """Distinct values available for history filters."""
    source_apps: list[str]
    session_ids: list[str]
    event_types: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_apps": self.source_apps,
            "session_ids": self.session_ids,
            "event_types": self.event_types,
        }


@dataclass
class TraceNode:
    """A node in a reconstructed descendant tree. Built per query, never cached."""
    event: StoredEvent
    children: list[TraceNode] = field(default_factory=list)
    depth: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "children": [child.to_dict() for child in self.children],
            "depth": self.depth,
        }


@dataclass
class TraceResponse:
    """Ancestor chain and descendant tree around one focal event."""
    root: StoredEvent
    ancestors: list[StoredEvent]
    descendants: list[TraceNode]

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root.to_dict(),
            "ancestors": [e.to_dict() for e in self.ancestors],
            "descendants": [n.to_dict() for n in self.descendants],
        }


@dataclass
class SessionState:
    """Live state for one (session_id, agent) pair. Never persisted."""
    session_id: str
    agent_key: str
    first_event_at: str
    last_event_at: str
    event_count: int = 1


@dataclass
class RunSummaryStats:
    """Aggregate counters for one (run_id, agent_id) pair."""
    tools_used: list[str] = field(default_factory=list)
    total_events: int = 0
    tool_errors: int = 0
    total_duration_ms: int = 0
    files_modified: list[str] = field(default_factory=list)
    task_statuses: dict[str, str] = field(default_factory=dict)
    risk_events: dict[str, int] = field(
        default_factory=lambda: {level.value: 0 for level in RiskLevel}
    )
    agents_involved: list[str] = field(default_factory=list)
    tasks_completed: int = 0
    tasks_failed: int = 0
    handoffs: int = 0
    errors_by_type: dict[str, int] = field(default_factory=dict)
    event_type_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tools_used": self.tools_used,
            "total_events": self.total_events,
            "tool_errors": self.tool_errors,
            "total_duration_ms": self.total_duration_ms,
            "files_modified": self.files_modified,
            "task_statuses": self.task_statuses,
            "risk_events": self.risk_events,
            "agents_involved": self.agents_involved,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "handoffs": self.handoffs,
            "errors_by_type": self.errors_by_type,
            "event_type_counts": self.event_type_counts,
        }
