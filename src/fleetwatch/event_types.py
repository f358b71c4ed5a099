"""
Canonical event type strings.

Event types follow a ``category.verb`` convention so category queries can
match on the prefix (``task`` matches ``task.completed``, ``task.failed``...).
Hook-originated types such as ``PreToolUse``/``PostToolUse`` are free-form
and are accepted as-is.
"""

from enum import Enum

# source_app used for every event the engine derives on its own
SYNTHETIC_SOURCE = "auto-events"


class EventType(str, Enum):
    """Known event types."""

    # Agent lifecycle
    AGENT_CREATED = "agent.created"
    AGENT_SPAWNED = "agent.spawned"
    AGENT_STATE_CHANGED = "agent.state_changed"
    AGENT_TERMINATED = "agent.terminated"
    AGENT_ERROR = "agent.error"

    # Orchestration
    HANDOFF_INITIATED = "handoff.initiated"
    HANDOFF_COMPLETED = "handoff.completed"
    DELEGATION_REQUESTED = "delegation.requested"
    DELEGATION_RESULT = "delegation.result"

    # Task lifecycle
    TASK_CREATED = "task.created"
    TASK_ASSIGNED = "task.assigned"
    TASK_STARTED = "task.started"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_RETRY = "task.retry"

    # Run lifecycle
    RUN_STARTED = "run.started"
    RUN_COMPLETED = "run.completed"
    RUN_FAILED = "run.failed"
    RUN_END = "run.end"
    RUN_SUMMARY = "run.summary"

    # Errors
    ERROR_OCCURRED = "error.occurred"
    ERROR_UNHANDLED = "error.unhandled"
    ERROR_TIMEOUT = "error.timeout"

    # Tool lifecycle
    TOOL_USED = "tool.used"
    TOOL_TIMEOUT = "tool.timeout"
    TOOL_RETRY = "tool.retry"
    TOOL_ERROR = "tool.error"
    TOOL_OUTPUT_TRUNCATED = "tool.output_truncated"

    # Session lifecycle
    SESSION_STARTED = "session.started"
    SESSION_ENDED = "session.ended"

    # Hook events emitted by coding agents
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    NOTIFICATION = "Notification"


# Any of these closes a (run_id, agent_id) pair and triggers run.summary
RUN_TERMINAL_EVENT_TYPES = frozenset({
    EventType.RUN_END.value,
    EventType.RUN_COMPLETED.value,
    EventType.RUN_FAILED.value,
})


def event_category(event_type: str) -> str:
    """Return the category part of a ``category.verb`` event type."""
    return event_type.split(".", 1)[0]
