"""
Run summaries.

A run summary is one scan over every event of a (run_id, agent_id) pair,
folded into a RunSummaryStats and materialized as a single run.summary
event. The summarizer does not check for an existing summary; the engine
does that before calling it.
"""

from __future__ import annotations

from typing import Any

from fleetwatch.event_store import EventStore
from fleetwatch.event_types import EventType
from fleetwatch.types import IncomingEvent, RunSummaryStats, StoredEvent


def _file_paths(payload: dict[str, Any]) -> list[str]:
    """File paths found in the payload shapes agents emit."""
    paths: list[str] = []
    if isinstance(payload.get("file_path"), str):
        paths.append(payload["file_path"])
    tool_input = payload.get("tool_input")
    if isinstance(tool_input, dict) and isinstance(tool_input.get("file_path"), str):
        paths.append(tool_input["file_path"])
    return paths


def _task_status(event_type: str) -> str:
    if event_type == EventType.TASK_FAILED.value:
        return "failed"
    if event_type == EventType.TASK_COMPLETED.value or "Post" in event_type:
        return "completed"
    return "started"


def compute_stats(events: list[StoredEvent]) -> RunSummaryStats:
    """Fold a chronologically ordered list of events into run statistics."""
    stats = RunSummaryStats(total_events=len(events))
    tools: dict[str, None] = {}
    files: dict[str, None] = {}
    agents: dict[str, None] = {}

    for event in events:
        if event.tool_name:
            tools[event.tool_name] = None
        if event.agent_id:
            agents[event.agent_id] = None

        stats.event_type_counts[event.event_type] = stats.event_type_counts.get(event.event_type, 0) + 1

        if event.exit_code is not None and event.exit_code != 0:
            stats.tool_errors += 1
        if event.duration_ms is not None:
            stats.total_duration_ms += event.duration_ms
        if event.risk_level is not None:
            stats.risk_events[event.risk_level.value] += 1

        if event.event_type == EventType.HANDOFF_COMPLETED.value:
            stats.handoffs += 1
        elif event.event_type == EventType.TASK_COMPLETED.value:
            stats.tasks_completed += 1
        elif event.event_type == EventType.TASK_FAILED.value:
            stats.tasks_failed += 1

        if event.error_type:
            stats.errors_by_type[event.error_type] = stats.errors_by_type.get(event.error_type, 0) + 1

        for path in _file_paths(event.payload or {}):
            files[path] = None

        if event.task_id:
            stats.task_statuses[event.task_id] = _task_status(event.event_type)

    # dicts keep first-seen order
    stats.tools_used = list(tools)
    stats.files_modified = list(files)
    stats.agents_involved = list(agents)
    return stats


def summary_sentence(stats: RunSummaryStats) -> str:
    agents = len(stats.agents_involved)
    return (
        f"Run completed: {stats.total_events} events, {len(stats.tools_used)} tools, "
        f"{agents} agent{'s' if agents != 1 else ''}, {stats.tool_errors} errors, "
        f"{stats.handoffs} handoffs"
    )


class RunSummarizer:
    """Produces run.summary events from the store."""

    def __init__(self, store: EventStore):
        self.store = store

    def summarize(self, run_id: str, agent_id: str) -> IncomingEvent:
        """Scan one (run_id, agent_id) pair and build its run.summary event."""
        events = self.store.events_for_run(run_id, agent_id)
        stats = compute_stats(events)

        first = events[0] if events else None
        last = events[-1] if events else None

        return IncomingEvent(
            source_app=agent_id,
            session_id=first.session_id if first else "unknown",
            event_type=EventType.RUN_SUMMARY.value,
            summary=summary_sentence(stats),
            run_id=run_id,
            agent_id=agent_id,
            payload={
                **stats.to_dict(),
                "start_time": first.created_at if first else None,
                "end_time": last.created_at if last else None,
            },
            synthetic=True,
        )
