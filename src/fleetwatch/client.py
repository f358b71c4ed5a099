"""
ObservabilityClient - emits lifecycle events to a fleetwatch server.

Agents, orchestrators and launch scripts use this to report what they are
doing via POST /api/events. Emission is fire-and-forget: every helper
returns the event_id it generated, and a failed request is logged rather
than raised, so an unreachable server never breaks the agent.

Usage:
    client = ObservabilityClient("orchestrator", "sess-123", "agent-1")
    client.agent_created("agent-1", "coder")
    client.run_started("build-feature")
"""

import logging
from typing import Any

import httpx

from fleetwatch.config import ClientConfig
from fleetwatch.event_types import EventType
from fleetwatch.types import format_timestamp, generate_event_id, utc_now

logger = logging.getLogger(__name__)


class ObservabilityClient:
    """
    HTTP emitter bound to one (source_app, session_id, agent_id).

    run_id is mutable: run_started() assigns a fresh one and every later
    event carries it.
    """

    def __init__(
        self,
        source_app: str,
        session_id: str,
        agent_id: str,
        run_id: str | None = None,
        base_url: str | None = None,
        config: ClientConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig.from_env()
        self.source_app = source_app
        self.session_id = session_id
        self.agent_id = agent_id
        self.run_id = run_id

        self._client = httpx.Client(
            base_url=base_url or self.config.base_url,
            timeout=self.config.timeout_s,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def set_run_id(self, run_id: str | None) -> None:
        self.run_id = run_id

    def emit(
        self,
        event_type: EventType | str,
        summary: str | None = None,
        payload: dict[str, Any] | None = None,
        tool_name: str | None = None,
        task_id: str | None = None,
        parent_event_id: str | None = None,
        duration_ms: int | None = None,
        exit_code: int | None = None,
        risk_level: str | None = None,
        agent_state: str | None = None,
        error_type: str | None = None,
    ) -> str:
        """
        Send one event.

        Returns:
            The event_id assigned to the event, whether or not delivery worked
        """
        event_id = generate_event_id()
        body = {
            "event_id": event_id,
            "source_app": self.source_app,
            "session_id": self.session_id,
            "event_type": event_type.value if isinstance(event_type, EventType) else event_type,
            "tool_name": tool_name,
            "summary": summary,
            "payload": payload or {},
            "timestamp": format_timestamp(utc_now()),
            "run_id": self.run_id,
            "agent_id": self.agent_id,
            "parent_event_id": parent_event_id,
            "task_id": task_id,
            "duration_ms": duration_ms,
            "exit_code": exit_code,
            "risk_level": risk_level,
            "agent_state": agent_state,
            "error_type": error_type,
        }

        try:
            response = self._client.post("/api/events", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to emit {body['event_type']} ({event_id}): {e}")

        return event_id

    # --- Agent lifecycle ---

    def agent_created(self, name: str, agent_type: str | None = None, parent_agent_id: str | None = None) -> str:
        return self.emit(
            EventType.AGENT_CREATED,
            summary=f"Agent created: {name}",
            payload={"agent_name": name, "agent_type": agent_type, "parent_agent_id": parent_agent_id},
            agent_state="idle",
        )

    def agent_spawned(self, child_agent_id: str, child_name: str) -> str:
        return self.emit(
            EventType.AGENT_SPAWNED,
            summary=f"Spawned child: {child_name}",
            payload={"child_agent_id": child_agent_id, "child_name": child_name},
        )

    def agent_state_changed(self, previous_state: str, new_state: str, reason: str | None = None) -> str:
        return self.emit(
            EventType.AGENT_STATE_CHANGED,
            summary=f"State: {previous_state} -> {new_state}",
            payload={"previous_state": previous_state, "new_state": new_state, "reason": reason},
            agent_state=new_state,
        )

    def agent_terminated(self, reason: str | None = None, exit_code: int | None = None) -> str:
        return self.emit(
            EventType.AGENT_TERMINATED,
            summary=f"Agent terminated: {reason}" if reason else "Agent terminated",
            payload={"reason": reason},
            exit_code=exit_code,
        )

    def agent_error(self, error_message: str, error_type: str | None = None) -> str:
        return self.emit(
            EventType.AGENT_ERROR,
            summary=f"Agent error: {error_message[:80]}",
            payload={"error_message": error_message, "error_type": error_type},
            risk_level="high",
            agent_state="error",
            error_type=error_type or "agent_error",
        )

    # --- Run lifecycle ---

    def run_started(self, run_name: str | None = None, prompt: str | None = None) -> str:
        """Start a new run; assigns a fresh run_id used by every later event."""
        self.run_id = generate_event_id()
        return self.emit(
            EventType.RUN_STARTED,
            summary=f"Run started: {run_name}" if run_name else "Run started",
            payload={"run_name": run_name, "prompt": prompt[:200] if prompt else None},
        )

    def run_completed(self, duration_ms: int | None = None) -> str:
        return self.emit(
            EventType.RUN_COMPLETED,
            summary=f"Run completed ({duration_ms}ms)" if duration_ms else "Run completed",
            payload={"duration_ms": duration_ms},
            duration_ms=duration_ms,
        )

    def run_failed(self, error_message: str, duration_ms: int | None = None) -> str:
        return self.emit(
            EventType.RUN_FAILED,
            summary=f"Run failed: {error_message[:80]}",
            payload={"error_message": error_message, "duration_ms": duration_ms},
            duration_ms=duration_ms,
            risk_level="high",
            error_type="run_failure",
        )

    def run_end(self) -> str:
        return self.emit(EventType.RUN_END, summary="Run ended")

    # --- Task lifecycle ---

    def task_created(self, task_id: str, name: str, description: str | None = None) -> str:
        return self.emit(
            EventType.TASK_CREATED,
            summary=f"Task created: {name}",
            payload={"task_name": name, "task_description": description},
            task_id=task_id,
        )

    def task_assigned(self, task_id: str, assigned_agent_id: str) -> str:
        return self.emit(
            EventType.TASK_ASSIGNED,
            summary=f"Task assigned to {assigned_agent_id}",
            payload={"assigned_agent_id": assigned_agent_id},
            task_id=task_id,
        )

    def task_started(self, task_id: str) -> str:
        return self.emit(EventType.TASK_STARTED, summary=f"Task started: {task_id}", task_id=task_id)

    def task_completed(self, task_id: str, duration_ms: int | None = None) -> str:
        summary = f"Task completed: {task_id}"
        if duration_ms:
            summary += f" ({duration_ms}ms)"
        return self.emit(EventType.TASK_COMPLETED, summary=summary, task_id=task_id, duration_ms=duration_ms)

    def task_failed(self, task_id: str, error_message: str) -> str:
        return self.emit(
            EventType.TASK_FAILED,
            summary=f"Task failed: {task_id}",
            payload={"error_message": error_message},
            task_id=task_id,
            risk_level="high",
            error_type="task_failure",
        )

    # --- Orchestration ---

    def handoff_initiated(self, to_agent_id: str, reason: str | None = None) -> str:
        return self.emit(
            EventType.HANDOFF_INITIATED,
            summary=f"Handoff to {to_agent_id}",
            payload={"from_agent_id": self.agent_id, "to_agent_id": to_agent_id, "reason": reason},
        )

    def handoff_completed(self, from_agent_id: str) -> str:
        return self.emit(
            EventType.HANDOFF_COMPLETED,
            summary=f"Handoff from {from_agent_id} completed",
            payload={"from_agent_id": from_agent_id, "to_agent_id": self.agent_id},
        )

    def delegation_requested(self, target_agent_id: str, task_description: str) -> str:
        return self.emit(
            EventType.DELEGATION_REQUESTED,
            summary=f"Delegation to {target_agent_id}: {task_description[:60]}",
            payload={"target_agent_id": target_agent_id, "task_description": task_description},
        )

    def delegation_result(self, task_id: str, success: bool) -> str:
        return self.emit(
            EventType.DELEGATION_RESULT,
            summary=f"Delegation {'succeeded' if success else 'failed'}: {task_id}",
            payload={"success": success},
            task_id=task_id,
            risk_level=None if success else "med",
        )

    # --- Errors ---

    def error_occurred(self, error_type: str, message: str, recoverable: bool) -> str:
        return self.emit(
            EventType.ERROR_OCCURRED,
            summary=f"Error: {message[:80]}",
            payload={"error_type": error_type, "error_message": message, "recoverable": recoverable},
            risk_level="med" if recoverable else "high",
            error_type=error_type,
        )

    def error_timeout(self, operation: str, timeout_ms: int) -> str:
        return self.emit(
            EventType.ERROR_TIMEOUT,
            summary=f"Timeout: {operation} ({timeout_ms}ms)",
            payload={"operation": operation, "timeout_ms": timeout_ms},
            risk_level="high",
            error_type="timeout",
        )

    # --- Tools ---

    def tool_used(
        self,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        exit_code: int | None = None,
        parent_event_id: str | None = None,
    ) -> str:
        """Report one tool invocation; the server derives the summary from tool_input."""
        return self.emit(
            EventType.TOOL_USED,
            payload={"tool_input": tool_input or {}},
            tool_name=tool_name,
            duration_ms=duration_ms,
            exit_code=exit_code,
            parent_event_id=parent_event_id,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ObservabilityClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
