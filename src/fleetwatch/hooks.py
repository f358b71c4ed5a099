"""
Forwarder for coding-agent hook events.

An agent's hook system runs ``fleetwatch hook`` with the hook's JSON on
stdin, for example in a settings file:

    "hooks": {
      "PostToolUse": [{"matcher": "", "hooks": [{"type": "command", "command": "fleetwatch hook"}]}]
    }

The hook name becomes the event type. PostToolUse hooks carry duration,
exit code and a per-tool risk level; Notification hooks whose message
reads like an error are marked medium risk. A non-zero exit code is
followed by a tool.error event linked to the hook event.

Forwarding never raises: bad input is logged and skipped, and delivery
failures are handled by ObservabilityClient, so the agent is never held
up by its observer.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from fleetwatch.client import ObservabilityClient
from fleetwatch.config import ClientConfig, HookConfig
from fleetwatch.event_types import EventType

logger = logging.getLogger(__name__)

_ERROR_WORDS = re.compile(r"error|fail|exception|timeout", re.IGNORECASE)

# Risk of a completed tool call, by tool
_TOOL_RISK = {"Bash": "med", "Write": "low", "Edit": "low"}


@dataclass
class HookEvent:
    """An event built from one hook invocation."""
    event_type: str
    session_id: str
    tool_name: str | None
    summary: str
    payload: dict[str, Any]
    duration_ms: int | None = None
    exit_code: int | None = None
    risk_level: str | None = None

    @property
    def failed(self) -> bool:
        return self.exit_code is not None and self.exit_code != 0


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def parse_hook(hook_data: dict[str, Any]) -> HookEvent:
    """Map a hook's JSON object to an event."""
    event_type = hook_data.get("hook_event_name") or hook_data.get("type") or "unknown"
    tool_name = hook_data.get("tool_name") or None

    event = HookEvent(
        event_type=event_type,
        session_id=hook_data.get("session_id") or "unknown",
        tool_name=tool_name,
        summary=f"{event_type}: {tool_name}" if tool_name else event_type,
        payload=hook_data,
    )

    if event_type == EventType.POST_TOOL_USE.value:
        event.duration_ms = _int_or_none(hook_data.get("duration_ms")) or None
        tool_result = hook_data.get("tool_result")
        if isinstance(tool_result, dict):
            event.exit_code = _int_or_none(tool_result.get("exit_code"))
        event.risk_level = _TOOL_RISK.get(tool_name)

    if event_type == EventType.NOTIFICATION.value:
        message = hook_data.get("message") or hook_data.get("title") or ""
        if _ERROR_WORDS.search(str(message)):
            event.risk_level = "med"

    return event


def forward_hook(
    raw: str,
    config: HookConfig | None = None,
    client_config: ClientConfig | None = None,
    transport: httpx.BaseTransport | None = None,
) -> list[str]:
    """
    Send the event for one hook invocation, plus tool.error on failure.

    Args:
        raw: The hook's JSON, as read from stdin
        config: Source and correlation ids (from the environment if omitted)
        client_config: Server URL and timeout (from the environment if omitted)
        transport: httpx transport override

    Returns:
        event_ids of the events sent; empty if the input was unusable
    """
    config = config or HookConfig.from_env()

    try:
        hook_data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring hook input that is not JSON: {e}")
        return []
    if not isinstance(hook_data, dict):
        logger.warning(f"Ignoring hook input of type {type(hook_data).__name__}")
        return []

    event = parse_hook(hook_data)
    with ObservabilityClient(
        config.source_app,
        event.session_id,
        config.agent_id or config.source_app,
        run_id=config.run_id,
        config=client_config,
        transport=transport,
    ) as client:
        event_id = client.emit(
            event.event_type,
            summary=event.summary,
            payload=event.payload,
            tool_name=event.tool_name,
            duration_ms=event.duration_ms,
            exit_code=event.exit_code,
            risk_level=event.risk_level,
        )
        sent = [event_id]

        # The exit code stays in the payload only; the hook event already
        # counts toward failure bursts and run error totals
        if event.failed:
            sent.append(client.emit(
                EventType.TOOL_ERROR,
                summary=f"Tool error: {event.tool_name or 'unknown'} exited {event.exit_code}",
                payload={"original_event_type": event.event_type, "exit_code": event.exit_code},
                tool_name=event.tool_name,
                parent_event_id=event_id,
                risk_level="high",
                error_type="tool_error",
            ))

    return sent
