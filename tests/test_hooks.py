"""Tests for forwarding agent hook events, using an in-process httpx transport."""

import io
import json

import httpx
import pytest

from fleetwatch.cli.event_viewer import main
from fleetwatch.config import ClientConfig, HookConfig
from fleetwatch.hooks import forward_hook, parse_hook


@pytest.fixture
def sent():
    return []


@pytest.fixture
def transport(sent):
    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(201, json={"id": len(sent)})

    return httpx.MockTransport(handler)


@pytest.fixture
def forward(transport):
    config = HookConfig(source_app="coder", agent_id="agent-7", run_id="run-3")
    client_config = ClientConfig(base_url="http://fleetwatch.test")

    def _forward(hook_data):
        raw = hook_data if isinstance(hook_data, str) else json.dumps(hook_data)
        return forward_hook(raw, config=config, client_config=client_config, transport=transport)

    return _forward


class TestParseHook:
    """Test mapping hook JSON to an event."""

    def test_event_type_from_hook_name(self):
        event = parse_hook({"hook_event_name": "PreToolUse", "type": "other", "session_id": "s"})
        assert event.event_type == "PreToolUse"
        assert event.session_id == "s"

    def test_fallbacks(self):
        event = parse_hook({"type": "Stop"})
        assert event.event_type == "Stop"
        assert event.session_id == "unknown"
        assert parse_hook({}).event_type == "unknown"

    def test_summary_names_tool(self):
        assert parse_hook({"hook_event_name": "PreToolUse", "tool_name": "Read"}).summary == "PreToolUse: Read"
        assert parse_hook({"hook_event_name": "Stop"}).summary == "Stop"

    def test_post_tool_use_enrichment(self):
        event = parse_hook({
            "hook_event_name": "PostToolUse",
            "tool_name": "Bash",
            "duration_ms": 1200,
            "tool_result": {"exit_code": 2},
        })
        assert event.duration_ms == 1200
        assert event.exit_code == 2
        assert event.risk_level == "med"
        assert event.failed

    def test_file_tools_low_risk(self):
        assert parse_hook({"hook_event_name": "PostToolUse", "tool_name": "Edit"}).risk_level == "low"
        assert parse_hook({"hook_event_name": "PostToolUse", "tool_name": "Read"}).risk_level is None

    def test_enrichment_only_on_post_tool_use(self):
        event = parse_hook({
            "hook_event_name": "PreToolUse",
            "tool_name": "Bash",
            "duration_ms": 50,
            "tool_result": {"exit_code": 1},
        })
        assert event.duration_ms is None
        assert event.exit_code is None
        assert event.risk_level is None

    def test_error_notification_flagged(self):
        assert parse_hook({"hook_event_name": "Notification", "message": "Build FAILED"}).risk_level == "med"
        assert parse_hook({"hook_event_name": "Notification", "title": "Request timeout"}).risk_level == "med"
        assert parse_hook({"hook_event_name": "Notification", "message": "Waiting for input"}).risk_level is None


class TestForwardHook:
    """Test sending hook events."""

    def test_sends_hook_event(self, forward, sent):
        hook = {"hook_event_name": "PreToolUse", "session_id": "sess-9", "tool_name": "Read"}
        event_ids = forward(hook)

        assert len(event_ids) == 1
        body = sent[0]
        assert body["event_id"] == event_ids[0]
        assert body["event_type"] == "PreToolUse"
        assert body["session_id"] == "sess-9"
        assert body["source_app"] == "coder"
        assert body["agent_id"] == "agent-7"
        assert body["run_id"] == "run-3"
        assert body["payload"] == hook

    def test_non_zero_exit_sends_tool_error(self, forward, sent):
        event_ids = forward({
            "hook_event_name": "PostToolUse",
            "session_id": "sess-9",
            "tool_name": "Bash",
            "tool_result": {"exit_code": 127},
        })

        assert len(event_ids) == 2
        hook_body, error_body = sent
        assert hook_body["exit_code"] == 127
        assert error_body["event_type"] == "tool.error"
        assert error_body["parent_event_id"] == event_ids[0]
        assert error_body["risk_level"] == "high"
        assert error_body["error_type"] == "tool_error"
        assert error_body["summary"] == "Tool error: Bash exited 127"
        assert error_body["payload"] == {"original_event_type": "PostToolUse", "exit_code": 127}
        assert error_body["exit_code"] is None

    def test_zero_exit_sends_one_event(self, forward, sent):
        forward({"hook_event_name": "PostToolUse", "tool_name": "Bash", "tool_result": {"exit_code": 0}})
        assert len(sent) == 1

    def test_bad_input_sends_nothing(self, forward, sent):
        assert forward("not json") == []
        assert forward("[1, 2]") == []
        assert sent == []

    def test_unreachable_server_is_quiet(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        event_ids = forward_hook(
            json.dumps({"hook_event_name": "Stop"}),
            config=HookConfig(),
            client_config=ClientConfig(base_url="http://fleetwatch.test"),
            transport=httpx.MockTransport(handler),
        )
        assert len(event_ids) == 1

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("FLEETWATCH_SOURCE", "reviewer")
        monkeypatch.delenv("FLEETWATCH_AGENT_ID", raising=False)
        monkeypatch.setenv("FLEETWATCH_RUN_ID", "r-env")

        config = HookConfig.from_env()
        assert config.source_app == "reviewer"
        assert config.agent_id == "reviewer"
        assert config.run_id == "r-env"


class TestHookCommand:
    """Test the ``fleetwatch hook`` subcommand."""

    def test_bad_stdin_exits_zero(self, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("{broken"))
        assert main(["hook"]) == 0
