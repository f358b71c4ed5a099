"""Tests for the emitter client, using an in-process httpx transport."""

import json

import httpx
import pytest

from fleetwatch.client import ObservabilityClient
from fleetwatch.config import ClientConfig


@pytest.fixture
def sent():
    return []


@pytest.fixture
def obs_client(sent):
    def handler(request: httpx.Request) -> httpx.Response:
        sent.append((request.url.path, json.loads(request.content)))
        return httpx.Response(201, json={"id": len(sent)})

    client = ObservabilityClient(
        "orchestrator", "sess-1", "agent-1",
        config=ClientConfig(base_url="http://fleetwatch.test"),
        transport=httpx.MockTransport(handler),
    )
    yield client
    client.close()


class TestEmit:
    """Test the core emitter."""

    def test_posts_full_body(self, obs_client, sent):
        event_id = obs_client.emit("custom.thing", summary="hi", payload={"k": 1}, task_id="t1")

        path, body = sent[0]
        assert path == "/api/events"
        assert body["event_id"] == event_id
        assert body["source_app"] == "orchestrator"
        assert body["session_id"] == "sess-1"
        assert body["agent_id"] == "agent-1"
        assert body["event_type"] == "custom.thing"
        assert body["summary"] == "hi"
        assert body["payload"] == {"k": 1}
        assert body["task_id"] == "t1"
        assert body["run_id"] is None
        assert body["timestamp"].endswith("Z")

    def test_network_error_is_swallowed(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with ObservabilityClient("a", "s", "g", transport=httpx.MockTransport(handler)) as client:
            event_id = client.emit("x")
        assert len(event_id) == 36

    def test_server_error_is_swallowed(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        with ObservabilityClient("a", "s", "g", transport=transport) as client:
            assert client.task_started("t1")


class TestHelpers:
    """Test the lifecycle helpers."""

    def test_run_started_sets_run_id(self, obs_client, sent):
        obs_client.run_started("build", prompt="p" * 500)
        run_id = obs_client.run_id
        obs_client.run_completed(1500)

        started, completed = sent[0][1], sent[1][1]
        assert run_id is not None
        assert started["run_id"] == run_id
        assert completed["run_id"] == run_id
        assert started["event_type"] == "run.started"
        assert len(started["payload"]["prompt"]) == 200
        assert completed["duration_ms"] == 1500
        assert completed["summary"] == "Run completed (1500ms)"

    def test_run_failed(self, obs_client, sent):
        obs_client.run_failed("boom")
        body = sent[0][1]
        assert body["event_type"] == "run.failed"
        assert body["risk_level"] == "high"
        assert body["error_type"] == "run_failure"

    def test_run_end(self, obs_client, sent):
        obs_client.run_end()
        assert sent[0][1]["event_type"] == "run.end"

    def test_agent_helpers(self, obs_client, sent):
        obs_client.agent_created("coder", agent_type="worker")
        obs_client.agent_state_changed("idle", "active")
        obs_client.agent_error("it broke")

        types = [body["event_type"] for _, body in sent]
        assert types == ["agent.created", "agent.state_changed", "agent.error"]
        assert sent[0][1]["agent_state"] == "idle"
        assert sent[1][1]["agent_state"] == "active"
        assert sent[2][1]["error_type"] == "agent_error"

    def test_task_helpers(self, obs_client, sent):
        obs_client.task_created("t1", "write tests")
        obs_client.task_assigned("t1", "agent-2")
        obs_client.task_completed("t1", 20)
        obs_client.task_failed("t2", "nope")

        assert [body["task_id"] for _, body in sent] == ["t1", "t1", "t1", "t2"]
        assert sent[3][1]["risk_level"] == "high"

    def test_handoff_helpers(self, obs_client, sent):
        obs_client.handoff_initiated("agent-2", reason="review")
        obs_client.handoff_completed("agent-0")

        assert sent[0][1]["payload"] == {"from_agent_id": "agent-1", "to_agent_id": "agent-2", "reason": "review"}
        assert sent[1][1]["payload"] == {"from_agent_id": "agent-0", "to_agent_id": "agent-1"}

    def test_tool_used(self, obs_client, sent):
        parent = obs_client.task_started("t1")
        obs_client.tool_used("Bash", {"command": "ls"}, duration_ms=12, exit_code=0, parent_event_id=parent)

        body = sent[1][1]
        assert body["event_type"] == "tool.used"
        assert body["tool_name"] == "Bash"
        assert body["payload"] == {"tool_input": {"command": "ls"}}
        assert body["parent_event_id"] == parent
        assert body["exit_code"] == 0
