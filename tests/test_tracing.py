"""
Tests for trace reconstruction.

Tests cover:
- Ancestor chains (order, dangling parents, cycles, depth cap)
- Descendant trees (window heuristic, run/agent scoping, depth cap)
- Context windows (clamping, row cap)
"""

import pytest

from fleetwatch.config import TraceConfig
from fleetwatch.errors import NotFoundError
from fleetwatch.tracing import TraceReconstructor


@pytest.fixture
def tracer(store):
    return TraceReconstructor(store)


@pytest.fixture
def linked(store, make_event, at):
    """Insert an event in run r / agent a; returns a helper."""
    def _linked(event_id, parent=None, seconds=0, **overrides):
        fields = {"run_id": "r", "agent_id": "a"}
        fields.update(overrides)
        return store.insert(make_event(
            event_id=event_id, parent_event_id=parent, timestamp=at(seconds), **fields,
        ))
    return _linked


class TestAncestors:
    """Test the ancestor walk."""

    def test_chain_oldest_first(self, tracer, linked):
        linked("root")
        linked("mid", parent="root", seconds=1)
        leaf = linked("leaf", parent="mid", seconds=2)

        assert [e.event_id for e in tracer.ancestors(leaf)] == ["root", "mid"]

    def test_no_parent(self, tracer, linked):
        assert tracer.ancestors(linked("alone")) == []

    def test_dangling_parent_stops(self, tracer, linked):
        linked("mid", parent="missing")
        leaf = linked("leaf", parent="mid", seconds=1)
        assert [e.event_id for e in tracer.ancestors(leaf)] == ["mid"]

    def test_cycle_terminates(self, tracer, linked):
        linked("x", parent="y")
        y = linked("y", parent="x", seconds=1)

        ancestors = tracer.ancestors(y)

        assert [e.event_id for e in ancestors] == ["x"]

    def test_self_parent(self, tracer, linked):
        event = linked("self", parent="self")
        assert tracer.ancestors(event) == []

    def test_depth_cap(self, store, linked):
        linked("e0")
        for i in range(1, 40):
            linked(f"e{i}", parent=f"e{i - 1}", seconds=i)

        tracer = TraceReconstructor(store, TraceConfig(max_ancestor_depth=25))
        ancestors = tracer.ancestors(store.get("e39"))

        assert len(ancestors) == 25
        assert ancestors[-1].event_id == "e38"
        assert ancestors[0].event_id == "e14"


class TestDescendants:
    """Test descendant tree reconstruction."""

    def test_tree(self, tracer, linked):
        linked("root")
        linked("c1", parent="root", seconds=1)
        linked("c2", parent="root", seconds=2)
        linked("g1", parent="c1", seconds=3)

        trace = tracer.trace("root")

        assert trace.root.event_id == "root"
        assert trace.ancestors == []
        assert [n.event.event_id for n in trace.descendants] == ["c1", "c2"]
        assert trace.descendants[0].depth == 1
        grandchildren = trace.descendants[0].children
        assert [n.event.event_id for n in grandchildren] == ["g1"]
        assert grandchildren[0].depth == 2

    def test_children_outside_window_missed(self, tracer, linked):
        linked("root")
        linked("near", parent="root", seconds=29 * 60)
        linked("far", parent="root", seconds=31 * 60)

        trace = tracer.trace("root")
        assert [n.event.event_id for n in trace.descendants] == ["near"]

    def test_children_scoped_to_run_and_agent(self, tracer, linked):
        linked("root")
        linked("same", parent="root", seconds=1)
        linked("other-agent", parent="root", seconds=1, agent_id="b")
        linked("other-run", parent="root", seconds=1, run_id="q")

        trace = tracer.trace("root")
        assert [n.event.event_id for n in trace.descendants] == ["same"]

    def test_no_run_means_no_descendants(self, tracer, store, make_event):
        store.insert(make_event(event_id="root"))
        store.insert(make_event(event_id="child", parent_event_id="root"))
        assert tracer.trace("root").descendants == []

    def test_depth_cap(self, store, linked):
        linked("d0")
        for i in range(1, 15):
            linked(f"d{i}", parent=f"d{i - 1}", seconds=i)

        tracer = TraceReconstructor(store, TraceConfig(max_descendant_depth=10))
        node = tracer.trace("d0").descendants[0]
        depth = 1
        while node.children:
            node = node.children[0]
            depth += 1

        assert depth == 10
        assert node.depth == 10
        assert node.event.event_id == "d10"

    def test_cycle_in_tree_is_bounded(self, tracer, linked):
        linked("x", parent="y")
        linked("y", parent="x", seconds=1)

        trace = tracer.trace("x")
        assert trace.ancestors[0].event_id == "y"
        assert trace.descendants[0].event.event_id == "y"

    def test_unknown_event(self, tracer):
        with pytest.raises(NotFoundError):
            tracer.trace("nope")

    def test_to_dict(self, tracer, linked):
        linked("root")
        linked("child", parent="root", seconds=1)
        data = tracer.trace("child").to_dict()
        assert data["root"]["event_id"] == "child"
        assert data["ancestors"][0]["event_id"] == "root"
        assert data["descendants"] == []


class TestContextWindow:
    """Test context window queries."""

    def test_window_around_timestamp(self, tracer, linked, at):
        linked("before", seconds=-400)
        linked("inside1", seconds=-100)
        linked("inside2", seconds=200)
        linked("after", seconds=400)

        events = tracer.context("r", at(0), window_sec=300)
        assert [e.event_id for e in events] == ["inside1", "inside2"]

    def test_agent_filter(self, tracer, linked, at):
        linked("a-event", seconds=1)
        linked("b-event", seconds=2, agent_id="b")
        events = tracer.context("r", at(0), agent_id="b")
        assert [e.event_id for e in events] == ["b-event"]

    def test_window_clamped(self, tracer):
        assert tracer.clamp_window(None) == 300
        assert tracer.clamp_window(5) == 60
        assert tracer.clamp_window(100_000) == 600
        assert tracer.clamp_window(120) == 120

    def test_row_cap(self, store, linked, at):
        for i in range(30):
            linked(f"e{i}", seconds=i)
        tracer = TraceReconstructor(store, TraceConfig(context_limit=10))
        events = tracer.context("r", at(0))
        assert len(events) == 10
        assert events[0].event_id == "e0"
