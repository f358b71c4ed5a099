"""
Trace reconstruction for a single event.

Ancestors are exact: each event names its parent, so the chain is walked
one lookup per hop. Descendants are a heuristic. There is no child index, so
the children of a node are the events of the same run and agent that point
at it and fall within a time window around it. Correctly linked events
outside the window are not found.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fleetwatch.config import TraceConfig
from fleetwatch.errors import NotFoundError
from fleetwatch.event_store import EventStore
from fleetwatch.types import StoredEvent, TraceNode, TraceResponse, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)


class TraceReconstructor:
    """Builds ancestor chains, descendant trees and context windows."""

    def __init__(self, store: EventStore, config: TraceConfig | None = None):
        self.store = store
        self.config = config or TraceConfig()

    def trace(self, event_id: str) -> TraceResponse:
        """
        Full trace around one event.

        Raises:
            NotFoundError: no event has this event_id
        """
        root = self.store.get(event_id)
        if root is None:
            raise NotFoundError(event_id)

        ancestors = self.ancestors(root)
        descendants = [self.build_tree(child, 1) for child in self.children(root)]
        return TraceResponse(root=root, ancestors=ancestors, descendants=descendants)

    def ancestors(self, event: StoredEvent) -> list[StoredEvent]:
        """
        Walk parent_event_id back from an event, oldest ancestor first.

        Stops without error at a missing parent, a cycle, or the depth cap.
        The event itself is never part of its own ancestor list.
        """
        chain: list[StoredEvent] = []
        visited = {event.event_id}
        current_id = event.parent_event_id

        while current_id and current_id not in visited and len(chain) < self.config.max_ancestor_depth:
            visited.add(current_id)
            parent = self.store.get(current_id)
            if parent is None:
                logger.debug(f"Dangling parent {current_id} in trace of {event.event_id}")
                break
            chain.append(parent)
            current_id = parent.parent_event_id

        chain.reverse()
        return chain

    def children(self, event: StoredEvent) -> list[StoredEvent]:
        """Events of the same run and agent pointing at this one, within the window."""
        if not event.run_id or not event.agent_id:
            return []

        window = timedelta(minutes=self.config.descendant_window_minutes)
        center = event.timestamp
        return self.store.window(
            run_id=event.run_id,
            agent_id=event.agent_id,
            start=format_timestamp(center - window),
            end=format_timestamp(center + window),
            parent_event_id=event.event_id,
        )

    def build_tree(self, event: StoredEvent, depth: int) -> TraceNode:
        """Expand descendants recursively; nodes at the depth cap are leaves."""
        node = TraceNode(event=event, depth=depth)
        if depth >= self.config.max_descendant_depth:
            return node

        node.children = [self.build_tree(child, depth + 1) for child in self.children(event)]
        return node

    def clamp_window(self, window_sec: int | None) -> int:
        if not window_sec:
            window_sec = self.config.context_window_sec
        return max(self.config.context_window_min_sec, min(int(window_sec), self.config.context_window_max_sec))

    def context(
        self,
        run_id: str,
        ts: str,
        agent_id: str | None = None,
        window_sec: int | None = None,
    ) -> list[StoredEvent]:
        """
        Events of a run within +/- window_sec of a timestamp, oldest first.

        The window is clamped to the configured bounds and the result is
        capped at config.context_limit rows.
        """
        window = timedelta(seconds=self.clamp_window(window_sec))
        center = parse_timestamp(ts)
        return self.store.window(
            run_id=run_id,
            agent_id=agent_id,
            start=format_timestamp(center - window),
            end=format_timestamp(center + window),
            limit=self.config.context_limit,
        )
