"""
EventViewer - CLI tool for inspecting the event log.

Provides commands to:
- serve the HTTP/WebSocket API
- list recent history with filters
- print the reconstructed trace of an event
- compute (and optionally store) a run summary
- forward an agent hook event from stdin to a running server

Output is plain text, one event per line.
"""

import json
import logging
import sys

from fleetwatch.config import FleetwatchConfig
from fleetwatch.engine import ObservabilityEngine, build_engine
from fleetwatch.errors import NotFoundError
from fleetwatch.types import HistoryParams, StoredEvent, TraceNode

_RISK_ICONS = {"low": "[.]", "med": "[~]", "high": "[!]"}


class EventViewer:
    """
    CLI viewer for stored events.

    Provides methods to display events and traces in a human-readable format.
    """

    def __init__(self, engine: ObservabilityEngine):
        self.engine = engine

    def list_history(
        self,
        limit: int = 20,
        session_id: str | None = None,
        event_type: str | None = None,
        source_app: str | None = None,
    ) -> str:
        """
        List recent events, newest first.

        Returns:
            Formatted string output
        """
        events, total = self.engine.history(HistoryParams(
            limit=limit, session_id=session_id, event_type=event_type, source_app=source_app,
        ))
        if not events:
            return "No events found."

        lines = [f"Showing {len(events)} of {total} event(s):", ""]
        lines.extend(self._format_event(event) for event in events)
        return "\n".join(lines)

    def view_trace(self, event_id: str) -> str:
        """
        View ancestors and descendants of one event.

        Returns:
            Formatted string output
        """
        try:
            trace = self.engine.trace(event_id)
        except NotFoundError:
            return f"Event not found: {event_id}"

        lines = [
            "=" * 60,
            f"Trace for event: {event_id}",
            "=" * 60,
            "",
            f"Ancestors ({len(trace.ancestors)}):",
        ]
        for ancestor in trace.ancestors:
            lines.append(f"  {self._format_event(ancestor)}")

        lines.extend(["", "Event:", f"> {self._format_event(trace.root)}", ""])

        lines.append(f"Descendants ({len(trace.descendants)} direct):")
        for node in trace.descendants:
            self._format_node(node, lines)

        return "\n".join(lines)

    def view_summary(self, run_id: str, agent_id: str, store: bool = False) -> str:
        """
        Compute the run summary for a (run_id, agent_id) pair.

        Args:
            store: Also append the summary to the event log, unless the
                pair already has one

        Returns:
            JSON of the summary event
        """
        if store:
            stored = self.engine.store_run_summary(run_id, agent_id)
            if stored is None:
                return f"Run summary not stored: run {run_id} / agent {agent_id} already has one."
            return json.dumps(stored.to_dict(), indent=2)

        summary = self.engine.summarizer.summarize(run_id, agent_id)
        return json.dumps(
            {"event_type": summary.event_type, "summary": summary.summary, "payload": summary.payload},
            indent=2,
        )

    def _format_node(self, node: TraceNode, lines: list[str]) -> None:
        lines.append(f"{'  ' * node.depth}- {self._format_event(node.event)}")
        for child in node.children:
            self._format_node(child, lines)

    def _format_event(self, event: StoredEvent) -> str:
        icon = _RISK_ICONS.get(event.risk_level.value, "[ ]") if event.risk_level else "[ ]"
        agent = f" @{event.agent_id}" if event.agent_id else ""
        return f"{icon} {event.created_at} {event.event_type:24} {event.summary}{agent} ({event.event_id[:8]})"


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="fleetwatch event log")
    parser.add_argument("--db-path", default=None, help="SQLite database file")
    parser.add_argument("--log-level", default="INFO", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP/WebSocket server")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Port")

    # history command
    history_parser = subparsers.add_parser("history", help="List recent events")
    history_parser.add_argument("--limit", type=int, default=20, help="Max events to show")
    history_parser.add_argument("--session", default=None, help="Filter by session_id")
    history_parser.add_argument("--type", dest="event_type", default=None, help="Filter by event_type")
    history_parser.add_argument("--source", default=None, help="Filter by source_app")

    # trace command
    trace_parser = subparsers.add_parser("trace", help="View the trace of an event")
    trace_parser.add_argument("event_id", help="Event ID to trace")

    # hook command
    subparsers.add_parser("hook", help="Forward one agent hook event read from stdin")

    # summarize command
    summarize_parser = subparsers.add_parser("summarize", help="Summarize a run")
    summarize_parser.add_argument("run_id", help="Run ID")
    summarize_parser.add_argument("agent_id", help="Agent ID")
    summarize_parser.add_argument("--store", action="store_true", help="Append the summary event")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "hook":
        from fleetwatch.hooks import forward_hook

        # Always succeeds so the agent running the hook is never interrupted
        forward_hook(sys.stdin.read())
        return 0

    config = FleetwatchConfig.from_env()
    if args.command == "serve":
        from fleetwatch.api.server import run_server

        if args.host:
            config.server.host = args.host
        if args.port:
            config.server.port = args.port
        run_server(build_engine(config, db_path=args.db_path), config)
        return 0

    engine = build_engine(config, db_path=args.db_path)
    viewer = EventViewer(engine)
    try:
        if args.command == "history":
            print(viewer.list_history(
                limit=args.limit, session_id=args.session, event_type=args.event_type, source_app=args.source,
            ))
        elif args.command == "trace":
            print(viewer.view_trace(args.event_id))
        elif args.command == "summarize":
            print(viewer.view_summary(args.run_id, args.agent_id, store=args.store))
    finally:
        engine.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
