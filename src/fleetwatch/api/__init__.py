"""HTTP and WebSocket surface for the event engine."""

from fleetwatch.api.server import BroadcastHub, create_app, run_server

__all__ = ["BroadcastHub", "create_app", "run_server"]
