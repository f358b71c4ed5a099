"""
fleetwatch CLI - command-line access to the event log.
"""

from fleetwatch.cli.event_viewer import EventViewer, main

__all__ = ["EventViewer", "main"]
