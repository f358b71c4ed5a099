"""Error taxonomy for the event engine."""


class FleetwatchError(Exception):
    """Base class for fleetwatch errors."""
    pass


class DuplicateEventError(FleetwatchError):
    """An event with the same event_id is already stored."""

    def __init__(self, event_id: str):
        super().__init__(f"Duplicate event_id: {event_id}")
        self.event_id = event_id


class NotFoundError(FleetwatchError):
    """The requested event does not exist."""

    def __init__(self, event_id: str):
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class TransientStoreError(FleetwatchError):
    """An auxiliary store lookup failed; callers treat it as "no match"."""
    pass


class MalformedEventError(FleetwatchError, ValueError):
    """An incoming event is missing required fields or has invalid values."""
    pass
