"""
Errors of the event publication subsystem.

None of these reach an HTTP caller: the publisher and the retry task recover
from all of them locally and log what happened.
"""


class EventBusError(Exception):
    """Base class for message bus failures."""


class TransientBusError(EventBusError):
    """The bus is unreachable or the broker rejected a message."""


class RetryPublishError(EventBusError):
    """A persisted event could not be republished during a retry pass."""

    def __init__(self, event_name: str, record_id: str, reason: str):
        super().__init__(f"Could not republish {event_name} ({record_id}): {reason}")
        self.event_name = event_name
        self.record_id = record_id
        self.reason = reason


class RepositoryError(Exception):
    """The integration event store failed at the storage layer."""


class StoreWriteError(RepositoryError):
    """An event that failed to publish could not be persisted either."""
