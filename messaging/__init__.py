"""
Reliable publication of integration events.

This package holds everything between the account services and the message bus:
- Integration events and their routing keys
- The message bus the events are published to
- The event store keeping events that could not be delivered
- The publisher that publishes or persists each event
- The retry task that drains the store back onto the bus
"""

from messaging.event_bus import EventBus, MessageBus
from messaging.event_store import IntegrationEventStore, StoredEvent
from messaging.events import EventType, IntegrationEvent, RoutingKeys, parse_event
from messaging.publisher import EventPublisher, PublishOutcome
from messaging.retry_task import EventBusRetryTask, RetryReport, TaskState

__all__ = [
    "EventBus",
    "MessageBus",
    "IntegrationEventStore",
    "StoredEvent",
    "EventType",
    "IntegrationEvent",
    "RoutingKeys",
    "parse_event",
    "EventPublisher",
    "PublishOutcome",
    "EventBusRetryTask",
    "RetryReport",
    "TaskState",
]
