"""
In-process message bus for the Account service.

This module provides the bus the services publish integration events to. In a
deployed system this would be a broker client (RabbitMQ, Kafka, ...); the
rest of the service only relies on the MessageBus protocol below, so a broker
client can replace it without touching the publisher or the retry task.

Design decisions:
- Routing-key subscriptions ("users.delete"), plus "*" for every message
- Messages are the JSON-compatible wire maps, not event objects, so handlers
  see exactly what a remote consumer would receive
- A disconnected bus reports non-delivery by returning False, the way broker
  clients do when their channel is down
- A failing handler is logged and does not stop delivery to the others
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Optional, Protocol

from messaging.events import IntegrationEvent

logger = logging.getLogger("event_bus")

# Type alias for message handler functions
MessageHandler = Callable[[dict[str, Any]], None]


class MessageBus(Protocol):
    """What the publisher and the retry task need from a message bus."""

    def publish(self, event: IntegrationEvent, routing_key: str) -> bool:
        """Publish an event. Returns False when it was not delivered; may raise."""
        ...

    def subscribe(self, routing_key: str, handler: MessageHandler) -> None:
        ...


class EventBus:
    """
    Simple in-process bus implementing publish/subscribe by routing key.

    Example usage:
        bus = EventBus()

        def handle_user_deleted(message):
            print(f"User removed: {message['user']['id']}")
        bus.subscribe("users.delete", handle_user_deleted)

        event, routing_key = user_deleted(user, timestamp=utc_now())
        bus.publish(event, routing_key)
    """

    def __init__(self, connected: bool = True):
        """
        Initialize the bus.

        Args:
            connected: Initial connection state. A disconnected bus accepts
                       publish calls but delivers nothing and returns False.
        """
        self._subscribers: dict[str, list[MessageHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._connected = connected

        # Track delivered messages for debugging and tests
        self._message_log: list[tuple[str, dict[str, Any]]] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        self._connected = True
        logger.info("Connection with message bus opened")

    def disconnect(self) -> None:
        self._connected = False
        logger.warning("Connection with message bus lost")

    def subscribe(self, routing_key: str, handler: MessageHandler) -> None:
        """
        Subscribe to messages published with a routing key.

        Args:
            routing_key: The key to bind to (e.g., "users.delete"), or "*"
            handler: Function called with the message map
        """
        with self._lock:
            self._subscribers[routing_key].append(handler)
        logger.debug(f"Subscribed handler to '{routing_key}'")

    def unsubscribe(self, routing_key: str, handler: MessageHandler) -> bool:
        """
        Remove a handler.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        with self._lock:
            try:
                self._subscribers[routing_key].remove(handler)
            except ValueError:
                return False
        logger.debug(f"Unsubscribed handler from '{routing_key}'")
        return True

    def publish(self, event: IntegrationEvent, routing_key: str) -> bool:
        """
        Publish an event under a routing key.

        Returns:
            True once the message was accepted, False when the bus is not
            connected. Handler failures do not change the result: the message
            was delivered, the consumer failed.
        """
        if not self._connected:
            logger.debug(f"Bus disconnected, {event.event_name} not published")
            return False

        message = event.to_wire()
        with self._lock:
            self._message_log.append((routing_key, message))
            handlers = list(self._subscribers.get(routing_key, [])) + list(self._subscribers.get("*", []))

        logger.info(f"Publishing {event.event_name} on '{routing_key}'")

        for handler in handlers:
            try:
                handler(message)
            except Exception as e:
                logger.error(f"Handler raised exception for {event.event_name} on '{routing_key}': {e}")

        return True

    def get_subscriber_count(self, routing_key: str) -> int:
        """Get the number of subscribers bound to a routing key."""
        return len(self._subscribers.get(routing_key, []))

    def get_message_log(self, routing_key: Optional[str] = None) -> list[tuple[str, dict[str, Any]]]:
        """Get the (routing_key, message) pairs published so far."""
        with self._lock:
            return [m for m in self._message_log if routing_key is None or m[0] == routing_key]

    def clear_message_log(self) -> None:
        with self._lock:
            self._message_log.clear()
