"""
Publish-or-persist guard for integration events.

After a confirmed mutation, a service hands its event to the EventPublisher.
The publisher tries the bus and, if the bus raises or reports non-delivery,
writes the event to the integration event store so the retry task can deliver
it later. No event produced by a successful mutation is dropped silently.

Design decisions:
- Publication runs on a small thread pool; the service gets a Future back and
  returns to its caller without waiting (bus latency never reaches clients)
- The persisted form is the wire map plus "__operation" and "__routing_key"
- If the store write fails too, the event is logged at error level with its
  full payload so it can be recovered by hand; the error is not propagated
- close() drains in-flight publications so none are lost on shutdown; events
  dispatched after close are handled on the calling thread
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from messaging.event_bus import MessageBus
from messaging.event_store import IntegrationEventStore, OPERATION_KEY, ROUTING_KEY_KEY
from messaging.events import IntegrationEvent, utc_now
from messaging.exceptions import StoreWriteError, TransientBusError

logger = logging.getLogger("event_publisher")

PUBLISH_OPERATION = "publish"

Clock = Callable[[], datetime]


class PublishOutcome(str, Enum):
    """What happened to one event."""
    PUBLISHED = "published"    # The bus accepted it
    PERSISTED = "persisted"    # Stored for a later retry
    LOST = "lost"              # Bus and store both failed; logged with payload


def to_persisted_record(event: IntegrationEvent, routing_key: str) -> dict:
    """Build the stored form of an event that could not be published."""
    record = event.to_wire()
    record[OPERATION_KEY] = PUBLISH_OPERATION
    record[ROUTING_KEY_KEY] = routing_key
    return record


class EventPublisher:
    """
    Publishes integration events, falling back to the event store.

    Example:
        publisher = EventPublisher(bus=bus, store=store)

        event, routing_key = user_updated(educator, timestamp=utc_now())
        publisher.publish_or_persist(event, routing_key)  # does not block

        publisher.close()  # on shutdown
    """

    def __init__(
        self,
        bus: MessageBus,
        store: IntegrationEventStore,
        clock: Optional[Clock] = None,
        max_workers: int = 4,
    ):
        """
        Initialize the publisher.

        Args:
            bus: Message bus to publish to
            store: Where undelivered events are kept
            clock: Time source for the recovery context of lost events
            max_workers: Size of the dispatch thread pool
        """
        self.bus = bus
        self.store = store
        self.clock = clock or utc_now
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="event-publisher")
        self._lock = threading.Lock()
        self._in_flight: dict[Future, tuple[IntegrationEvent, str]] = {}
        self._closed = False

    def publish_or_persist(self, event: IntegrationEvent, routing_key: str) -> "Future[PublishOutcome]":
        """
        Dispatch an event for publication and return immediately.

        The returned Future resolves to a PublishOutcome; callers are free to
        ignore it. Once the publisher is closed the event is published (or
        persisted) on the calling thread and the Future is already resolved.
        """
        with self._lock:
            closed = self._closed
            if not closed:
                future = self._executor.submit(self._publish, event, routing_key)
                self._in_flight[future] = (event, routing_key)

        if closed:
            logger.warning(f"EventPublisher is closed, publishing {event.event_name} on the calling thread")
            future = Future()
            future.set_result(self._publish(event, routing_key))
            return future

        future.add_done_callback(self._forget)
        return future

    def publish_now(self, event: IntegrationEvent, routing_key: str) -> PublishOutcome:
        """Publish synchronously on the calling thread. Same fallback as publish_or_persist."""
        return self._publish(event, routing_key)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._in_flight.pop(future, None)

    def _publish(self, event: IntegrationEvent, routing_key: str) -> PublishOutcome:
        try:
            if self.bus.publish(event, routing_key):
                logger.info(f"{event.event_name} published on event bus with routing key '{routing_key}'")
                return PublishOutcome.PUBLISHED
            error = TransientBusError(f"Bus did not deliver {event.event_name}")
        except Exception as e:
            error = TransientBusError(f"Error publishing {event.event_name}: {e}")

        logger.debug(str(error))
        return self._persist(event, routing_key)

    def _persist(self, event: IntegrationEvent, routing_key: str) -> PublishOutcome:
        record = to_persisted_record(event, routing_key)
        try:
            self.store.create(record)
        except Exception as e:
            error = e if isinstance(e, StoreWriteError) else StoreWriteError(str(e))
            logger.error(
                f"There was an error trying to save the event: {event.event_name} "
                f"at {self.clock().isoformat()}. Error: {error}. Event: {record}"
            )
            return PublishOutcome.LOST

        logger.warning(
            f"Could not publish the event named {event.event_name}. "
            f"The event was saved in the database for a possible recovery."
        )
        return PublishOutcome.PERSISTED

    @property
    def pending(self) -> int:
        """Number of dispatched publications that have not finished yet."""
        with self._lock:
            return len(self._in_flight)

    def close(self, wait: bool = True) -> None:
        """
        Stop dispatching to the thread pool and drain the publications in flight.

        Args:
            wait: Block until in-flight publications finish. With wait=False
                  queued publications are cancelled and each one is logged.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            in_flight = list(self._in_flight.items())

        if in_flight:
            logger.info(f"Draining {len(in_flight)} in-flight event publication(s)")

        if not wait:
            for future, (event, routing_key) in in_flight:
                if future.cancel():
                    logger.error(
                        f"Publication of {event.event_name} cancelled during shutdown. "
                        f"Event: {to_persisted_record(event, routing_key)}"
                    )
        self._executor.shutdown(wait=wait)
