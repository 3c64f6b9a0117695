"""
Background task that republishes stored integration events.

Events the publisher could not deliver sit in the integration event store. On
every tick this task loads them, rebuilds each event from its stored form and
publishes it again under its original routing key. Records are deleted only
after the bus accepted them, which gives at-least-once delivery: a crash
between "published" and "deleted" leads to a duplicate, never to a loss.

State machine:
    IDLE --tick--> RUNNING --pass done--> IDLE
    any  --stop--> STOPPED  (no further ticks or items)

Design decisions:
- Each record is handled on its own; one failure never aborts the pass
- Retries happen at the fixed scheduler interval, without backoff
- stop() lets the item being processed finish its publish/delete pair
- Records that cannot be rebuilt (unknown event_name, other operations) are
  kept and reported, since deleting them would lose the event
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import ValidationError

from messaging.event_bus import MessageBus
from messaging.event_store import IntegrationEventStore, StoredEvent
from messaging.events import parse_event, utc_now
from messaging.exceptions import RetryPublishError
from messaging.publisher import PUBLISH_OPERATION

logger = logging.getLogger("retry_task")


class TaskState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class RetryReport:
    """Outcome of one retry pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    attempted: int = 0
    published: list[str] = field(default_factory=list)   # record ids the bus accepted
    failed: list[str] = field(default_factory=list)      # record ids kept for the next tick
    skipped: list[str] = field(default_factory=list)     # record ids that cannot be republished

    def __str__(self) -> str:
        return (
            f"RetryReport(attempted={self.attempted}, published={len(self.published)}, "
            f"failed={len(self.failed)}, skipped={len(self.skipped)})"
        )


class EventBusRetryTask:
    """
    Periodically drains the integration event store onto the bus.

    Example:
        task = EventBusRetryTask(bus=bus, store=store, interval_seconds=60)
        task.start()       # ticks every minute on a background thread
        ...
        task.stop()        # waits for the current item, then halts

    run_once() runs a single pass on the calling thread, which is what the
    scheduler thread does on every tick.
    """

    def __init__(
        self,
        bus: MessageBus,
        store: IntegrationEventStore,
        interval_seconds: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.bus = bus
        self.store = store
        self.interval_seconds = interval_seconds
        self.clock = clock or utc_now

        self._state = TaskState.IDLE
        self._state_lock = threading.Lock()
        # Held for a whole pass so passes never overlap and stop() can wait on it
        self._run_lock = threading.Lock()
        # Ident of the thread running the current pass, None between passes
        self._pass_thread: Optional[int] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> TaskState:
        return self._state

    def _set_state(self, state: TaskState) -> None:
        with self._state_lock:
            if self._state != TaskState.STOPPED:
                self._state = state

    # =========================================================================
    # Scheduling
    # =========================================================================

    def start(self) -> None:
        """Start ticking on a background thread."""
        if self._state == TaskState.STOPPED:
            raise RuntimeError("EventBusRetryTask was stopped and cannot be restarted")
        if self._thread is not None:
            logger.warning("EventBusRetryTask already started")
            return
        self._thread = threading.Thread(target=self._loop, name="event-bus-retry", daemon=True)
        self._thread.start()
        logger.info(f"EventBusRetryTask started, interval {self.interval_seconds}s")

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                # find_all failed (store unavailable); try again next tick
                logger.error(f"Retry pass failed: {e}")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop ticking. Idempotent.

        The record being processed finishes its publish/delete pair; the rest
        of the batch stays in the store.
        """
        with self._state_lock:
            if self._state == TaskState.STOPPED:
                return
            self._state = TaskState.STOPPED
        self._stop_event.set()

        # Wait for an in-flight pass to reach the end of its current item, unless
        # stop() was called from inside that pass
        if self._pass_thread != threading.get_ident():
            if self._run_lock.acquire(timeout=-1 if timeout is None else timeout):
                self._run_lock.release()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info("EventBusRetryTask stopped")

    # =========================================================================
    # Retry Pass
    # =========================================================================

    def run_once(self) -> Optional[RetryReport]:
        """
        Run one pass over the stored events.

        Returns:
            The pass report, or None if the task is stopped.
        """
        with self._run_lock:
            if self._state == TaskState.STOPPED:
                return None
            self._set_state(TaskState.RUNNING)
            self._pass_thread = threading.get_ident()
            try:
                return self._run_pass()
            finally:
                self._pass_thread = None
                self._set_state(TaskState.IDLE)

    def _run_pass(self) -> RetryReport:
        report = RetryReport(started_at=self.clock())
        pending = self.store.find_all()
        if pending:
            logger.info(f"Retrying {len(pending)} stored event(s)")

        for stored in pending:
            if self._stop_event.is_set():
                logger.info("Stop requested, leaving the remaining events for later")
                break
            report.attempted += 1
            self._retry_one(stored, report)

        report.finished_at = self.clock()
        if report.attempted:
            logger.info(f"Retry pass finished: {report}")
        return report

    def _retry_one(self, stored: StoredEvent, report: RetryReport) -> None:
        if stored.operation != PUBLISH_OPERATION or not stored.routing_key:
            logger.warning(
                f"Stored event {stored.id} ({stored.event_name}) has operation "
                f"'{stored.operation}' and routing key '{stored.routing_key}', skipping"
            )
            report.skipped.append(stored.id)
            return

        try:
            event = parse_event(stored.record)
        except ValidationError as e:
            logger.warning(f"Stored event {stored.id} ({stored.event_name}) cannot be rebuilt, skipping: {e}")
            report.skipped.append(stored.id)
            return

        try:
            if not self.bus.publish(event, stored.routing_key):
                raise RetryPublishError(stored.event_name, stored.id, "bus did not deliver the event")
        except Exception as e:
            error = e if isinstance(e, RetryPublishError) else RetryPublishError(stored.event_name, stored.id, str(e))
            logger.warning(f"Could not republish the event named {stored.event_name}: {error}")
            report.failed.append(stored.id)
            return

        try:
            self.store.delete_by_id(stored.id)
        except Exception as e:
            # Published but still stored: it will be published again next tick
            logger.error(f"Event {stored.event_name} ({stored.id}) republished but not deleted: {e}")
        else:
            logger.info(f"Event {stored.event_name} republished on '{stored.routing_key}' and removed from store")
        report.published.append(stored.id)
