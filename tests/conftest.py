"""
Shared pytest fixtures for the Account service tests.

These fixtures build a fresh store, bus and publisher for every test, plus
stub buses and stores that fail in controlled ways.
"""

import threading
from datetime import datetime, timezone

import pytest

from domain.data_store import AccountStore
from domain.models import Child, Educator, Family, HealthProfessional, Institution
from messaging.event_bus import EventBus
from messaging.event_store import IntegrationEventStore
from messaging.exceptions import RepositoryError
from messaging.publisher import EventPublisher

FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)
UNKNOWN_ID = "507f191e810c19729de860ea"


def fixed_clock() -> datetime:
    return FIXED_NOW


# =============================================================================
# Stub Buses and Stores
# =============================================================================

class FalseBus:
    """A bus whose channel is down: every publish reports non-delivery."""

    def __init__(self):
        self.attempts = []

    def publish(self, event, routing_key):
        self.attempts.append((event, routing_key))
        return False

    def subscribe(self, routing_key, handler):
        pass


class RaisingBus(FalseBus):
    """A bus that raises on every publish."""

    def publish(self, event, routing_key):
        self.attempts.append((event, routing_key))
        raise ConnectionError("broker unreachable")


class RecordingBus(FalseBus):
    """
    A bus that accepts everything and remembers it.

    fail_on holds 1-based attempt numbers that raise instead.
    """

    def __init__(self, fail_on: frozenset = frozenset()):
        super().__init__()
        self.fail_on = fail_on

    def publish(self, event, routing_key):
        self.attempts.append((event, routing_key))
        if len(self.attempts) in self.fail_on:
            raise ConnectionError("broker unreachable")
        return True


class BlockingBus(RecordingBus):
    """A bus whose publish blocks until release is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.entered = threading.Event()

    def publish(self, event, routing_key):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().publish(event, routing_key)


class FailingStore(IntegrationEventStore):
    """An event store whose writes always fail."""

    def create(self, record):
        raise RepositoryError("disk full")


class UndeletableStore(IntegrationEventStore):
    """An event store that cannot delete records."""

    def delete_by_id(self, record_id):
        raise RepositoryError("disk full")


# =============================================================================
# Infrastructure Fixtures
# =============================================================================

@pytest.fixture
def data_store() -> AccountStore:
    """Fresh, empty AccountStore for each test."""
    return AccountStore()


@pytest.fixture
def bus() -> EventBus:
    """Fresh connected EventBus for each test."""
    return EventBus()


@pytest.fixture
def event_store() -> IntegrationEventStore:
    """Fresh memory-only event store for each test."""
    return IntegrationEventStore()


@pytest.fixture
def publisher(bus: EventBus, event_store: IntegrationEventStore):
    """Publisher over the test bus and store; closed after the test."""
    p = EventPublisher(bus=bus, store=event_store, clock=fixed_clock)
    yield p
    p.close(wait=True)


# =============================================================================
# Entity Fixtures
# =============================================================================

@pytest.fixture
def institution(data_store: AccountStore) -> Institution:
    """A registered institution."""
    return data_store.add_institution(
        Institution(type="Institute of Scientific Research", name="NUTES", latitude=-7.2, longitude=-35.9)
    )


@pytest.fixture
def child(data_store: AccountStore, institution: Institution) -> Child:
    """A registered child."""
    return data_store.add_user(
        Child(username="BR0001", password="child123", institution_id=institution.id, gender="male", age=11)
    )


@pytest.fixture
def educator(data_store: AccountStore, institution: Institution) -> Educator:
    """A registered educator without groups."""
    return data_store.add_user(
        Educator(username="educator01", password="edu123", institution_id=institution.id)
    )


@pytest.fixture
def health_professional(data_store: AccountStore, institution: Institution) -> HealthProfessional:
    """A registered health professional without groups."""
    return data_store.add_user(
        HealthProfessional(username="hp01", password="hp123", institution_id=institution.id)
    )


@pytest.fixture
def family(data_store: AccountStore, institution: Institution, child: Child) -> Family:
    """A registered family with one child."""
    return data_store.add_user(
        Family(username="family01", password="fam123", institution_id=institution.id, children=[child.id])
    )
