"""
Tests for the user services and the events their mutations publish.

Publication is asynchronous, so tests that inspect the bus or the event store
close the publisher first; close() drains every in-flight publication.
"""

import pytest

from domain.data_store import AccountStore
from domain.exceptions import ConflictException, ValidationException
from domain.models import Admin, Application, Child, Educator, Family, HealthProfessional, Institution
from messaging.event_bus import EventBus
from messaging.event_store import IntegrationEventStore
from messaging.publisher import EventPublisher
from messaging.retry_task import EventBusRetryTask
from services import (
    AdminService,
    ApplicationService,
    ChildService,
    FamilyService,
    HealthProfessionalService,
    UserService,
)
from conftest import FIXED_NOW, UNKNOWN_ID, BlockingBus, FalseBus, fixed_clock


class TestReliableUpdatePublication:
    """End-to-end: a failed publication is stored and later recovered."""

    def test_health_professional_update_recovered_after_outage(
        self, data_store: AccountStore, health_professional: HealthProfessional,
        event_store: IntegrationEventStore,
    ):
        publisher = EventPublisher(bus=FalseBus(), store=event_store, clock=fixed_clock)
        service = HealthProfessionalService(data_store, publisher, clock=fixed_clock)

        updated = service.update(health_professional.id, {"username": "hp_renamed"})
        publisher.close()

        assert updated.username == "hp_renamed"
        stored = event_store.find_all()
        assert len(stored) == 1
        assert stored[0].event_name == "HealthProfessionalUpdateEvent"
        assert stored[0].routing_key == "healthprofessionals.update"
        assert stored[0].record["healthprofessional"]["username"] == "hp_renamed"

        # The bus comes back; the next tick delivers and clears the store
        bus = EventBus()
        received = []
        bus.subscribe("healthprofessionals.update", received.append)
        report = EventBusRetryTask(bus=bus, store=event_store, clock=fixed_clock).run_once()

        assert len(report.published) == 1
        assert event_store.count() == 0
        assert received[0]["healthprofessional"]["id"] == health_professional.id
        assert received[0]["timestamp"].startswith("2026-03-14T09:30:00")


class TestNonBlockingPublication:
    def test_update_returns_while_bus_hangs(self, data_store: AccountStore, child: Child,
                                            event_store: IntegrationEventStore):
        """The mutation completes while the bus is still blocked."""
        bus = BlockingBus()
        publisher = EventPublisher(bus=bus, store=event_store)
        children = ChildService(data_store, publisher)

        updated = children.update(child.id, {"age": 12})

        assert updated.age == 12
        assert bus.entered.wait(timeout=5)
        assert bus.attempts == []

        bus.release.set()
        publisher.close()
        assert len(bus.attempts) == 1


class TestPublicationAfterShutdown:
    def test_update_after_close_stores_event(self, data_store: AccountStore, child: Child,
                                             event_store: IntegrationEventStore):
        """A mutation confirmed after the publisher closed still keeps its event."""
        publisher = EventPublisher(bus=FalseBus(), store=event_store)
        publisher.close()
        children = ChildService(data_store, publisher)

        updated = children.update(child.id, {"age": 6})

        assert updated.age == 6
        stored = event_store.find_all()
        assert [(s.event_name, s.routing_key) for s in stored] == [("ChildUpdateEvent", "children.update")]
        assert stored[0].record["child"]["age"] == 6


class TestUpdates:
    """Tests for UserTypeService.update."""

    @pytest.fixture
    def children(self, data_store: AccountStore, publisher: EventPublisher) -> ChildService:
        return ChildService(data_store, publisher, clock=fixed_clock)

    def test_update_publishes_event(self, children: ChildService, child: Child,
                                    bus: EventBus, publisher: EventPublisher):
        children.update(child.id, {"age": 12})
        publisher.close()

        log = bus.get_message_log("children.update")
        assert len(log) == 1
        assert log[0][1]["event_name"] == "ChildUpdateEvent"
        assert log[0][1]["child"]["age"] == 12
        assert "password" not in log[0][1]["child"]

    def test_update_missing_user_publishes_nothing(self, children: ChildService, child: Child,
                                                   bus: EventBus, event_store: IntegrationEventStore,
                                                   publisher: EventPublisher):
        assert children.update(UNKNOWN_ID, {"age": 12}) is None
        publisher.close()

        assert bus.get_message_log() == []
        assert event_store.count() == 0

    def test_update_other_type_is_not_found(self, data_store: AccountStore, publisher: EventPublisher,
                                            educator: Educator, bus: EventBus):
        children = ChildService(data_store, publisher)

        assert children.update(educator.id, {"username": "x"}) is None
        publisher.close()
        assert bus.get_message_log() == []

    def test_invalid_update_publishes_nothing(self, children: ChildService, child: Child,
                                              bus: EventBus, publisher: EventPublisher):
        with pytest.raises(ValidationException):
            children.update(child.id, {"password": "new"})
        publisher.close()

        assert bus.get_message_log() == []

    def test_update_username_conflict(self, children: ChildService, child: Child, educator: Educator):
        with pytest.raises(ConflictException):
            children.update(child.id, {"username": educator.username})

    def test_update_unknown_institution(self, children: ChildService, child: Child):
        with pytest.raises(ValidationException):
            children.update(child.id, {"institution_id": UNKNOWN_ID})

    def test_update_invalid_id(self, children: ChildService):
        with pytest.raises(ValidationException):
            children.update("123", {"age": 12})

    def test_event_timestamp_comes_from_clock(self, children: ChildService, child: Child,
                                              bus: EventBus, publisher: EventPublisher):
        children.update(child.id, {"age": 12})
        publisher.close()

        assert bus.get_message_log()[0][1]["timestamp"].startswith("2026-03-14T09:30:00")

    def test_application_update_published(self, data_store: AccountStore, publisher: EventPublisher,
                                          bus: EventBus):
        applications = ApplicationService(data_store, publisher)
        app = applications.add(Application(username="app01", password="x", application_name="Tracker"))

        applications.update(app.id, {"application_name": "Tracker 2"})
        publisher.close()

        log = bus.get_message_log("applications.update")
        assert log[0][1]["application"]["application_name"] == "Tracker 2"

    def test_admin_update_not_published(self, data_store: AccountStore, publisher: EventPublisher,
                                        bus: EventBus):
        admins = AdminService(data_store, publisher)
        admin = admins.add(Admin(username="root", password="x"))

        assert admins.update(admin.id, {"username": "root2"}).username == "root2"
        publisher.close()

        assert bus.get_message_log() == []


class TestCreate:
    """Tests for UserTypeService.add."""

    @pytest.fixture
    def children(self, data_store: AccountStore, publisher: EventPublisher) -> ChildService:
        return ChildService(data_store, publisher)

    def test_add_child(self, children: ChildService, institution: Institution, bus: EventBus,
                       publisher: EventPublisher):
        created = children.add(Child(username="BR0002", password="x", institution_id=institution.id,
                                     gender="female", age=8))
        publisher.close()

        assert created.id is not None
        assert children.get_by_id(created.id) == created
        assert bus.get_message_log() == []

    def test_add_duplicate_username(self, children: ChildService, child: Child, institution: Institution):
        with pytest.raises(ConflictException):
            children.add(Child(username=child.username, password="x", institution_id=institution.id,
                               gender="female", age=8))

    def test_add_requires_registered_institution(self, children: ChildService):
        with pytest.raises(ValidationException):
            children.add(Child(username="BR0002", password="x", institution_id=UNKNOWN_ID,
                               gender="female", age=8))

    def test_add_wrong_type(self, children: ChildService, institution: Institution):
        with pytest.raises(ValidationException):
            children.add(Educator(username="e", password="x", institution_id=institution.id))

    def test_last_login_cleared(self, children: ChildService, institution: Institution):
        created = children.add(Child(username="BR0002", password="x", institution_id=institution.id,
                                     gender="female", age=8, last_login=FIXED_NOW))

        assert created.last_login is None


class TestFamilies:
    """Tests for FamilyService and child association."""

    @pytest.fixture
    def families(self, data_store: AccountStore, publisher: EventPublisher) -> FamilyService:
        return FamilyService(data_store, publisher)

    def test_add_family_requires_registered_children(self, families: FamilyService, institution: Institution):
        with pytest.raises(ValidationException):
            families.add(Family(username="fam", password="x", institution_id=institution.id,
                                children=[UNKNOWN_ID]))

    def test_get_all_children(self, families: FamilyService, family: Family, child: Child):
        assert families.get_all_children(family.id) == [child]
        assert families.get_all_children(UNKNOWN_ID) is None

    def test_associate_child_publishes_family_update(self, families: FamilyService, family: Family,
                                                     data_store: AccountStore, institution: Institution,
                                                     bus: EventBus, publisher: EventPublisher):
        other = data_store.add_user(Child(username="BR0002", password="x", institution_id=institution.id,
                                          gender="female", age=8))

        updated = families.associate_child(family.id, other.id)
        publisher.close()

        assert other.id in updated.children
        log = bus.get_message_log("families.update")
        assert len(log) == 1
        assert other.id in log[0][1]["family"]["children"]

    def test_associate_unregistered_child(self, families: FamilyService, family: Family):
        with pytest.raises(ValidationException):
            families.associate_child(family.id, UNKNOWN_ID)

    def test_associate_with_missing_family(self, families: FamilyService, child: Child):
        assert families.associate_child(UNKNOWN_ID, child.id) is None

    def test_disassociate_child(self, families: FamilyService, family: Family, child: Child,
                                bus: EventBus, publisher: EventPublisher):
        assert families.disassociate_child(family.id, child.id) is True
        publisher.close()

        assert families.get_by_id(family.id).children == []
        assert len(bus.get_message_log("families.update")) == 1

    def test_disassociate_from_missing_family(self, families: FamilyService, child: Child):
        assert families.disassociate_child(UNKNOWN_ID, child.id) is None


class TestRemoveUser:
    """Tests for user removal and the UserDeleteEvent."""

    def test_remove_publishes_user_delete(self, data_store: AccountStore, publisher: EventPublisher,
                                          educator: Educator, bus: EventBus):
        users = UserService(data_store, publisher, clock=fixed_clock)

        assert users.remove(educator.id) is True
        publisher.close()

        log = bus.get_message_log("users.delete")
        assert len(log) == 1
        assert log[0][1]["event_name"] == "UserDeleteEvent"
        assert log[0][1]["user"] == {
            "id": educator.id,
            "username": "educator01",
            "type": "educator",
            "institution_id": educator.institution_id,
            "last_login": None,
        }

    def test_remove_missing_user_publishes_nothing(self, data_store: AccountStore,
                                                   publisher: EventPublisher, bus: EventBus):
        users = UserService(data_store, publisher)

        assert users.remove(UNKNOWN_ID) is False
        publisher.close()

        assert bus.get_message_log() == []

    def test_remove_child_detaches_references(self, data_store: AccountStore, publisher: EventPublisher,
                                              child: Child, family: Family):
        children = ChildService(data_store, publisher)

        assert children.remove(child.id) is True

        assert data_store.get_user(family.id).children == []

    def test_typed_remove_ignores_other_types(self, data_store: AccountStore, publisher: EventPublisher,
                                              educator: Educator):
        children = ChildService(data_store, publisher)

        assert children.remove(educator.id) is False
        assert data_store.get_user(educator.id) is not None

    def test_remove_persists_event_when_bus_down(self, data_store: AccountStore, child: Child,
                                                 event_store: IntegrationEventStore):
        publisher = EventPublisher(bus=FalseBus(), store=event_store)
        users = UserService(data_store, publisher)

        users.remove(child.id)
        publisher.close()

        stored = event_store.find_all()
        assert [(s.event_name, s.routing_key) for s in stored] == [("UserDeleteEvent", "users.delete")]
