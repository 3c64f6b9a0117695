"""
Integration event definitions.

This module defines the events the Account service publishes on the message
bus after a confirmed mutation. Every event is an immutable record with a name,
a coarse category, a creation timestamp and the affected entity.

Design decisions:
- One class per event name, so a stored event can be rebuilt with its exact
  payload type (a tagged union keyed by event_name)
- The entity sits under a resource key ("child", "user", "institution", ...),
  which is part of the wire contract with downstream consumers
- Secrets never reach the wire: User.password is excluded from serialization
- Routing keys follow "<resource-plural>.<action>" and must not change, since
  consumers bind their queues to them
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from domain.models import (
    Application,
    Child,
    Educator,
    Family,
    HealthProfessional,
    Institution,
    User,
)


# =============================================================================
# Categories and Routing Keys
# =============================================================================

class EventType(str, Enum):
    """Coarse event category."""
    USERS = "users"
    INSTITUTIONS = "institutions"


class RoutingKeys:
    """
    Routing keys the service publishes to.

    Using constants prevents typos and makes it easy to see every binding
    a consumer can subscribe to.
    """
    CHILDREN_UPDATE = "children.update"
    EDUCATORS_UPDATE = "educators.update"
    HEALTH_PROFESSIONALS_UPDATE = "healthprofessionals.update"
    FAMILIES_UPDATE = "families.update"
    APPLICATIONS_UPDATE = "applications.update"
    USERS_DELETE = "users.delete"
    INSTITUTIONS_DELETE = "institutions.delete"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Base Event
# =============================================================================

class IntegrationEvent(BaseModel):
    """
    Base class for all integration events.

    Attributes:
        event_name: Identifies the concrete event (and its payload type)
        type: Event category, users or institutions
        timestamp: When the event was created; assigned once, never updated
    """
    event_name: str
    type: EventType
    timestamp: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True, use_enum_values=True, validate_default=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible map published on the bus."""
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        return f"{self.event_name}(type={self.type}, timestamp={self.timestamp.isoformat()})"


# =============================================================================
# User Update Events
# =============================================================================

class ChildUpdateEvent(IntegrationEvent):
    event_name: Literal["ChildUpdateEvent"] = "ChildUpdateEvent"
    type: EventType = EventType.USERS
    child: Child


class EducatorUpdateEvent(IntegrationEvent):
    event_name: Literal["EducatorUpdateEvent"] = "EducatorUpdateEvent"
    type: EventType = EventType.USERS
    educator: Educator


class HealthProfessionalUpdateEvent(IntegrationEvent):
    event_name: Literal["HealthProfessionalUpdateEvent"] = "HealthProfessionalUpdateEvent"
    type: EventType = EventType.USERS
    healthprofessional: HealthProfessional


class FamilyUpdateEvent(IntegrationEvent):
    event_name: Literal["FamilyUpdateEvent"] = "FamilyUpdateEvent"
    type: EventType = EventType.USERS
    family: Family


class ApplicationUpdateEvent(IntegrationEvent):
    event_name: Literal["ApplicationUpdateEvent"] = "ApplicationUpdateEvent"
    type: EventType = EventType.USERS
    application: Application


# =============================================================================
# Delete Events
# =============================================================================

class UserDeleteEvent(IntegrationEvent):
    """
    Published when any user is removed.

    The payload only carries the attributes every user shares, so consumers
    do not need to know each subtype.
    """
    event_name: Literal["UserDeleteEvent"] = "UserDeleteEvent"
    type: EventType = EventType.USERS
    user: User


class InstitutionDeleteEvent(IntegrationEvent):
    event_name: Literal["InstitutionDeleteEvent"] = "InstitutionDeleteEvent"
    type: EventType = EventType.INSTITUTIONS
    institution: Institution


AnyIntegrationEvent = Annotated[
    Union[
        ChildUpdateEvent,
        EducatorUpdateEvent,
        HealthProfessionalUpdateEvent,
        FamilyUpdateEvent,
        ApplicationUpdateEvent,
        UserDeleteEvent,
        InstitutionDeleteEvent,
    ],
    Field(discriminator="event_name"),
]

_event_adapter = TypeAdapter(AnyIntegrationEvent)

KNOWN_EVENT_NAMES = frozenset(
    cls.model_fields["event_name"].default
    for cls in (
        ChildUpdateEvent,
        EducatorUpdateEvent,
        HealthProfessionalUpdateEvent,
        FamilyUpdateEvent,
        ApplicationUpdateEvent,
        UserDeleteEvent,
        InstitutionDeleteEvent,
    )
)


def parse_event(data: dict[str, Any]) -> IntegrationEvent:
    """
    Rebuild a concrete event from its wire (or persisted) map.

    Operational keys such as "__operation" are ignored. Raises
    pydantic.ValidationError when event_name is unknown or the payload does
    not match its type.
    """
    fields = {k: v for k, v in data.items() if not k.startswith("__")}
    return _event_adapter.validate_python(fields)


# =============================================================================
# Event Builders
# =============================================================================

_UPDATE_EVENTS: dict[type[User], tuple[type[IntegrationEvent], str, str]] = {
    Child: (ChildUpdateEvent, "child", RoutingKeys.CHILDREN_UPDATE),
    Educator: (EducatorUpdateEvent, "educator", RoutingKeys.EDUCATORS_UPDATE),
    HealthProfessional: (
        HealthProfessionalUpdateEvent,
        "healthprofessional",
        RoutingKeys.HEALTH_PROFESSIONALS_UPDATE,
    ),
    Family: (FamilyUpdateEvent, "family", RoutingKeys.FAMILIES_UPDATE),
    Application: (ApplicationUpdateEvent, "application", RoutingKeys.APPLICATIONS_UPDATE),
}


def user_updated(user: User, timestamp: datetime) -> tuple[IntegrationEvent, str]:
    """
    Create the update event for a user and the routing key it goes to.

    Raises KeyError for user types that do not publish update events.
    """
    event_cls, key, routing_key = _UPDATE_EVENTS[type(user)]
    return event_cls(timestamp=timestamp, **{key: user}), routing_key


def user_deleted(user: User, timestamp: datetime) -> tuple[IntegrationEvent, str]:
    """Create a UserDeleteEvent carrying only the shared user attributes."""
    base = User.model_validate(user.model_dump(include=set(User.model_fields)))
    return UserDeleteEvent(timestamp=timestamp, user=base), RoutingKeys.USERS_DELETE


def institution_deleted(institution: Institution, timestamp: datetime) -> tuple[IntegrationEvent, str]:
    """Create an InstitutionDeleteEvent."""
    return (
        InstitutionDeleteEvent(timestamp=timestamp, institution=institution),
        RoutingKeys.INSTITUTIONS_DELETE,
    )
