"""
Shared behaviour of the user services.

Every user type is created, read and updated the same way; the subclasses only
say which type they manage and whether updates are published. The publication
step is the same for every service: build the event from the entity the store
returned and hand it to the EventPublisher without waiting for the result.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from domain.data_store import AccountStore
from domain.exceptions import ConflictException, ValidationException
from domain.models import User, UserType, USER_MODELS
from domain.validators import validate_create_user, validate_object_id, validate_update
from messaging.events import IntegrationEvent, user_deleted, user_updated, utc_now
from messaging.publisher import EventPublisher

Clock = Callable[[], datetime]


class PublishingService:
    """Base for services whose mutations publish integration events."""

    logger = logging.getLogger("account_service")

    def __init__(
        self,
        data_store: AccountStore,
        publisher: EventPublisher,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            data_store: Repository holding the account data
            publisher: Publishes (or persists) the events of confirmed mutations
            clock: Time source for event timestamps
        """
        self.data_store = data_store
        self.publisher = publisher
        self.clock = clock or utc_now

    def _publish(self, event: IntegrationEvent, routing_key: str) -> None:
        """Hand an event to the publisher; never waits for the outcome."""
        self.publisher.publish_or_persist(event, routing_key)
        self.logger.debug(f"{event.event_name} dispatched to '{routing_key}'")

    def _check_institution(self, institution_id: Optional[str]) -> None:
        if institution_id and not self.data_store.institution_exists(institution_id):
            raise ValidationException(
                "The institution provided does not have a valid registration!",
                "Before performing this operation, the institution must be registered.",
            )

    def _remove_user(self, user_id: str, user_type: Optional[str] = None) -> bool:
        """
        Remove a user and publish a UserDeleteEvent.

        The user's children groups are removed too, and a removed child is
        detached from its families and groups.

        Returns:
            True if a user was removed, False if none matched (nothing is
            published then).
        """
        validate_object_id(user_id)
        removed = self.data_store.delete_user(user_id, user_type)
        if removed is None:
            return False

        groups = self.data_store.delete_children_groups_of_user(user_id)
        if removed.type == UserType.CHILD.value:
            self.data_store.remove_child_references(user_id)

        event, routing_key = user_deleted(removed, timestamp=self.clock())
        self._publish(event, routing_key)
        self.logger.info(f"User of type {removed.type} with ID: {user_id} was deleted with {groups} children group(s)")
        return True


class UserTypeService(PublishingService):
    """
    Create, read and update users of one type.

    Subclasses set user_type, and publish_updates when an update must reach
    the message bus.
    """

    user_type: UserType
    publish_updates: bool = True

    @property
    def model(self) -> type[User]:
        return USER_MODELS[self.user_type.value]

    def _updatable_fields(self) -> set[str]:
        return set(self.model.model_fields) - {"id", "type", "password", "last_login"}

    def add(self, user: User) -> User:
        """
        Register a new user.

        Raises:
            ValidationException: required fields missing or unknown institution
            ConflictException: the username is taken
        """
        if user.type != self.user_type.value:
            raise ValidationException(f"Expected a user of type {self.user_type.value}, got {user.type}.")
        validate_create_user(user)
        # last_login is set by authentication only
        if user.last_login is not None:
            user = user.model_copy(update={"last_login": None})

        if self.data_store.username_exists(user.username):
            raise ConflictException(f"A registration with the username '{user.username}' already exists!")
        self._check_institution(user.institution_id)
        self._check_references(user.model_dump())

        created = self.data_store.add_user(user)
        self.logger.info(f"User of type {self.user_type.value} with ID: {created.id} was created")
        return created

    def get_all(self) -> list[User]:
        return self.data_store.get_users(self.user_type.value)

    def get_by_id(self, user_id: str) -> Optional[User]:
        validate_object_id(user_id)
        return self.data_store.get_user(user_id, self.user_type.value)

    def update(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        """
        Apply a partial update and publish it.

        Returns:
            The updated user, or None when no user of this type has the id.
            Nothing is published in that case.

        Raises:
            ValidationException: invalid id or fields, unknown institution
            ConflictException: the new username is taken
        """
        validate_object_id(user_id)
        validate_update(changes, self._updatable_fields())

        if "username" in changes and self.data_store.username_exists(changes["username"], exclude_id=user_id):
            raise ConflictException(f"A registration with the username '{changes['username']}' already exists!")
        self._check_institution(changes.get("institution_id"))
        self._check_references(changes)

        updated = self.data_store.update_user(user_id, self.user_type.value, changes)
        if updated is None:
            return None

        if self.publish_updates:
            event, routing_key = user_updated(updated, timestamp=self.clock())
            self._publish(event, routing_key)
        self.logger.info(f"User of type {self.user_type.value} with ID: {user_id} has been updated")
        return updated

    def _check_references(self, fields: dict[str, Any]) -> None:
        """Hook for subclasses that reference other records."""

    def remove(self, user_id: str) -> bool:
        """Remove a user of this type. See _remove_user."""
        return self._remove_user(user_id, self.user_type.value)
