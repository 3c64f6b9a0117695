"""
Educator and health professional services.

Both user types own children groups, so the group operations live in one base
class. Their updates are published on "educators.update" and
"healthprofessionals.update" respectively.
"""

import logging
from typing import Any, Optional

from domain.data_store import AccountStore
from domain.exceptions import ValidationException
from domain.models import ChildrenGroup, UserType
from domain.validators import validate_object_id
from messaging.publisher import EventPublisher
from services.base import Clock, UserTypeService
from services.children_groups import ChildrenGroupService


class GroupOwnerService(UserTypeService):
    """A user service whose users manage children groups."""

    def __init__(
        self,
        data_store: AccountStore,
        publisher: EventPublisher,
        children_groups: Optional[ChildrenGroupService] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(data_store, publisher, clock)
        self.children_groups = children_groups or ChildrenGroupService(data_store)

    def _updatable_fields(self) -> set[str]:
        # Group membership changes through the group operations only
        return super()._updatable_fields() - {"children_groups"}

    def _get_owner(self, owner_id: str):
        validate_object_id(owner_id)
        return self.data_store.get_user(owner_id, self.user_type.value)

    def _not_found(self) -> ValidationException:
        label = self.user_type.value
        return ValidationException(
            f"There is no registration with the {label} ID provided!",
            "Please verify that the ID is correct and that the user exists.",
        )

    # =========================================================================
    # Children Group Operations
    # =========================================================================

    def save_children_group(self, owner_id: str, group: ChildrenGroup) -> ChildrenGroup:
        """Create a group owned by the user and link it to the user."""
        owner = self._get_owner(owner_id)
        if owner is None:
            raise self._not_found()

        created = self.children_groups.add(group.model_copy(update={"user_id": owner_id}))
        self.data_store.update_user(
            owner_id,
            self.user_type.value,
            {"children_groups": [*owner.children_groups, created.id]},
        )
        return created

    def get_all_children_groups(self, owner_id: str) -> list[ChildrenGroup]:
        owner = self._get_owner(owner_id)
        if owner is None or not owner.children_groups:
            return []
        return self.children_groups.get_all(user_id=owner_id)

    def get_children_group_by_id(self, owner_id: str, group_id: str) -> Optional[ChildrenGroup]:
        """Get a group, only if it belongs to the user."""
        validate_object_id(group_id)
        owner = self._get_owner(owner_id)
        if owner is None or group_id not in owner.children_groups:
            return None
        return self.children_groups.get_by_id(group_id)

    def update_children_group(self, owner_id: str, group_id: str, changes: dict[str, Any]) -> Optional[ChildrenGroup]:
        validate_object_id(group_id)
        owner = self._get_owner(owner_id)
        if owner is None:
            raise self._not_found()
        if group_id not in owner.children_groups:
            return None
        return self.children_groups.update(group_id, changes)

    def delete_children_group(self, owner_id: str, group_id: str) -> bool:
        """
        Delete a group and unlink it from the user.

        Deleting from an unknown user is a no-op and reports success.
        """
        validate_object_id(group_id)
        owner = self._get_owner(owner_id)
        if owner is None:
            return True
        if group_id not in owner.children_groups:
            return False

        removed = self.children_groups.remove(group_id)
        if removed:
            self.data_store.update_user(
                owner_id,
                self.user_type.value,
                {"children_groups": [g for g in owner.children_groups if g != group_id]},
            )
        return removed


class EducatorService(GroupOwnerService):
    """Educators; updates are published on "educators.update"."""
    user_type = UserType.EDUCATOR
    logger = logging.getLogger("educator_service")


class HealthProfessionalService(GroupOwnerService):
    """Health professionals; updates are published on "healthprofessionals.update"."""
    user_type = UserType.HEALTH_PROFESSIONAL
    logger = logging.getLogger("health_professional_service")
