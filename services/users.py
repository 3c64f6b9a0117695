"""
Services for children, families, applications, admins and users in general.

Updates of children, families and applications are published on the bus;
admin accounts are internal. Removing any user publishes a UserDeleteEvent on
"users.delete" so other services can drop their copies.
"""

import logging
from typing import Any, Optional

from domain.exceptions import ValidationException
from domain.models import Family, User, UserType
from domain.validators import validate_object_id
from services.base import PublishingService, UserTypeService


class ChildService(UserTypeService):
    """Children; updates are published on "children.update"."""
    user_type = UserType.CHILD
    logger = logging.getLogger("child_service")


class ApplicationService(UserTypeService):
    """Application accounts; updates are published on "applications.update"."""
    user_type = UserType.APPLICATION
    logger = logging.getLogger("application_service")


class AdminService(UserTypeService):
    """Administrators. Not published."""
    user_type = UserType.ADMIN
    publish_updates = False
    logger = logging.getLogger("admin_service")


class FamilyService(UserTypeService):
    """Families and the children associated with them; updates go to "families.update"."""
    user_type = UserType.FAMILY
    logger = logging.getLogger("family_service")

    def _check_references(self, fields: dict[str, Any]) -> None:
        children = fields.get("children") or []
        for child_id in children:
            validate_object_id(child_id)
        missing = self.data_store.missing_children(children)
        if missing:
            raise ValidationException(
                "It is necessary for children to be registered before proceeding.",
                f"The following IDs were verified without registration: {', '.join(missing)}",
            )

    def get_all_children(self, family_id: str) -> Optional[list[User]]:
        """Get the children of a family, or None if the family does not exist."""
        family = self.get_by_id(family_id)
        if family is None:
            return None
        children = (self.data_store.get_user(cid, UserType.CHILD.value) for cid in family.children)
        return [c for c in children if c is not None]

    def associate_child(self, family_id: str, child_id: str) -> Optional[Family]:
        """
        Associate a registered child with a family.

        Returns the updated family (published like any family update), or None
        if the family does not exist.
        """
        validate_object_id(child_id)
        family = self.get_by_id(family_id)
        if family is None:
            return None
        if self.data_store.get_user(child_id, UserType.CHILD.value) is None:
            raise ValidationException(
                "The association could not be performed because the child does not have a record."
            )
        return self.update(family_id, {"children": [*family.children, child_id]})

    def disassociate_child(self, family_id: str, child_id: str) -> Optional[bool]:
        """
        Remove a child from a family.

        Returns None if the family does not exist, True otherwise.
        """
        validate_object_id(child_id)
        family = self.get_by_id(family_id)
        if family is None:
            return None
        if child_id in family.children:
            self.update(family_id, {"children": [c for c in family.children if c != child_id]})
        return True


class UserService(PublishingService):
    """Operations that apply to a user of any type."""

    logger = logging.getLogger("user_service")

    def get_by_id(self, user_id: str) -> Optional[User]:
        validate_object_id(user_id)
        return self.data_store.get_user(user_id)

    def remove(self, user_id: str) -> bool:
        """Remove a user of any type and publish a UserDeleteEvent."""
        return self._remove_user(user_id)
