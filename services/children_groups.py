"""
Children group service.

Children groups are rosters that educators and health professionals keep of
the children they follow. Group changes are internal to the Account service
and are not published on the bus.
"""

import logging
from typing import Any, Optional

from domain.data_store import AccountStore
from domain.exceptions import ValidationException
from domain.models import ChildrenGroup
from domain.validators import validate_object_id, validate_update

logger = logging.getLogger("children_group_service")


class ChildrenGroupService:
    """CRUD over children groups; every child in a group must be registered."""

    def __init__(self, data_store: AccountStore):
        self.data_store = data_store

    def _check_children(self, child_ids: list[str]) -> None:
        for child_id in child_ids:
            validate_object_id(child_id)
        missing = self.data_store.missing_children(child_ids)
        if missing:
            raise ValidationException(
                "It is necessary for children to be registered before proceeding.",
                f"The following IDs were verified without registration: {', '.join(missing)}",
            )

    def add(self, group: ChildrenGroup) -> ChildrenGroup:
        self._check_children(group.children)
        created = self.data_store.add_children_group(group)
        logger.info(f"Children group {created.id} created for user {created.user_id}")
        return created

    def get_all(self, user_id: Optional[str] = None) -> list[ChildrenGroup]:
        return self.data_store.get_children_groups(user_id)

    def get_by_id(self, group_id: str) -> Optional[ChildrenGroup]:
        validate_object_id(group_id)
        return self.data_store.get_children_group(group_id)

    def update(self, group_id: str, changes: dict[str, Any]) -> Optional[ChildrenGroup]:
        validate_object_id(group_id)
        validate_update(changes, {"name", "children", "school_class"})
        if "children" in changes:
            self._check_children(changes["children"])
        return self.data_store.update_children_group(group_id, changes)

    def remove(self, group_id: str) -> bool:
        validate_object_id(group_id)
        return self.data_store.delete_children_group(group_id)
