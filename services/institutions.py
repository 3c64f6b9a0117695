"""
Institution service.

Removing an institution publishes an InstitutionDeleteEvent on
"institutions.delete". An institution that still has users cannot be removed.
"""

import logging
from typing import Any, Optional

from domain.exceptions import ConflictException, ValidationException
from domain.models import Institution
from domain.validators import validate_object_id, validate_update
from messaging.events import institution_deleted
from services.base import PublishingService


class InstitutionService(PublishingService):
    """CRUD over institutions."""

    logger = logging.getLogger("institution_service")

    def add(self, institution: Institution) -> Institution:
        if self.data_store.institution_name_exists(institution.name):
            raise ConflictException(f"An institution named '{institution.name}' is already registered!")
        created = self.data_store.add_institution(institution)
        self.logger.info(f"Institution with ID: {created.id} was created")
        return created

    def get_all(self) -> list[Institution]:
        return self.data_store.get_institutions()

    def get_by_id(self, institution_id: str) -> Optional[Institution]:
        validate_object_id(institution_id)
        return self.data_store.get_institution(institution_id)

    def update(self, institution_id: str, changes: dict[str, Any]) -> Optional[Institution]:
        validate_object_id(institution_id)
        validate_update(changes, set(Institution.model_fields) - {"id"})
        if "name" in changes and self.data_store.institution_name_exists(changes["name"], exclude_id=institution_id):
            raise ConflictException(f"An institution named '{changes['name']}' is already registered!")
        return self.data_store.update_institution(institution_id, changes)

    def remove(self, institution_id: str) -> bool:
        """
        Remove an institution and publish an InstitutionDeleteEvent.

        Returns:
            True if removed, False if no institution has the id.

        Raises:
            ValidationException: users are still registered under it
        """
        validate_object_id(institution_id)
        if self.data_store.institution_has_users(institution_id):
            raise ValidationException(
                "The institution is associated with one or more users.",
                "Before deleting the institution, remove or reassign its users.",
            )
        removed = self.data_store.delete_institution(institution_id)
        if removed is None:
            return False

        event, routing_key = institution_deleted(removed, timestamp=self.clock())
        self._publish(event, routing_key)
        self.logger.info(f"Institution with ID: {institution_id} was deleted")
        return True
