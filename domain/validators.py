"""
Input validators shared by the account services.

Pydantic already checks field types when models are built; the checks here are
the business rules that depend on the operation (create vs update) or on the
shape of identifiers.
"""

import re
from typing import Any

from domain.exceptions import ValidationException
from domain.models import User, UserType

OBJECT_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")

# User types that must be registered under an institution
INSTITUTION_REQUIRED = {
    UserType.CHILD.value,
    UserType.EDUCATOR.value,
    UserType.HEALTH_PROFESSIONAL.value,
    UserType.FAMILY.value,
}

# Fields an update request can never change
READ_ONLY_FIELDS = ("id", "type")


def validate_object_id(value: str) -> None:
    """Raise ValidationException unless value looks like a document-store object id."""
    if not isinstance(value, str) or not OBJECT_ID_PATTERN.match(value):
        raise ValidationException(
            "Some ID provided does not have a valid format!",
            "A 24-byte hex ID similar to this: 507f191e810c19729de860ea is expected.",
        )


def validate_create_user(user: User) -> None:
    """Check the rules every new user must satisfy."""
    missing = []
    if not user.username:
        missing.append("username")
    if not user.password:
        missing.append("password")
    if user.type in INSTITUTION_REQUIRED and not user.institution_id:
        missing.append("institution")
    if missing:
        raise ValidationException(
            "Required fields were not provided...",
            f"User validation: {', '.join(missing)} is required!",
        )
    if user.institution_id:
        validate_object_id(user.institution_id)


def validate_update(changes: dict[str, Any], allowed: set[str]) -> None:
    """
    Check a partial update.

    The password has its own flow and can never be changed through an update,
    and read-only or unknown fields are rejected rather than silently ignored.
    """
    if "password" in changes:
        raise ValidationException(
            "This parameter could not be updated.",
            "A specific route to update user password already exists.",
        )
    read_only = [name for name in READ_ONLY_FIELDS if name in changes]
    if read_only:
        raise ValidationException(
            "This parameter could not be updated.",
            f"{', '.join(read_only)} cannot be changed.",
        )
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValidationException(
            "Unknown parameters were provided.",
            f"Unsupported fields: {', '.join(unknown)}.",
        )
    if changes.get("institution_id") is not None:
        validate_object_id(changes["institution_id"])
