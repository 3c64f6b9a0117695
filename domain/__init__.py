"""
Domain layer of the Account service.

This package contains:
- Domain models (users, institutions, children groups)
- The in-memory account store
- Input validators and domain exceptions
"""

from domain.models import (
    Admin,
    Application,
    Child,
    ChildrenGroup,
    Educator,
    Family,
    HealthProfessional,
    Institution,
    User,
    UserType,
)
from domain.data_store import AccountStore
from domain.exceptions import AccountError, ConflictException, ValidationException

__all__ = [
    "Admin",
    "Application",
    "Child",
    "ChildrenGroup",
    "Educator",
    "Family",
    "HealthProfessional",
    "Institution",
    "User",
    "UserType",
    "AccountStore",
    "AccountError",
    "ConflictException",
    "ValidationException",
]
