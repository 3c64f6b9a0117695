"""
Domain models for the Account service.

These models describe the users of the health-monitoring platform, the
institutions they belong to and the children groups educators and health
professionals manage.

Design decisions:
- Using Pydantic for validation and serialization
- Passwords are accepted as input but excluded from every serialized form,
  so API responses and integration events never carry them
- Relationships are stored as ids (like the document store does), not as
  embedded objects
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# =============================================================================
# Enums
# =============================================================================

class UserType(str, Enum):
    """Names of the supported user types."""
    ADMIN = "admin"
    CHILD = "child"
    EDUCATOR = "educator"
    HEALTH_PROFESSIONAL = "healthprofessional"
    FAMILY = "family"
    APPLICATION = "application"


class Gender(str, Enum):
    """Genders accepted for a child."""
    MALE = "male"
    FEMALE = "female"


# =============================================================================
# Institution
# =============================================================================

class Institution(BaseModel):
    """
    An institution (school, clinic, research centre) users are registered under.
    """
    id: Optional[str] = Field(default=None, description="Object id assigned on creation")
    type: str = Field(..., description="Kind of institution, e.g. 'Institute of Scientific Research'")
    name: str = Field(..., description="Institution display name")
    address: Optional[str] = Field(default=None)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


# =============================================================================
# Users
# =============================================================================

class User(BaseModel):
    """
    Base user entity.

    Every subtype shares the credentials and the institution link. The
    password is write-only: it is validated on input and kept in memory but
    never dumped.
    """
    id: Optional[str] = Field(default=None, description="Object id assigned on creation")
    username: str = Field(..., min_length=1, description="Username for authentication")
    password: Optional[str] = Field(default=None, exclude=True, description="Write-only secret")
    type: UserType = Field(..., description="User type discriminator")
    institution_id: Optional[str] = Field(default=None, description="Reference to institution")
    last_login: Optional[datetime] = Field(default=None)

    # validate_default so subtype defaults are stored as plain strings too
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class Child(User):
    """A monitored child."""
    type: UserType = UserType.CHILD
    gender: Gender = Field(..., description="Child gender")
    age: int = Field(..., gt=0, description="Child age in years")


class Educator(User):
    """An educator; owns children groups."""
    type: UserType = UserType.EDUCATOR
    children_groups: list[str] = Field(default_factory=list, description="Owned children group ids")


class HealthProfessional(User):
    """A health professional; owns children groups."""
    type: UserType = UserType.HEALTH_PROFESSIONAL
    children_groups: list[str] = Field(default_factory=list, description="Owned children group ids")


class Family(User):
    """A family account associated with one or more children."""
    type: UserType = UserType.FAMILY
    children: list[str] = Field(default_factory=list, description="Associated child ids")

    @field_validator("children")
    @classmethod
    def remove_repeated_children(cls, value: list[str]) -> list[str]:
        """Keep the first occurrence of each child id."""
        return list(dict.fromkeys(value))


class Application(User):
    """A third-party application account."""
    type: UserType = UserType.APPLICATION
    application_name: str = Field(..., min_length=1, description="Name of the application")


class Admin(User):
    """A platform administrator."""
    type: UserType = UserType.ADMIN


# Concrete model for each user type, used when rebuilding stored users
USER_MODELS: dict[str, type[User]] = {
    UserType.ADMIN.value: Admin,
    UserType.CHILD.value: Child,
    UserType.EDUCATOR.value: Educator,
    UserType.HEALTH_PROFESSIONAL.value: HealthProfessional,
    UserType.FAMILY.value: Family,
    UserType.APPLICATION.value: Application,
}


# =============================================================================
# Children Group
# =============================================================================

class ChildrenGroup(BaseModel):
    """
    A roster of children managed by an educator or health professional.
    """
    id: Optional[str] = Field(default=None, description="Object id assigned on creation")
    name: str = Field(..., min_length=1, description="Group display name")
    children: list[str] = Field(default_factory=list, description="Child ids in the group")
    school_class: Optional[str] = Field(default=None)
    user_id: Optional[str] = Field(default=None, description="Owner (educator or health professional)")

    @field_validator("children")
    @classmethod
    def remove_repeated_children(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))
