"""
Account services.

Each service validates its input, checks the records it depends on, applies
the mutation to the account store and, when the mutation changed something,
hands the matching integration event to the EventPublisher:
- Children, educators, health professionals, families, applications: update events
- Users of any type: delete events
- Institutions: delete events
- Admins and children groups: not published
"""

from services.base import PublishingService, UserTypeService
from services.children_groups import ChildrenGroupService
from services.group_owners import EducatorService, HealthProfessionalService
from services.institutions import InstitutionService
from services.users import (
    AdminService,
    ApplicationService,
    ChildService,
    FamilyService,
    UserService,
)

__all__ = [
    "PublishingService",
    "UserTypeService",
    "ChildrenGroupService",
    "EducatorService",
    "HealthProfessionalService",
    "InstitutionService",
    "AdminService",
    "ApplicationService",
    "ChildService",
    "FamilyService",
    "UserService",
]
