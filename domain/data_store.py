"""
In-memory account repository.

This module plays the role of the document store behind the Account service.
It keeps users, institutions and children groups in memory and can be seeded
from JSON fixture files.

Design decisions:
- One store for all collections (the real service keeps them in one database)
- Models are replaced, never mutated in place, so a returned object is a
  stable snapshot
- Update and delete return the affected record, or None when nothing matched;
  the services rely on that to decide whether an event must be published
- A re-entrant lock guards every read and write, because request handlers run
  on a thread pool; usernames are checked and claimed under the same lock
"""

import json
import logging
import secrets
import threading
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from domain.exceptions import ConflictException, ValidationException
from domain.models import ChildrenGroup, Institution, User, USER_MODELS, UserType

logger = logging.getLogger("account_store")


def new_object_id() -> str:
    """Generate a 24-character hex id, the same shape the document store uses."""
    return secrets.token_hex(12)


def _username_conflict(username: str) -> ConflictException:
    return ConflictException(f"A registration with the username '{username}' already exists!")


def _institution_conflict(name: str) -> ConflictException:
    return ConflictException(f"An institution named '{name}' is already registered!")


def _rebuild(model_cls, data: dict[str, Any]):
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise ValidationException("Invalid parameters were provided.", str(e)) from e


class AccountStore:
    """
    Repository for users, institutions and children groups.

    Example:
        store = AccountStore()
        institution = store.add_institution(Institution(type="School", name="Unit A"))
        child = store.add_user(Child(username="BR0001", password="secret",
                                     institution_id=institution.id,
                                     gender="male", age=11))
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            data_dir: Optional directory with users.json, institutions.json and
                      children_groups.json fixtures. Nothing is loaded when None.
        """
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self._lock = threading.RLock()

        # In-memory collections - loaded lazily
        self._users: Optional[dict[str, User]] = None
        self._institutions: Optional[dict[str, Institution]] = None
        self._children_groups: Optional[dict[str, ChildrenGroup]] = None

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file."""
        if self.data_dir is None:
            return []
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with open(filepath, "r") as f:
            return json.load(f)

    def _ensure_loaded(self):
        """Lazy load every collection from the fixtures."""
        if self._users is not None:
            return
        with self._lock:
            if self._users is not None:
                return
            self._institutions = {
                i["id"]: Institution(**i) for i in self._load_json("institutions.json")
            }
            self._children_groups = {
                g["id"]: ChildrenGroup(**g) for g in self._load_json("children_groups.json")
            }
            users = {}
            for u in self._load_json("users.json"):
                users[u["id"]] = USER_MODELS[u["type"]](**u)
            self._users = users
            logger.debug(
                f"Loaded {len(users)} users, {len(self._institutions)} institutions, "
                f"{len(self._children_groups)} children groups"
            )

    # =========================================================================
    # User Operations
    # =========================================================================

    def add_user(self, user: User) -> User:
        """
        Store a new user and return it with its assigned id.

        Raises:
            ConflictException: another user already holds the username
        """
        self._ensure_loaded()
        with self._lock:
            if self.username_exists(user.username):
                raise _username_conflict(user.username)
            created = user.model_copy(update={"id": new_object_id()})
            self._users[created.id] = created
            return created

    def get_user(self, user_id: str, user_type: Optional[str] = None) -> Optional[User]:
        """Get a user by id, optionally restricted to one user type."""
        self._ensure_loaded()
        user = self._users.get(user_id)
        if user is None or (user_type is not None and user.type != user_type):
            return None
        return user

    def get_users(self, user_type: Optional[str] = None) -> list[User]:
        """Get all users, optionally of a single type."""
        self._ensure_loaded()
        with self._lock:
            return [u for u in self._users.values() if user_type is None or u.type == user_type]

    def username_exists(self, username: str, exclude_id: Optional[str] = None) -> bool:
        """Check whether another user already holds a username."""
        self._ensure_loaded()
        with self._lock:
            return any(
                u.username == username and u.id != exclude_id
                for u in self._users.values()
            )

    def update_user(self, user_id: str, user_type: str, changes: dict[str, Any]) -> Optional[User]:
        """
        Apply a partial update to a user of the given type.

        Returns the updated user, or None when no user of that type has the id.
        """
        self._ensure_loaded()
        with self._lock:
            current = self.get_user(user_id, user_type)
            if current is None:
                return None
            if "username" in changes and self.username_exists(changes["username"], exclude_id=user_id):
                raise _username_conflict(changes["username"])
            data = {**current.model_dump(), "password": current.password, **changes}
            updated = _rebuild(type(current), data)
            self._users[user_id] = updated
            return updated

    def delete_user(self, user_id: str, user_type: Optional[str] = None) -> Optional[User]:
        """Remove a user. Returns the removed user, or None if not found."""
        self._ensure_loaded()
        with self._lock:
            if self.get_user(user_id, user_type) is None:
                return None
            return self._users.pop(user_id)

    def missing_children(self, child_ids: list[str]) -> list[str]:
        """Return the ids in child_ids that are not registered children."""
        self._ensure_loaded()
        with self._lock:
            return [cid for cid in child_ids if self.get_user(cid, UserType.CHILD.value) is None]

    def institution_has_users(self, institution_id: str) -> bool:
        """Check whether any user is registered under an institution."""
        self._ensure_loaded()
        with self._lock:
            return any(u.institution_id == institution_id for u in self._users.values())

    def remove_child_references(self, child_id: str) -> None:
        """Detach a child from every family and children group that lists it."""
        self._ensure_loaded()
        with self._lock:
            for user in list(self._users.values()):
                if isinstance(getattr(user, "children", None), list) and child_id in user.children:
                    self._users[user.id] = user.model_copy(
                        update={"children": [c for c in user.children if c != child_id]}
                    )
            for group in list(self._children_groups.values()):
                if child_id in group.children:
                    self._children_groups[group.id] = group.model_copy(
                        update={"children": [c for c in group.children if c != child_id]}
                    )

    # =========================================================================
    # Institution Operations
    # =========================================================================

    def add_institution(self, institution: Institution) -> Institution:
        self._ensure_loaded()
        with self._lock:
            if self.institution_name_exists(institution.name):
                raise _institution_conflict(institution.name)
            created = institution.model_copy(update={"id": new_object_id()})
            self._institutions[created.id] = created
            return created

    def get_institution(self, institution_id: str) -> Optional[Institution]:
        self._ensure_loaded()
        return self._institutions.get(institution_id)

    def get_institutions(self) -> list[Institution]:
        self._ensure_loaded()
        with self._lock:
            return list(self._institutions.values())

    def institution_exists(self, institution_id: str) -> bool:
        return self.get_institution(institution_id) is not None

    def institution_name_exists(self, name: str, exclude_id: Optional[str] = None) -> bool:
        self._ensure_loaded()
        with self._lock:
            return any(i.name == name and i.id != exclude_id for i in self._institutions.values())

    def update_institution(self, institution_id: str, changes: dict[str, Any]) -> Optional[Institution]:
        self._ensure_loaded()
        with self._lock:
            current = self._institutions.get(institution_id)
            if current is None:
                return None
            if "name" in changes and self.institution_name_exists(changes["name"], exclude_id=institution_id):
                raise _institution_conflict(changes["name"])
            updated = _rebuild(Institution, {**current.model_dump(), **changes})
            self._institutions[institution_id] = updated
            return updated

    def delete_institution(self, institution_id: str) -> Optional[Institution]:
        self._ensure_loaded()
        with self._lock:
            return self._institutions.pop(institution_id, None)

    # =========================================================================
    # Children Group Operations
    # =========================================================================

    def add_children_group(self, group: ChildrenGroup) -> ChildrenGroup:
        self._ensure_loaded()
        with self._lock:
            created = group.model_copy(update={"id": new_object_id()})
            self._children_groups[created.id] = created
            return created

    def get_children_group(self, group_id: str) -> Optional[ChildrenGroup]:
        self._ensure_loaded()
        return self._children_groups.get(group_id)

    def get_children_groups(self, user_id: Optional[str] = None) -> list[ChildrenGroup]:
        """Get all children groups, optionally only those owned by one user."""
        self._ensure_loaded()
        with self._lock:
            return [
                g for g in self._children_groups.values()
                if user_id is None or g.user_id == user_id
            ]

    def update_children_group(self, group_id: str, changes: dict[str, Any]) -> Optional[ChildrenGroup]:
        self._ensure_loaded()
        with self._lock:
            current = self._children_groups.get(group_id)
            if current is None:
                return None
            updated = _rebuild(ChildrenGroup, {**current.model_dump(), **changes})
            self._children_groups[group_id] = updated
            return updated

    def delete_children_group(self, group_id: str) -> bool:
        self._ensure_loaded()
        with self._lock:
            return self._children_groups.pop(group_id, None) is not None

    def delete_children_groups_of_user(self, user_id: str) -> int:
        """Remove every children group owned by a user. Returns how many were removed."""
        self._ensure_loaded()
        with self._lock:
            owned = [gid for gid, g in self._children_groups.items() if g.user_id == user_id]
            for gid in owned:
                del self._children_groups[gid]
            return len(owned)

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def reload(self):
        """Drop in-memory state so the next access reloads the fixtures."""
        with self._lock:
            self._users = None
            self._institutions = None
            self._children_groups = None
