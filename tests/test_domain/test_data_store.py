"""
Tests for the in-memory account repository.
"""

import json
import threading
from pathlib import Path

import pytest

from domain.data_store import AccountStore
from domain.exceptions import ConflictException, ValidationException
from domain.models import Child, ChildrenGroup, Educator, Family, Institution
from conftest import UNKNOWN_ID


class TestUsers:
    """Tests for user operations."""

    def test_add_assigns_object_id(self, data_store: AccountStore, child: Child):
        assert len(child.id) == 24
        assert data_store.get_user(child.id) == child

    def test_get_user_filters_by_type(self, data_store: AccountStore, child: Child):
        assert data_store.get_user(child.id, "child") is not None
        assert data_store.get_user(child.id, "educator") is None

    def test_get_users_by_type(self, data_store: AccountStore, child: Child, educator: Educator):
        assert data_store.get_users("child") == [child]
        assert len(data_store.get_users()) == 2

    def test_username_exists(self, data_store: AccountStore, child: Child):
        assert data_store.username_exists("BR0001")
        assert not data_store.username_exists("BR0001", exclude_id=child.id)
        assert not data_store.username_exists("BR9999")

    def test_update_returns_new_snapshot(self, data_store: AccountStore, child: Child):
        updated = data_store.update_user(child.id, "child", {"age": 12})

        assert updated.age == 12
        assert child.age == 11
        assert data_store.get_user(child.id).age == 12

    def test_update_keeps_password(self, data_store: AccountStore, child: Child):
        updated = data_store.update_user(child.id, "child", {"age": 12})

        assert updated.password == "child123"

    def test_update_missing_user_returns_none(self, data_store: AccountStore, child: Child):
        assert data_store.update_user(UNKNOWN_ID, "child", {"age": 12}) is None
        assert data_store.update_user(child.id, "educator", {"username": "x"}) is None

    def test_update_invalid_value_raises(self, data_store: AccountStore, child: Child):
        with pytest.raises(ValidationException):
            data_store.update_user(child.id, "child", {"age": -1})

    def test_delete_user(self, data_store: AccountStore, child: Child):
        removed = data_store.delete_user(child.id)

        assert removed == child
        assert data_store.get_user(child.id) is None
        assert data_store.delete_user(child.id) is None

    def test_missing_children(self, data_store: AccountStore, child: Child, educator: Educator):
        assert data_store.missing_children([child.id, educator.id, UNKNOWN_ID]) == [educator.id, UNKNOWN_ID]

    def test_remove_child_references(self, data_store: AccountStore, child: Child, family: Family):
        group = data_store.add_children_group(ChildrenGroup(name="G", children=[child.id]))

        data_store.remove_child_references(child.id)

        assert data_store.get_user(family.id).children == []
        assert data_store.get_children_group(group.id).children == []


class TestInstitutions:
    """Tests for institution operations."""

    def test_name_exists(self, data_store: AccountStore, institution: Institution):
        assert data_store.institution_name_exists("NUTES")
        assert not data_store.institution_name_exists("NUTES", exclude_id=institution.id)

    def test_has_users(self, data_store: AccountStore, institution: Institution, child: Child):
        assert data_store.institution_has_users(institution.id)

    def test_update_and_delete(self, data_store: AccountStore, institution: Institution):
        assert data_store.update_institution(institution.id, {"address": "Street 1"}).address == "Street 1"
        assert data_store.delete_institution(institution.id).id == institution.id
        assert data_store.delete_institution(institution.id) is None


class TestChildrenGroups:
    """Tests for children group operations."""

    def test_get_by_owner(self, data_store: AccountStore, educator: Educator):
        owned = data_store.add_children_group(ChildrenGroup(name="A", user_id=educator.id))
        data_store.add_children_group(ChildrenGroup(name="B", user_id=UNKNOWN_ID))

        assert data_store.get_children_groups(educator.id) == [owned]
        assert len(data_store.get_children_groups()) == 2

    def test_delete_groups_of_user(self, data_store: AccountStore, educator: Educator):
        data_store.add_children_group(ChildrenGroup(name="A", user_id=educator.id))
        data_store.add_children_group(ChildrenGroup(name="B", user_id=educator.id))

        assert data_store.delete_children_groups_of_user(educator.id) == 2
        assert data_store.get_children_groups() == []


class TestFixtures:
    """Tests for seeding the store from JSON files."""

    def test_loads_fixture_files(self, tmp_path: Path):
        (tmp_path / "institutions.json").write_text(json.dumps([
            {"id": "5f1a2b3c4d5e6f7a8b9c0d1e", "type": "School", "name": "Unit A"},
        ]))
        (tmp_path / "users.json").write_text(json.dumps([
            {"id": "60a1b2c3d4e5f6a7b8c9d0e1", "username": "BR0001", "type": "child",
             "institution_id": "5f1a2b3c4d5e6f7a8b9c0d1e", "gender": "female", "age": 9},
        ]))

        store = AccountStore(data_dir=tmp_path)

        assert isinstance(store.get_user("60a1b2c3d4e5f6a7b8c9d0e1"), Child)
        assert store.institution_exists("5f1a2b3c4d5e6f7a8b9c0d1e")
        assert store.get_children_groups() == []

    def test_reload_discards_changes(self, tmp_path: Path):
        store = AccountStore(data_dir=tmp_path)
        store.add_institution(Institution(type="School", name="Unit A"))

        store.reload()

        assert store.get_institutions() == []


class TestConcurrency:
    """Tests for access from several request threads at once."""

    def test_reads_while_users_are_added(self, data_store: AccountStore, institution: Institution):
        """Scanning users never sees the collection change underneath it."""
        errors = []
        done = threading.Event()

        def reader():
            while not done.is_set():
                try:
                    data_store.username_exists("nobody")
                    data_store.get_users("child")
                    data_store.institution_has_users(institution.id)
                except RuntimeError as e:
                    errors.append(e)
                    return

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for i in range(2000):
                data_store.add_user(Educator(username=f"edu{i}", password="x", institution_id=institution.id))
        finally:
            done.set()
            thread.join(timeout=5)

        assert errors == []

    def test_duplicate_username_rejected_by_store(self, data_store: AccountStore, child: Child):
        with pytest.raises(ConflictException):
            data_store.add_user(Educator(username=child.username, password="x"))

    def test_rename_to_taken_username_rejected(self, data_store: AccountStore, child: Child, educator: Educator):
        with pytest.raises(ConflictException):
            data_store.update_user(educator.id, "educator", {"username": child.username})

    def test_concurrent_registrations_keep_usernames_unique(self, data_store: AccountStore):
        """Only one of several simultaneous registrations of a username succeeds."""
        barrier = threading.Barrier(8)
        created, conflicts = [], []

        def register():
            barrier.wait(timeout=5)
            try:
                created.append(data_store.add_user(Educator(username="same", password="x")))
            except ConflictException:
                conflicts.append(1)

        threads = [threading.Thread(target=register) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(created) == 1
        assert len(conflicts) == 7
        assert len(data_store.get_users("educator")) == 1

    def test_duplicate_institution_name_rejected_by_store(self, data_store: AccountStore,
                                                         institution: Institution):
        with pytest.raises(ConflictException):
            data_store.add_institution(Institution(type="School", name=institution.name))
