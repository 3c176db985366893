"""
tests/test_access.py -- Capability evaluator.

Pure-function tests: accounts are built in memory, no database involved.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from auth.access import Action, Resource, allowed_actions, can, ensure_can, is_self, manages_station
from auth.errors import ForbiddenError
from auth.models import ROLE_DISPLAY_NAMES, Account, Role, RoleType


def _account(role: RoleType, account_id: int = 1) -> Account:
    return Account(
        id=account_id,
        username=f"{role.value}{account_id}",
        email=f"{role.value}{account_id}@example.com",
        role=Role(name=role, display_name=ROLE_DISPLAY_NAMES[role]),
    )


@dataclass
class Station:
    id: int
    manager_id: int | None


class TestSuperAdmin:
    @pytest.mark.parametrize("action", list(Action))
    @pytest.mark.parametrize("resource", list(Resource))
    def test_allowed_everything(self, action, resource) -> None:
        assert can(_account(RoleType.SUPER_ADMIN), action, resource)


class TestAdmin:
    def test_cannot_manage_roles(self) -> None:
        admin = _account(RoleType.ADMIN)
        assert not can(admin, Action.MANAGE, Resource.ROLE)
        assert not can(admin, Action.UPDATE, Resource.ROLE)

    def test_can_read_roles(self) -> None:
        assert can(_account(RoleType.ADMIN), Action.READ, Resource.ROLE)

    def test_manage_grant_covers_every_action(self) -> None:
        admin = _account(RoleType.ADMIN)
        for action in Action:
            assert can(admin, action, Resource.STATION)

    def test_user_crud_but_not_manage(self) -> None:
        admin = _account(RoleType.ADMIN)
        assert can(admin, Action.DELETE, Resource.USER)
        assert not can(admin, Action.MANAGE, Resource.USER)


class TestStaff:
    def test_reads_and_updates_own_record(self) -> None:
        staff = _account(RoleType.STAFF, account_id=5)
        assert can(staff, Action.READ, Resource.USER, staff)
        assert can(staff, Action.UPDATE, Resource.USER, staff)

    def test_cannot_touch_another_record(self) -> None:
        staff = _account(RoleType.STAFF, account_id=5)
        other = _account(RoleType.USER, account_id=6)
        assert not can(staff, Action.READ, Resource.USER, other)
        assert not can(staff, Action.UPDATE, Resource.USER, other)

    def test_type_level_check_passes_conditional_rule(self) -> None:
        assert can(_account(RoleType.STAFF), Action.UPDATE, Resource.USER)

    def test_instance_may_be_a_mapping(self) -> None:
        staff = _account(RoleType.STAFF, account_id=5)
        assert can(staff, "update", "user", {"id": 5})
        assert not can(staff, "update", "user", {"id": 99})

    def test_no_delete(self) -> None:
        assert not can(_account(RoleType.STAFF), Action.DELETE, Resource.USER)


class TestManager:
    def test_updates_only_managed_station(self) -> None:
        manager = _account(RoleType.MANAGER, account_id=3)
        assert can(manager, Action.UPDATE, Resource.STATION, Station(id=1, manager_id=3))
        assert not can(manager, Action.UPDATE, Resource.STATION, Station(id=2, manager_id=4))

    def test_reads_any_user_but_updates_only_self(self) -> None:
        manager = _account(RoleType.MANAGER, account_id=3)
        other = _account(RoleType.STAFF, account_id=8)
        assert can(manager, Action.READ, Resource.USER, other)
        assert not can(manager, Action.UPDATE, Resource.USER, other)
        assert can(manager, Action.UPDATE, Resource.USER, manager)


class TestUserAndGuest:
    def test_user_only_self(self) -> None:
        user = _account(RoleType.USER, account_id=2)
        assert can(user, Action.READ, Resource.USER, user)
        assert not can(user, Action.READ, Resource.STATION)

    def test_guest_reads_settings_only(self) -> None:
        guest = _account(RoleType.GUEST)
        assert allowed_actions(guest, Resource.SETTINGS) == [Action.READ]
        assert allowed_actions(guest, Resource.USER) == []


def test_ensure_can_raises_forbidden() -> None:
    with pytest.raises(ForbiddenError):
        ensure_can(_account(RoleType.GUEST), Action.CREATE, Resource.USER)


def test_predicates_need_a_persisted_account() -> None:
    unsaved = Account(username="x", email="x@example.com", role=Role(RoleType.USER, "User"))
    assert not is_self(unsaved, {"id": None})
    assert not manages_station(unsaved, {"manager_id": None})
