"""
tests/test_invitations.py -- Invitation lifecycle: create, validate, accept, revoke, resend, purge.
"""

from __future__ import annotations

import pytest

from auth.errors import DuplicateResourceError, ExpiredError, ForbiddenError, InvalidOperationError, ResourceNotFoundError
from auth.models import InvitationProfile, InvitationStatus, RoleType

PASSWORD = "Invited-Pass-1"


@pytest.fixture
def manager(service):
    return service.invitations


@pytest.fixture
def admin(make_account):
    return make_account("boss", RoleType.ADMIN)


class TestCreate:
    def test_create_builds_link_and_sends(self, manager, admin, notifier) -> None:
        ticket = manager.create("New.Staff@Example.com", RoleType.STAFF, inviter=admin, station_id=3, send_email=True)

        invitation = ticket.invitation
        assert invitation.email == "new.staff@example.com"
        assert invitation.status is InvitationStatus.PENDING
        assert invitation.invited_by == admin.id
        assert len(invitation.token) == 64
        assert ticket.link.endswith(f"/register/staff?token={invitation.token}")
        assert notifier.invitations == [("new.staff@example.com", ticket.link, RoleType.STAFF)]

    def test_no_email_unless_asked(self, manager, admin, notifier) -> None:
        manager.create("a@example.com", RoleType.STAFF, inviter=admin)
        assert notifier.invitations == []

    def test_send_failure_still_creates(self, manager, admin, notifier) -> None:
        notifier.fail = True
        ticket = manager.create("a@example.com", RoleType.STAFF, inviter=admin, send_email=True)
        assert manager.validate(ticket.invitation.token).id == ticket.invitation.id

    def test_duplicate_active_invitation(self, manager, admin) -> None:
        manager.create("a@example.com", RoleType.STAFF, inviter=admin)
        with pytest.raises(DuplicateResourceError):
            manager.create("a@example.com", RoleType.STAFF, inviter=admin)
        # A different role is a different invitation.
        manager.create("a@example.com", RoleType.MANAGER, inviter=admin)

    def test_admin_cannot_invite_admin(self, manager, admin) -> None:
        with pytest.raises(ForbiddenError):
            manager.create("a@example.com", RoleType.ADMIN, inviter=admin)

    def test_super_admin_can_invite_admin(self, manager, make_account) -> None:
        root = make_account("root", RoleType.SUPER_ADMIN)
        ticket = manager.create("a@example.com", RoleType.ADMIN, inviter=root)
        assert ticket.invitation.role is RoleType.ADMIN

    def test_staff_cannot_invite(self, manager, make_account) -> None:
        staff = make_account("clerk", RoleType.STAFF)
        with pytest.raises(ForbiddenError):
            manager.create("a@example.com", RoleType.STAFF, inviter=staff)


class TestValidate:
    def test_validate_twice_without_registering(self, manager, admin) -> None:
        token = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation.token
        assert manager.validate(token).status is InvitationStatus.PENDING
        assert manager.validate(token).status is InvitationStatus.PENDING

    def test_unknown_token(self, manager) -> None:
        with pytest.raises(ResourceNotFoundError):
            manager.validate("missing")

    def test_lazy_expiry(self, manager, admin, clock) -> None:
        invitation = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
        clock.advance(7 * 86400 + 1)

        with pytest.raises(ExpiredError, match="expired"):
            manager.validate(invitation.token)

        assert manager.store.find_by_id(invitation.id).status is InvitationStatus.EXPIRED

    def test_revoked_is_never_accepted(self, service, manager, admin) -> None:
        invitation = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
        manager.revoke(invitation.id, admin)

        with pytest.raises(ExpiredError, match="revoked"):
            service.register_with_invitation(invitation.token, InvitationProfile(username="late", password=PASSWORD))
        assert service.accounts.find_by_email("a@example.com") is None


class TestAcceptance:
    def test_accepting_records_the_account(self, service, manager, admin) -> None:
        invitation = manager.create("a@example.com", RoleType.MANAGER, inviter=admin, station_id=9).invitation

        result = service.register_with_invitation(
            invitation.token, InvitationProfile(username="newmgr", password=PASSWORD, first_name="New")
        )

        stored = manager.store.find_by_id(invitation.id)
        assert stored.status is InvitationStatus.ACCEPTED
        assert stored.accepted_by == result.account.id
        assert result.account.role.name is RoleType.MANAGER
        assert result.account.station_id == 9

    def test_mark_accepted_only_once(self, manager, admin) -> None:
        invitation = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
        assert manager.mark_accepted(invitation, 1) is True
        assert manager.mark_accepted(invitation, 2) is False

    def test_taken_username_leaves_invitation_pending(self, service, manager, admin, make_account) -> None:
        make_account("taken")
        invitation = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation

        with pytest.raises(DuplicateResourceError):
            service.register_with_invitation(invitation.token, InvitationProfile(username="taken", password=PASSWORD))

        assert manager.validate(invitation.token).status is InvitationStatus.PENDING


class TestRevokeAndResend:
    def test_cannot_revoke_accepted(self, manager, admin) -> None:
        invitation = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
        manager.mark_accepted(invitation, 1)
        with pytest.raises(InvalidOperationError, match="accepted"):
            manager.revoke(invitation.id, admin)

    def test_revoke_unknown(self, manager, admin) -> None:
        with pytest.raises(ResourceNotFoundError):
            manager.revoke(404, admin)

    def test_admin_cannot_revoke_admin_invitation(self, manager, make_account) -> None:
        root = make_account("root", RoleType.SUPER_ADMIN)
        admin = make_account("boss", RoleType.ADMIN)
        invitation = manager.create("peer@example.com", RoleType.ADMIN, inviter=root).invitation

        with pytest.raises(ForbiddenError):
            manager.revoke(invitation.id, admin)

        assert manager.store.find_by_id(invitation.id).status is InvitationStatus.PENDING
        assert manager.revoke(invitation.id, root).status is InvitationStatus.REVOKED

    def test_staff_cannot_revoke(self, manager, admin, make_account) -> None:
        staff = make_account("clerk", RoleType.STAFF)
        invitation = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
        with pytest.raises(ForbiddenError):
            manager.revoke(invitation.id, staff)

    def test_resend_pending_revokes_original(self, manager, admin) -> None:
        original = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation

        fresh = manager.resend(original.id, inviter=admin).invitation

        assert fresh.token != original.token
        assert manager.store.find_by_id(original.id).status is InvitationStatus.REVOKED
        assert manager.validate(fresh.token).email == "a@example.com"

    def test_resend_expired(self, manager, admin, clock) -> None:
        original = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
        clock.advance(8 * 86400)
        with pytest.raises(ExpiredError):
            manager.validate(original.token)

        fresh = manager.resend(original.id, inviter=admin).invitation

        assert fresh.status is InvitationStatus.PENDING
        assert manager.store.find_by_id(original.id).status is InvitationStatus.EXPIRED

    def test_resend_accepted_is_rejected(self, manager, admin) -> None:
        original = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
        manager.mark_accepted(original, 1)
        with pytest.raises(InvalidOperationError):
            manager.resend(original.id, inviter=admin)

    def test_unauthorized_resend_leaves_original_alone(self, manager, make_account) -> None:
        root = make_account("root", RoleType.SUPER_ADMIN)
        admin = make_account("boss", RoleType.ADMIN)
        original = manager.create("a@example.com", RoleType.ADMIN, inviter=root).invitation

        with pytest.raises(ForbiddenError):
            manager.resend(original.id, inviter=admin)

        assert manager.store.find_by_id(original.id).status is InvitationStatus.PENDING


def test_list_filters_by_status(manager, admin) -> None:
    kept = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
    revoked = manager.create("b@example.com", RoleType.STAFF, inviter=admin).invitation
    manager.revoke(revoked.id, admin)

    assert [i.id for i in manager.list(InvitationStatus.PENDING)] == [kept.id]
    assert {i.id for i in manager.list()} == {kept.id, revoked.id}


def test_purge_removes_stale_but_keeps_history(manager, admin, clock) -> None:
    stale = manager.create("a@example.com", RoleType.STAFF, inviter=admin).invitation
    accepted = manager.create("b@example.com", RoleType.STAFF, inviter=admin).invitation
    manager.mark_accepted(accepted, 1)
    clock.advance(8 * 86400)

    assert manager.purge_expired() == 1
    assert manager.store.find_by_id(stale.id) is None
    assert manager.store.find_by_id(accepted.id) is not None
