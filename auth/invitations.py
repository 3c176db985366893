"""
auth/invitations.py -- Invitation repository and lifecycle.

An invitation is a single-use registration credential that fixes the role
(and optionally the station) of the account created from it.

    pending --register--> accepted
    pending --validate past expiry--> expired
    pending --revoke--> revoked

accepted / expired / revoked are terminal. Every transition is a conditional
UPDATE ... WHERE status = 'pending', so two concurrent registrations with the
same token cannot both accept it.

InvitationStore is plain data access. InvitationManager holds the rules:
who may invite whom, duplicate detection, link building, and best-effort
delivery through the Notifier.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable

from sqlalchemy import and_, select
from sqlalchemy.engine import Connection, Engine

from auth.access import Action, Resource, ensure_can
from auth.errors import (
    DuplicateResourceError,
    ExpiredError,
    ForbiddenError,
    InvalidOperationError,
    ResourceNotFoundError,
)
from auth.models import Account, Invitation, InvitationStatus, InvitationTicket, RoleType
from auth.notifier import Notifier
from auth.schema import from_epoch, invitations

logger = logging.getLogger("petrosmart.auth.invitations")

_TOKEN_BYTES = 32

# Roles only a super_admin may hand out.
PRIVILEGED_ROLES = frozenset({RoleType.SUPER_ADMIN, RoleType.ADMIN})


def generate_token() -> str:
    return secrets.token_hex(_TOKEN_BYTES)


class InvitationStore:
    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time) -> None:
        self.engine = engine
        self._clock = clock

    def create(
        self,
        email: str,
        role: RoleType,
        expires_at: float,
        invited_by: int | None = None,
        station_id: int | None = None,
        token: str | None = None,
    ) -> Invitation:
        """Insert a pending invitation. token defaults to 32 random bytes, hex-encoded."""
        token = token or generate_token()
        with self.engine.begin() as conn:
            result = conn.execute(
                invitations.insert().values(
                    token=token,
                    email=email,
                    role=RoleType(role).value,
                    status=InvitationStatus.PENDING.value,
                    station_id=station_id,
                    expires_at=expires_at,
                    invited_by=invited_by,
                    created_at=self._clock(),
                )
            )
            invitation_id = result.inserted_primary_key[0]
        created = self.find_by_id(invitation_id)
        if created is None:
            raise RuntimeError(f"Invitation {invitation_id} vanished after insert")
        return created

    def find_by_id(self, invitation_id: int) -> Invitation | None:
        return self._fetch_one(invitations.c.id == invitation_id)

    def find_by_token(self, token: str) -> Invitation | None:
        return self._fetch_one(invitations.c.token == token)

    def find_active(self, email: str, role: RoleType) -> Invitation | None:
        """A pending, unexpired invitation for (email, role), if any."""
        return self._fetch_one(
            and_(
                invitations.c.email == email,
                invitations.c.role == RoleType(role).value,
                invitations.c.status == InvitationStatus.PENDING.value,
                invitations.c.expires_at > self._clock(),
            )
        )

    def list(self, status: InvitationStatus | None = None) -> list[Invitation]:
        query = select(invitations).order_by(invitations.c.created_at.desc(), invitations.c.id.desc())
        if status is not None:
            query = query.where(invitations.c.status == InvitationStatus(status).value)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_invitation(r) for r in rows]

    def transition(
        self,
        invitation_id: int,
        target: InvitationStatus,
        conn: Connection | None = None,
        **values,
    ) -> bool:
        """Move a pending invitation to target. False if it was no longer pending.

        Pass conn to run inside the caller's transaction.
        """
        stmt = (
            invitations.update()
            .where(and_(invitations.c.id == invitation_id, invitations.c.status == InvitationStatus.PENDING.value))
            .values(status=InvitationStatus(target).value, **values)
        )
        if conn is not None:
            return conn.execute(stmt).rowcount == 1
        with self.engine.begin() as own:
            result = own.execute(stmt)
        return result.rowcount == 1

    def purge_expired(self) -> int:
        """Delete pending or expired invitations whose expiry has passed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                invitations.delete().where(
                    and_(
                        invitations.c.expires_at < self._clock(),
                        invitations.c.status.in_([InvitationStatus.PENDING.value, InvitationStatus.EXPIRED.value]),
                    )
                )
            )
        return result.rowcount

    def _fetch_one(self, clause) -> Invitation | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(invitations).where(clause).limit(1)).fetchone()
        return _row_to_invitation(row) if row is not None else None


class InvitationManager:
    """Business rules around invitations.

    Usage:
        manager = InvitationManager(store, notifier, frontend_url="https://app.example.com")
        ticket = manager.create("staff@x.com", RoleType.STAFF, inviter=admin, send_email=True)
        manager.validate(ticket.invitation.token)
    """

    def __init__(
        self,
        store: InvitationStore,
        notifier: Notifier,
        frontend_url: str = "http://localhost:3000",
        expiry_days: int = 7,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.frontend_url = frontend_url.rstrip("/")
        self.expiry_days = expiry_days
        self._clock = clock

    def link_for(self, token: str) -> str:
        return f"{self.frontend_url}/register/staff?token={token}"

    @staticmethod
    def authorize(inviter: Account | None, role: RoleType) -> None:
        if inviter is None:
            return
        ensure_can(inviter, Action.CREATE, Resource.USER)
        if RoleType(role) in PRIVILEGED_ROLES and inviter.role.name is not RoleType.SUPER_ADMIN:
            raise ForbiddenError(f"Only a super administrator can invite a {RoleType(role).value}")

    def create(
        self,
        email: str,
        role: RoleType,
        inviter: Account | None,
        station_id: int | None = None,
        send_email: bool = False,
    ) -> InvitationTicket:
        """Create a pending invitation and optionally email the link.

        inviter=None is an operator action (CLI) and skips the permission
        checks. Otherwise the inviter must be allowed to create users, and
        only a super_admin may invite an admin or super_admin.

        Raises:
            ForbiddenError:         inviter lacks the capability or the role is privileged
            DuplicateResourceError: an active invitation exists for (email, role)
        """
        role = RoleType(role)
        email = email.strip().lower()
        self.authorize(inviter, role)

        if self.store.find_active(email, role) is not None:
            raise DuplicateResourceError("Active invitation", "email")

        invitation = self.store.create(
            email=email,
            role=role,
            expires_at=self._clock() + self.expiry_days * 86400,
            invited_by=inviter.id if inviter is not None else None,
            station_id=station_id,
        )
        link = self.link_for(invitation.token)
        logger.info("Invitation %d created for %s as %s", invitation.id, email, role.value)

        if send_email:
            inviter_name = inviter.full_name if inviter is not None else "Your administrator"
            try:
                self.notifier.send_invitation(email, link, role, inviter_name, invitation.expires_at)
            except Exception:
                logger.exception("Failed to send invitation email for invitation %d", invitation.id)

        return InvitationTicket(invitation=invitation, link=link)

    def validate(self, token: str) -> Invitation:
        """Return the invitation if it can still be used.

        A pending invitation found past its expiry is moved to expired here.

        Raises:
            ResourceNotFoundError: unknown token
            ExpiredError:          accepted, revoked, or expired
        """
        invitation = self.store.find_by_token(token)
        if invitation is None:
            raise ResourceNotFoundError("Invitation")
        if invitation.status is InvitationStatus.ACCEPTED:
            raise ExpiredError("Invitation has already been used")
        if invitation.status is InvitationStatus.REVOKED:
            raise ExpiredError("Invitation has been revoked")
        if invitation.status is InvitationStatus.EXPIRED:
            raise ExpiredError("Invitation has expired")
        if self._clock() > invitation.expires_at.timestamp():
            self.store.transition(invitation.id, InvitationStatus.EXPIRED)
            raise ExpiredError("Invitation has expired")
        return invitation

    def mark_accepted(self, invitation: Invitation, account_id: int, conn: Connection | None = None) -> bool:
        accepted = self.store.transition(
            invitation.id,
            InvitationStatus.ACCEPTED,
            conn=conn,
            accepted_at=self._clock(),
            accepted_by=account_id,
        )
        if accepted:
            logger.info("Invitation %d accepted by account %d", invitation.id, account_id)
        return accepted

    def revoke(self, invitation_id: int, revoker: Account | None) -> Invitation:
        """Revoke a pending invitation.

        The revoker needs the same rights it would need to issue the
        invitation, so only a super_admin revokes admin invitations.

        Raises:
            ResourceNotFoundError: unknown id
            ForbiddenError:        revoker could not have issued this invitation
            InvalidOperationError: the invitation is not pending
        """
        invitation = self.store.find_by_id(invitation_id)
        if invitation is None:
            raise ResourceNotFoundError("Invitation", invitation_id)
        self.authorize(revoker, invitation.role)
        if invitation.status is InvitationStatus.ACCEPTED:
            raise InvalidOperationError("Cannot revoke an accepted invitation")
        if invitation.status is not InvitationStatus.PENDING:
            raise InvalidOperationError(f"Cannot revoke an invitation that is {invitation.status.value}")
        if not self.store.transition(invitation_id, InvitationStatus.REVOKED):
            raise InvalidOperationError("Invitation is no longer pending")
        logger.info("Invitation %d revoked", invitation_id)
        return self.store.find_by_id(invitation_id)

    def resend(self, invitation_id: int, inviter: Account | None, send_email: bool = False) -> InvitationTicket:
        """Replace an invitation with a fresh one (new token, new expiry).

        A pending original is revoked first. An expired original is simply
        superseded. Accepted and revoked invitations cannot be resent.
        """
        original = self.store.find_by_id(invitation_id)
        if original is None:
            raise ResourceNotFoundError("Invitation", invitation_id)
        self.authorize(inviter, original.role)
        if original.status is InvitationStatus.PENDING:
            self.revoke(invitation_id, inviter)
        elif original.status is not InvitationStatus.EXPIRED:
            raise InvalidOperationError(f"Cannot resend an invitation that is {original.status.value}")
        return self.create(
            original.email,
            original.role,
            inviter,
            station_id=original.station_id,
            send_email=send_email,
        )

    def list(self, status: InvitationStatus | None = None) -> list[Invitation]:
        return self.store.list(status)

    def purge_expired(self) -> int:
        removed = self.store.purge_expired()
        if removed:
            logger.info("Purged %d stale invitation(s)", removed)
        return removed


def _row_to_invitation(row) -> Invitation:
    return Invitation(
        id=row.id,
        token=row.token,
        email=row.email,
        role=RoleType(row.role),
        status=InvitationStatus(row.status),
        station_id=row.station_id,
        expires_at=from_epoch(row.expires_at),
        invited_by=row.invited_by,
        accepted_at=from_epoch(row.accepted_at),
        accepted_by=row.accepted_by,
        created_at=from_epoch(row.created_at),
    )
