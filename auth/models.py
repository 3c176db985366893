"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
credential service do the work; these classes own the domain shape.

Timestamps are aware UTC datetimes. The stores persist them as epoch seconds
and convert on the way in and out (see auth/schema.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleType(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
    USER = "user"
    GUEST = "guest"


ROLE_DISPLAY_NAMES: dict[RoleType, str] = {
    RoleType.SUPER_ADMIN: "Super Administrator",
    RoleType.ADMIN: "Administrator",
    RoleType.MANAGER: "Station Manager",
    RoleType.STAFF: "Staff",
    RoleType.USER: "User",
    RoleType.GUEST: "Guest",
}

DEFAULT_ROLE = RoleType.USER


@dataclass(frozen=True)
class Role:
    """A named role. The set of names is fixed; capabilities live in auth/access.py."""

    name: RoleType
    display_name: str
    id: int | None = None
    description: str | None = None


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass
class Account:
    """An identity record.

    role is always embedded -- AccountStore joins the roles table on every
    read, so callers never see an account without its role.

    federation_id holds the Google subject once the account has signed in
    with Google (or was provisioned by it). password_hash is always set;
    federated-only accounts carry a hash of a random secret nobody knows.
    """

    username: str
    email: str
    role: Role
    id: int | None = None
    password_hash: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    is_email_verified: bool = False
    federation_id: str | None = None
    station_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.username


@dataclass
class RegistrationProfile:
    """Self-service registration input. password is plaintext until the service hashes it."""

    username: str
    email: str
    password: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None


@dataclass
class InvitationProfile:
    """Registration input for an invited user -- email and role come from the invitation."""

    username: str
    password: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None


@dataclass
class FederatedProfile:
    """Identity asserted by an external provider (Google)."""

    subject: str
    email: str
    first_name: str = ""
    last_name: str = ""


# ---------------------------------------------------------------------------
# One-time passcodes
# ---------------------------------------------------------------------------


class OtpPurpose(str, Enum):
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"


class OtpFailure(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    LOCKED = "locked"
    MISMATCH = "mismatch"


@dataclass
class OneTimePasscode:
    """A single-use numeric code bound to (email, purpose).

    code_hash is HMAC-SHA256(SECRET_KEY, code). The plaintext is returned
    once by OtpStore.issue() and never stored.
    """

    email: str
    purpose: OtpPurpose
    code_hash: str
    created_at: datetime
    expires_at: datetime
    id: int | None = None
    account_id: int | None = None
    is_used: bool = False
    attempts: int = 0
    is_locked: bool = False


@dataclass(frozen=True)
class OtpVerification:
    """Typed outcome of OtpStore.verify(). A mismatch is a result, not an exception."""

    success: bool
    reason: OtpFailure | None = None
    message: str | None = None
    attempts_left: int | None = None


# ---------------------------------------------------------------------------
# Password history and audit
# ---------------------------------------------------------------------------


@dataclass
class PasswordHistoryEntry:
    account_id: int
    password_hash: str
    created_at: datetime
    id: int | None = None


class AuditAction(str, Enum):
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_FAILED = "password_reset_failed"
    PASSWORD_RESET_SUCCESS = "password_reset_success"
    OTP_VERIFICATION_FAILED = "otp_verification_failed"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_LOCKED = "account_locked"
    REGISTRATION_SUCCESS = "registration_success"
    FEDERATED_LOGIN = "federated_login"
    PASSWORD_CHANGED = "password_changed"
    SESSIONS_REVOKED = "sessions_revoked"
    INVITATION_CREATED = "invitation_created"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REVOKED = "invitation_revoked"


@dataclass
class AuditEvent:
    """Immutable record of a security-relevant event.

    Append-only: rows are never updated, and only the retention purge
    deletes them.
    """

    action: AuditAction
    success: bool
    account_id: int | None = None
    email: str | None = None
    source_address: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    id: int | None = None


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class Invitation:
    """A single-use, pre-authorized registration credential.

    pending -> accepted | expired | revoked. The three targets are terminal.
    """

    token: str
    email: str
    role: RoleType
    expires_at: datetime
    invited_by: int | None = None
    status: InvitationStatus = InvitationStatus.PENDING
    station_id: int | None = None
    accepted_at: datetime | None = None
    accepted_by: int | None = None
    created_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class InvitationTicket:
    """An invitation as returned to the inviter, with the link to share."""

    invitation: Invitation
    link: str


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionClaims:
    """Validated claims of a session token. issued_at keeps sub-second precision."""

    account_id: int
    username: str
    role: RoleType
    issued_at: float
    expires_at: float


@dataclass(frozen=True)
class AuthResult:
    """A freshly minted session together with the account it belongs to."""

    access_token: str
    account: Account
    expires_in: int
