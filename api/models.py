"""
API request and response models for Petrosmart auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from auth.access import Action, Resource, allowed_actions
from auth.models import Account, AuthResult, Invitation, InvitationTicket, RoleType

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9._-]+$"
OTP_PATTERN = r"^\d{6}$"

# bcrypt silently truncates beyond 72 bytes -- cap it at the edge.
_PASSWORD_MIN = 8
_PASSWORD_MAX = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register and /auth/register/init."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)


class RegisterVerifyRequest(RegisterRequest):
    """Request body for POST /api/v1/auth/register/verify -- the profile again plus the emailed code."""

    code: str = Field(pattern=OTP_PATTERN)


class InvitationRegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register/invitation/{token}.

    Email and role are taken from the invitation, not from the caller.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(pattern=OTP_PATTERN)
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)


class InvitationCreate(BaseModel):
    """Request body for POST /api/v1/invitations."""

    email: EmailStr
    role: RoleType
    station_id: Optional[int] = Field(default=None, ge=1)
    send_email: bool = False


class InvitationResend(BaseModel):
    send_email: bool = False


class AccountProvision(RegisterRequest):
    """Request body for POST /api/v1/users -- admin-created account with an explicit role."""

    role: RoleType
    station_id: Optional[int] = Field(default=None, ge=1)


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    station_id: Optional[int] = Field(default=None, ge=1)
    role: Optional[RoleType] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. The password hash and federation id never leave the server."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str]
    role: RoleType
    role_display_name: str
    is_email_verified: bool
    station_id: Optional[int]
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Factory Method -- the mapping lives with the output model, not in each route."""
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            phone=account.phone,
            role=account.role.name,
            role_display_name=account.role.display_name,
            is_email_verified=account.is_email_verified,
            station_id=account.station_id,
            created_at=account.created_at.isoformat() if account.created_at else "",
        )


class MeResponse(AccountResponse):
    """Response for GET /api/v1/auth/me -- the account plus its type-level capabilities."""

    capabilities: dict[str, list[str]]

    @classmethod
    def from_account(cls, account: Account) -> "MeResponse":
        base = AccountResponse.from_account(account).model_dump()
        capabilities = {
            resource.value: [a.value for a in allowed_actions(account, resource) if a is not Action.MANAGE]
            for resource in Resource
        }
        return cls(**base, capabilities={k: v for k, v in capabilities.items() if v})


class AuthResponse(BaseModel):
    """Response for every endpoint that signs the caller in."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: int
    user: AccountResponse

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            access_token=result.access_token,
            expires_in=result.expires_in,
            user=AccountResponse.from_account(result.account),
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class InvitationResponse(BaseModel):
    """An invitation as shown to admins. invitation_link is present only right after creation."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    role: RoleType
    status: str
    station_id: Optional[int]
    expires_at: str
    invited_by: Optional[int]
    created_at: str
    token: Optional[str] = None
    invitation_link: Optional[str] = None

    @classmethod
    def from_invitation(cls, invitation: Invitation, link: Optional[str] = None) -> "InvitationResponse":
        return cls(
            id=invitation.id,
            email=invitation.email,
            role=invitation.role,
            status=invitation.status.value,
            station_id=invitation.station_id,
            expires_at=invitation.expires_at.isoformat(),
            invited_by=invitation.invited_by,
            created_at=invitation.created_at.isoformat() if invitation.created_at else "",
            token=invitation.token if link else None,
            invitation_link=link,
        )

    @classmethod
    def from_ticket(cls, ticket: InvitationTicket) -> "InvitationResponse":
        return cls.from_invitation(ticket.invitation, ticket.link)


class InvitationValidationResponse(BaseModel):
    """Response for GET /api/v1/auth/invitations/{token}/validate -- enough to prefill the signup form."""

    model_config = ConfigDict(frozen=True)

    email: str
    role: RoleType
    station_id: Optional[int]
    expires_at: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    attempts_left: Optional[int] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
