"""
auth/errors.py -- Typed error taxonomy for the authentication core.

Every user-correctable condition is an AuthError subclass with a stable
machine-readable code and the HTTP status an adapter should use. The API
layer registers a single handler for AuthError (api/main.py) and renders the
same {"error": {"code", "message"}} envelope as every other error.

Infrastructure failures (database unreachable, etc.) are NOT AuthErrors.
They propagate untouched and end in the generic 500 handler.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum

from auth.models import OtpFailure


class AuthError(Exception):
    """Base class for recoverable, user-facing authentication failures."""

    code: str = "auth_error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class DuplicateResourceError(AuthError):
    code = "duplicate_resource"
    status_code = 409

    def __init__(self, resource: str, field: str | None = None) -> None:
        message = f"{resource} with this {field} already exists" if field else f"{resource} already exists"
        super().__init__(message)
        self.resource = resource
        self.field = field


class InvalidCredentialsError(AuthError):
    """Bad login. The message never says which half was wrong."""

    code = "invalid_credentials"
    status_code = 401

    def __init__(self, message: str = "Invalid username or password") -> None:
        super().__init__(message)


class ExpiredOrInvalidOtpError(AuthError):
    code = "invalid_otp"
    status_code = 400

    def __init__(
        self,
        message: str = "Invalid or expired OTP",
        reason: OtpFailure | None = None,
        attempts_left: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.attempts_left = attempts_left

    def to_detail(self) -> dict:
        detail = super().to_detail()
        if self.attempts_left is not None:
            detail["attempts_left"] = self.attempts_left
        return detail


class OtpLockedError(AuthError):
    code = "otp_locked"
    status_code = 400

    def __init__(self, message: str = "OTP is locked due to too many failed attempts") -> None:
        super().__init__(message)
        self.attempts_left = 0


class RateLimitExceededError(AuthError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, retry_after: int | None = None) -> None:
        super().__init__("Too many requests. Please try again later.")
        self.retry_after = retry_after


class PasswordReusedError(AuthError):
    code = "password_reused"
    status_code = 400

    def __init__(self, message: str = "Password was used recently. Choose a different password.") -> None:
        super().__init__(message)


class ResourceNotFoundError(AuthError):
    code = "not_found"
    status_code = 404

    def __init__(self, resource: str, identifier: str | int | None = None) -> None:
        message = f"{resource} with identifier '{identifier}' not found" if identifier is not None else f"{resource} not found"
        super().__init__(message)
        self.resource = resource


class InvalidOperationError(AuthError):
    code = "invalid_operation"
    status_code = 400


class ExpiredError(AuthError):
    """A credential (invitation) that is used, revoked, or past its expiry."""

    code = "expired"
    status_code = 410


class SessionRejection(str, Enum):
    MISSING = "missing_token"
    INVALID = "invalid_token"
    EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    SESSION_REVOKED = "session_revoked"


_REJECTION_MESSAGES = {
    SessionRejection.MISSING: "Authentication required.",
    SessionRejection.INVALID: "Invalid session token.",
    SessionRejection.EXPIRED: "Session has expired. Please login again.",
    SessionRejection.TOKEN_REVOKED: "Token has been revoked.",
    SessionRejection.SESSION_REVOKED: "Session expired due to security reasons. Please login again.",
}


class UnauthorizedError(AuthError):
    code = "unauthorized"
    status_code = 401

    def __init__(self, reason: SessionRejection = SessionRejection.INVALID) -> None:
        super().__init__(_REJECTION_MESSAGES[reason])
        self.reason = reason

    def to_detail(self) -> dict:
        return {"code": self.reason.value, "message": self.message}


class ForbiddenError(AuthError):
    code = "forbidden"
    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action") -> None:
        super().__init__(message)
