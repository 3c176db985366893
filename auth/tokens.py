"""
auth/tokens.py -- JWT signing, password hashing, and cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (account id), username, role, iat, and exp. iat keeps sub-second
       precision so an account-wide revocation floor written during a
       password reset never rejects a token minted right after it.
       TokenSigner.decode() raises UnauthorizedError with a typed reason --
       the route layer turns that into a 401.

  Passwords: bcrypt directly (no passlib wrapper), cost factor from
       Settings.bcrypt_rounds (never below 10). The _DUMMY_HASH constant
       enables timing equalization in check_account_password() so response
       time does not reveal whether a username exists.

  SECRET_KEY: sourced from core.config.get_settings(). Dev mode (DEBUG=true)
       auto-generates a random key with a warning; production mode refuses to
       start without one.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is
the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import SessionRejection, UnauthorizedError
from auth.models import RoleType, SessionClaims
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account

logger = logging.getLogger("petrosmart.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer
    caps password fields at 72 characters to stay below that threshold.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("petrosmart_timing_dummy")


def check_account_password(account: Account | None, password: str) -> bool:
    """Check a login password with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)
    """
    if account is None or not account.password_hash:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, account.password_hash)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenSigner:
    """Signs and verifies session tokens with a shared secret.

    Verification here covers signature, expiry, and claim shape only.
    Revocation is the TokenBlacklist's job (see CredentialService.verify_session).
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = 24 * 3600,
        algorithm: str = ALGORITHM,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret_key
        self.expire_seconds = expire_seconds
        self.algorithm = algorithm
        self._clock = clock

    def sign(
        self,
        account_id: int,
        username: str,
        role: RoleType | str,
        issued_at: float | None = None,
        expire_seconds: int = 0,
    ) -> str:
        """Encode a signed JWT for the given identity.

        Args:
            account_id:     Stored as the string "sub" claim.
            username:       Informational; clients display it.
            role:           Role name at issue time.
            issued_at:      Epoch seconds; defaults to now.
            expire_seconds: Lifetime override. 0 (default) uses the configured expiry.
        """
        iat = self._clock() if issued_at is None else issued_at
        duration = expire_seconds if expire_seconds > 0 else self.expire_seconds
        payload = {
            "sub": str(account_id),
            "username": username,
            "role": RoleType(role).value,
            "iat": iat,
            "exp": int(iat + duration),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> SessionClaims:
        """Verify signature and expiry and return the claims.

        Raises:
            UnauthorizedError: reason EXPIRED for a lapsed token, INVALID for
                anything else (bad signature, malformed, missing claims).
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise UnauthorizedError(SessionRejection.EXPIRED) from exc
        except JWTError as exc:
            raise UnauthorizedError(SessionRejection.INVALID) from exc

        try:
            return SessionClaims(
                account_id=int(payload["sub"]),
                username=payload["username"],
                role=RoleType(payload["role"]),
                issued_at=float(payload["iat"]),
                expires_at=float(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UnauthorizedError(SessionRejection.INVALID) from exc

    def remaining_lifetime(self, claims: SessionClaims) -> int:
        """Seconds until the token expires, never negative."""
        return max(0, int(claims.expires_at - self._clock()) + 1)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
