"""
auth/otp.py -- Issue, verify, and rate-limit single-use numeric passcodes.

A code is bound to (email, purpose). verify() only ever looks at the most
recently created unused code for the pair, and fails closed with a typed
reason for each failure mode:

  NOT_FOUND  no unused code exists ("Invalid or expired OTP")
  EXPIRED    wall clock is past expires_at, regardless of lock state
  LOCKED     max_attempts wrong guesses were already made on this code
  MISMATCH   wrong code; the attempt counter is bumped and may lock the code

Mismatch is an expected user-facing outcome, so verify() returns an
OtpVerification instead of raising.

Storage:
  The plaintext code is never persisted. code_hash is
  HMAC-SHA256(secret_key, code), compared with hmac.compare_digest.

Concurrency:
  The attempt increment is a single UPDATE ... SET attempts = attempts + 1,
  and consuming a code is UPDATE ... WHERE is_used = 0 checked by rowcount.
  Two concurrent correct verifications cannot both succeed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable

from sqlalchemy import and_, select
from sqlalchemy.engine import Engine

from auth.models import OneTimePasscode, OtpFailure, OtpPurpose, OtpVerification
from auth.schema import from_epoch, otps

logger = logging.getLogger("petrosmart.auth.otp")

_CODE_DIGITS = 6

MSG_NOT_FOUND = "Invalid or expired OTP"
MSG_EXPIRED = "OTP has expired"
MSG_LOCKED = "OTP is locked due to too many failed attempts"
MSG_MISMATCH = "Invalid OTP"


def generate_code() -> str:
    """Return a uniformly random 6-digit code. Leading zeros are kept."""
    return f"{secrets.randbelow(10**_CODE_DIGITS):0{_CODE_DIGITS}d}"


class OtpStore:
    """Repository and verifier for OneTimePasscode records.

    Usage:
        otp = OtpStore(engine, secret_key=settings.secret_key)
        code = otp.issue("a@b.com", OtpPurpose.PASSWORD_RESET, account_id=7)
        result = otp.verify("a@b.com", code, OtpPurpose.PASSWORD_RESET)
        assert result.success
    """

    def __init__(
        self,
        engine: Engine,
        secret_key: str,
        expiry_minutes: int = 10,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self._secret = secret_key.encode("utf-8")
        self.ttl_seconds = expiry_minutes * 60
        self.max_attempts = max_attempts
        self._clock = clock

    def _digest(self, code: str) -> str:
        return hmac.new(self._secret, code.encode("utf-8"), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Issue / invalidate
    # ------------------------------------------------------------------

    def issue(self, email: str, purpose: OtpPurpose, account_id: int | None = None) -> str:
        """Persist a fresh code for (email, purpose) and return the plaintext.

        The caller is responsible for delivery. Older unused codes are left
        alone -- call invalidate_active() first when only one code may be live.
        """
        code = generate_code()
        now = self._clock()
        with self.engine.begin() as conn:
            conn.execute(
                otps.insert().values(
                    email=email,
                    purpose=OtpPurpose(purpose).value,
                    code_hash=self._digest(code),
                    account_id=account_id,
                    created_at=now,
                    expires_at=now + self.ttl_seconds,
                    is_used=0,
                    attempts=0,
                    is_locked=0,
                )
            )
        return code

    def invalidate_active(self, email: str, purpose: OtpPurpose) -> int:
        """Mark every unused code for (email, purpose) as used. Returns rows touched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                otps.update()
                .where(and_(otps.c.email == email, otps.c.purpose == OtpPurpose(purpose).value, otps.c.is_used == 0))
                .values(is_used=1)
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def latest_unused(self, email: str, purpose: OtpPurpose) -> OneTimePasscode | None:
        """Return the authoritative code for (email, purpose): newest unused, ties broken by id."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(otps)
                .where(and_(otps.c.email == email, otps.c.purpose == OtpPurpose(purpose).value, otps.c.is_used == 0))
                .order_by(otps.c.created_at.desc(), otps.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def verify(self, email: str, code: str, purpose: OtpPurpose) -> OtpVerification:
        otp = self.latest_unused(email, purpose)
        if otp is None:
            return OtpVerification(success=False, reason=OtpFailure.NOT_FOUND, message=MSG_NOT_FOUND)

        if self._clock() > otp.expires_at.timestamp():
            return OtpVerification(success=False, reason=OtpFailure.EXPIRED, message=MSG_EXPIRED)

        if otp.is_locked or otp.attempts >= self.max_attempts:
            return OtpVerification(success=False, reason=OtpFailure.LOCKED, message=MSG_LOCKED, attempts_left=0)

        if not hmac.compare_digest(self._digest(code or ""), otp.code_hash):
            return self._record_failed_attempt(otp)

        with self.engine.begin() as conn:
            result = conn.execute(
                otps.update().where(and_(otps.c.id == otp.id, otps.c.is_used == 0, otps.c.is_locked == 0)).values(is_used=1)
            )
        if result.rowcount != 1:
            # Another request consumed or locked it between our read and write.
            return OtpVerification(success=False, reason=OtpFailure.NOT_FOUND, message=MSG_NOT_FOUND)
        return OtpVerification(success=True)

    def _record_failed_attempt(self, otp: OneTimePasscode) -> OtpVerification:
        with self.engine.begin() as conn:
            conn.execute(otps.update().where(otps.c.id == otp.id).values(attempts=otps.c.attempts + 1))
            attempts = conn.execute(select(otps.c.attempts).where(otps.c.id == otp.id)).scalar_one()
            if attempts >= self.max_attempts:
                conn.execute(otps.update().where(otps.c.id == otp.id).values(is_locked=1))

        if attempts >= self.max_attempts:
            logger.warning("OTP %d locked after %d failed attempts (purpose=%s)", otp.id, attempts, otp.purpose.value)
            return OtpVerification(success=False, reason=OtpFailure.LOCKED, message=MSG_LOCKED, attempts_left=0)
        return OtpVerification(
            success=False,
            reason=OtpFailure.MISMATCH,
            message=MSG_MISMATCH,
            attempts_left=self.max_attempts - attempts,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Delete every code past its expiry. Returns number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(otps.delete().where(otps.c.expires_at < self._clock()))
        return result.rowcount


def _row_to_otp(row) -> OneTimePasscode:
    return OneTimePasscode(
        id=row.id,
        email=row.email,
        purpose=OtpPurpose(row.purpose),
        code_hash=row.code_hash,
        account_id=row.account_id,
        created_at=from_epoch(row.created_at),
        expires_at=from_epoch(row.expires_at),
        is_used=bool(row.is_used),
        attempts=row.attempts,
        is_locked=bool(row.is_locked),
    )
