"""
auth/service.py -- Credential & session orchestration.

CredentialService composes the stores into the user-facing flows:

  registration      register / register_with_otp + complete_otp_registration
                    / register_with_invitation / provision_account
  sessions          login / federated_login / logout / logout_everywhere /
                    verify_session
  passwords         forgot_password / reset_password / change_password
  profile           update_profile / change_role / get_account

Every user-correctable failure is an AuthError subclass (auth/errors.py).
Infrastructure errors propagate untouched.

Enumeration resistance:
  login() raises the same InvalidCredentialsError for an unknown username and
  a wrong password, and runs bcrypt in both cases. forgot_password() returns
  the same message whether or not the email belongs to an account. The audit
  log keeps the real reason in both cases.

Password replacement order (reset and change):
  reuse check -> hash -> record OLD hash in history -> store new hash ->
  account-wide revocation floor -> notify -> audit. If the process dies
  between the history write and the password write, the worst case is that
  the old password is rejected as "reused" on the next attempt.

The service is synchronous and holds no locks; per-key atomicity comes from
the stores' conditional UPDATEs. FastAPI routes that call into it are plain
def endpoints so bcrypt runs in the threadpool.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
import secrets
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.access import Action, Resource, can, ensure_can
from auth.audit import AuditLog
from auth.blacklist import TokenBlacklist
from auth.errors import (
    DuplicateResourceError,
    ExpiredError,
    ExpiredOrInvalidOtpError,
    ForbiddenError,
    InvalidCredentialsError,
    OtpLockedError,
    PasswordReusedError,
    RateLimitExceededError,
    ResourceNotFoundError,
    SessionRejection,
    UnauthorizedError,
)
from auth.invitations import PRIVILEGED_ROLES, InvitationManager, InvitationStore
from auth.models import (
    DEFAULT_ROLE,
    Account,
    AuditAction,
    AuthResult,
    FederatedProfile,
    InvitationProfile,
    OtpFailure,
    OtpPurpose,
    OtpVerification,
    RegistrationProfile,
    Role,
    RoleType,
    SessionClaims,
)
from auth.notifier import LoggingNotifier, Notifier
from auth.otp import OtpStore
from auth.password_history import PasswordHistoryGuard
from auth.store import AccountStore, RoleStore
from auth.tokens import TokenSigner, check_account_password, hash_password, verify_password

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from core.config import Settings

logger = logging.getLogger("petrosmart.auth.service")

MSG_OTP_SENT = "OTP sent to email. Please verify to complete registration."
MSG_RESET_REQUESTED = "If the email exists, a password reset code has been sent."
MSG_RESET_SUCCESS = "Password reset successful. Please login with your new password."

_USERNAME_ATTEMPTS = 10
_USERNAME_SAFE = re.compile(r"[^a-z0-9._-]")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialService:
    """Orchestrates registration, login, password reset, and session revocation.

    Build one per process with from_engine() and share it; it keeps no
    per-request state.
    """

    def __init__(
        self,
        accounts: AccountStore,
        roles: RoleStore,
        otp: OtpStore,
        history: PasswordHistoryGuard,
        audit: AuditLog,
        blacklist: TokenBlacklist,
        invitations: InvitationManager,
        signer: TokenSigner,
        notifier: Notifier,
        *,
        token_expire_seconds: int = 24 * 3600,
        reset_max_requests: int = 3,
        reset_window_seconds: int = 24 * 3600,
        audit_retention_days: int = 90,
    ) -> None:
        self.accounts = accounts
        self.roles = roles
        self.otp = otp
        self.history = history
        self.audit = audit
        self.blacklist = blacklist
        self.invitations = invitations
        self.signer = signer
        self.notifier = notifier
        self.token_expire_seconds = token_expire_seconds
        self.reset_max_requests = reset_max_requests
        self.reset_window_seconds = reset_window_seconds
        self.audit_retention_days = audit_retention_days

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        settings: Settings,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> CredentialService:
        """Wire every store onto one engine using the given settings."""
        notifier = notifier or LoggingNotifier(reveal_codes=settings.debug)
        return cls(
            accounts=AccountStore(engine, clock=clock),
            roles=RoleStore(engine),
            otp=OtpStore(
                engine,
                secret_key=settings.secret_key,
                expiry_minutes=settings.otp_expiry_minutes,
                max_attempts=settings.otp_max_attempts,
                clock=clock,
            ),
            history=PasswordHistoryGuard(engine, limit=settings.password_history_limit, clock=clock),
            audit=AuditLog(engine, clock=clock),
            blacklist=TokenBlacklist(engine, clock=clock),
            invitations=InvitationManager(
                InvitationStore(engine, clock=clock),
                notifier,
                frontend_url=settings.frontend_url,
                expiry_days=settings.invitation_expiry_days,
                clock=clock,
            ),
            signer=TokenSigner(settings.secret_key, expire_seconds=settings.token_expire_seconds, clock=clock),
            notifier=notifier,
            token_expire_seconds=settings.token_expire_seconds,
            reset_max_requests=settings.password_reset_max_requests,
            reset_window_seconds=settings.password_reset_window_hours * 3600,
            audit_retention_days=settings.audit_retention_days,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _issue(self, account: Account) -> AuthResult:
        token = self.signer.sign(account.id, account.username, account.role.name)
        return AuthResult(access_token=token, account=account, expires_in=self.signer.expire_seconds)

    def _role(self, name: RoleType) -> Role:
        role = self.roles.find_by_name(name)
        if role is None:
            raise RuntimeError(f"Role {RoleType(name).value!r} is not seeded")
        return role

    def _ensure_unique(self, username: str, email: str) -> None:
        if self.accounts.find_by_username(username) is not None:
            raise DuplicateResourceError("User", "username")
        if self.accounts.find_by_email(email) is not None:
            raise DuplicateResourceError("User", "email")

    def _create(self, account: Account, on_insert: Callable | None = None) -> Account:
        try:
            return self.accounts.create(account, on_insert=on_insert)
        except IntegrityError as exc:
            # Lost a race against a concurrent registration for the same identity.
            raise DuplicateResourceError("User") from exc

    def _notify(self, send: Callable, *args) -> None:
        try:
            send(*args)
        except Exception:
            logger.exception("Notification %s failed", getattr(send, "__name__", send))

    @staticmethod
    def _otp_error(result: OtpVerification) -> Exception:
        if result.reason is OtpFailure.LOCKED:
            return OtpLockedError(result.message or "OTP is locked due to too many failed attempts")
        return ExpiredOrInvalidOtpError(
            result.message or "Invalid or expired OTP",
            reason=result.reason,
            attempts_left=result.attempts_left,
        )

    @staticmethod
    def _privileged_check(actor: Account | None, *roles: RoleType) -> None:
        if actor is None or actor.role.name is RoleType.SUPER_ADMIN:
            return
        for role in roles:
            if RoleType(role) in PRIVILEGED_ROLES:
                raise ForbiddenError(f"Only a super administrator can assign the {RoleType(role).value} role")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        profile: RegistrationProfile,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Create an account with the default role and sign it in.

        Raises:
            DuplicateResourceError: username or email already taken
        """
        email = normalize_email(profile.email)
        self._ensure_unique(profile.username, email)
        account = self._create(
            Account(
                username=profile.username,
                email=email,
                role=self._role(DEFAULT_ROLE),
                password_hash=hash_password(profile.password),
                first_name=profile.first_name,
                last_name=profile.last_name,
                phone=profile.phone,
            )
        )
        self.audit.record(
            AuditAction.REGISTRATION_SUCCESS,
            success=True,
            account_id=account.id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
            metadata={"method": "direct"},
        )
        logger.info("Registered account %d (%s)", account.id, account.username)
        return self._issue(account)

    def register_with_otp(self, profile: RegistrationProfile) -> str:
        """Check uniqueness and email a registration code. Nothing is created yet."""
        email = normalize_email(profile.email)
        self._ensure_unique(profile.username, email)
        self.otp.invalidate_active(email, OtpPurpose.REGISTRATION)
        code = self.otp.issue(email, OtpPurpose.REGISTRATION)
        self._notify(self.notifier.send_otp, email, code, OtpPurpose.REGISTRATION)
        return MSG_OTP_SENT

    def complete_otp_registration(
        self,
        email: str,
        code: str,
        profile: RegistrationProfile,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Verify the registration code and create a pre-verified account.

        Uniqueness is checked again here: another registration may have
        claimed the username or email since register_with_otp().

        Raises:
            DuplicateResourceError:   username or email taken in the meantime
            ExpiredOrInvalidOtpError: code missing, expired, or wrong
            OtpLockedError:           too many wrong guesses on this code
        """
        email = normalize_email(email)
        self._ensure_unique(profile.username, email)
        result = self.otp.verify(email, code, OtpPurpose.REGISTRATION)
        if not result.success:
            self.audit.record(
                AuditAction.OTP_VERIFICATION_FAILED,
                success=False,
                email=email,
                source_address=source_address,
                user_agent=user_agent,
                metadata={
                    "purpose": OtpPurpose.REGISTRATION.value,
                    "reason": result.message,
                    "attempts_left": result.attempts_left,
                },
            )
            raise self._otp_error(result)

        account = self._create(
            Account(
                username=profile.username,
                email=email,
                role=self._role(DEFAULT_ROLE),
                password_hash=hash_password(profile.password),
                first_name=profile.first_name,
                last_name=profile.last_name,
                phone=profile.phone,
                is_email_verified=True,
            )
        )
        self.audit.record(
            AuditAction.REGISTRATION_SUCCESS,
            success=True,
            account_id=account.id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
            metadata={"method": "otp"},
        )
        return self._issue(account)

    def register_with_invitation(
        self,
        token: str,
        profile: InvitationProfile,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Create an account from an invitation. Email, role and station come from the invitation.

        Raises:
            ResourceNotFoundError:  unknown token
            ExpiredError:           invitation accepted, revoked, or expired
            DuplicateResourceError: username or email already taken
        """
        invitation = self.invitations.validate(token)
        self._ensure_unique(profile.username, invitation.email)

        def _claim(conn, account_id: int) -> None:
            # Revoked or accepted since validate(): no account.
            if not self.invitations.mark_accepted(invitation, account_id, conn=conn):
                raise ExpiredError("Invitation is no longer valid")

        account = self._create(
            Account(
                username=profile.username,
                email=invitation.email,
                role=self._role(invitation.role),
                password_hash=hash_password(profile.password),
                first_name=profile.first_name,
                last_name=profile.last_name,
                phone=profile.phone,
                is_email_verified=True,
                station_id=invitation.station_id,
            ),
            on_insert=_claim,
        )
        self.audit.record(
            AuditAction.INVITATION_ACCEPTED,
            success=True,
            account_id=account.id,
            email=invitation.email,
            source_address=source_address,
            user_agent=user_agent,
            metadata={"invitation_id": invitation.id, "role": invitation.role.value},
        )
        return self._issue(account)

    def provision_account(
        self,
        profile: RegistrationProfile,
        role: RoleType,
        station_id: int | None = None,
        actor: Account | None = None,
    ) -> Account:
        """Create an account on someone's behalf (admin UI or operator CLI).

        actor=None means an operator at the console. Otherwise the actor must
        be allowed to create users, and only a super_admin may provision an
        admin or super_admin.
        """
        role = RoleType(role)
        if actor is not None:
            ensure_can(actor, Action.CREATE, Resource.USER)
        self._privileged_check(actor, role)
        email = normalize_email(profile.email)
        self._ensure_unique(profile.username, email)
        account = self._create(
            Account(
                username=profile.username,
                email=email,
                role=self._role(role),
                password_hash=hash_password(profile.password),
                first_name=profile.first_name,
                last_name=profile.last_name,
                phone=profile.phone,
                is_email_verified=True,
                station_id=station_id,
            )
        )
        self.audit.record(
            AuditAction.REGISTRATION_SUCCESS,
            success=True,
            account_id=account.id,
            email=email,
            metadata={"method": "provisioned", "role": role.value, "actor_id": actor.id if actor else None},
        )
        logger.info("Provisioned %s account %d (%s)", role.value, account.id, account.username)
        return account

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(
        self,
        username: str,
        password: str,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Password login.

        Raises:
            InvalidCredentialsError: unknown username or wrong password (indistinguishable)
        """
        account = self.accounts.find_by_username(username)
        if not check_account_password(account, password):
            self.audit.record(
                AuditAction.LOGIN_FAILED,
                success=False,
                account_id=account.id if account else None,
                email=account.email if account else None,
                source_address=source_address,
                user_agent=user_agent,
                metadata={"username": username, "reason": "unknown username" if account is None else "wrong password"},
            )
            raise InvalidCredentialsError()

        self.audit.record(
            AuditAction.LOGIN_SUCCESS,
            success=True,
            account_id=account.id,
            email=account.email,
            source_address=source_address,
            user_agent=user_agent,
        )
        return self._issue(account)

    def federated_login(
        self,
        profile: FederatedProfile,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Sign in with a provider-asserted identity, linking or provisioning as needed.

        Lookup order: federation id, then email (links the identity and marks
        the email verified), then a new account with the default role, an
        unusable random password, and a username derived from the email.
        """
        email = normalize_email(profile.email)
        branch = "existing"
        account = self.accounts.find_by_federation_id(profile.subject)
        if account is None:
            account = self.accounts.find_by_email(email)
            if account is not None:
                self.accounts.link_federation(account.id, profile.subject)
                account = self.accounts.find_by_id(account.id)
                branch = "linked"
            else:
                account = self._provision_federated(profile, email)
                branch = "created"

        self.audit.record(
            AuditAction.FEDERATED_LOGIN,
            success=True,
            account_id=account.id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
            metadata={"provider": "google", "branch": branch},
        )
        return self._issue(account)

    def _provision_federated(self, profile: FederatedProfile, email: str) -> Account:
        local = _USERNAME_SAFE.sub("", email.split("@", 1)[0]) or "user"
        role = self._role(DEFAULT_ROLE)
        for _ in range(_USERNAME_ATTEMPTS):
            candidate = f"{local}{secrets.randbelow(1000):03d}"
            if self.accounts.find_by_username(candidate) is not None:
                continue
            try:
                return self.accounts.create(
                    Account(
                        username=candidate,
                        email=email,
                        role=role,
                        password_hash=hash_password(secrets.token_urlsafe(32)),
                        first_name=profile.first_name,
                        last_name=profile.last_name,
                        is_email_verified=True,
                        federation_id=profile.subject,
                    )
                )
            except IntegrityError:
                logger.debug("Username %s taken concurrently, retrying", candidate)
        raise RuntimeError(f"Could not derive a unique username for {email}")

    def verify_session(self, token: str) -> SessionClaims:
        """Validate a bearer token: signature and expiry, then the blacklist, then the account floor.

        Raises:
            UnauthorizedError: with reason invalid_token, token_expired,
                token_revoked, or session_revoked
        """
        if not token:
            raise UnauthorizedError(SessionRejection.MISSING)
        claims = self.signer.decode(token)
        if self.blacklist.is_token_blacklisted(token):
            raise UnauthorizedError(SessionRejection.TOKEN_REVOKED)
        if self.blacklist.is_session_revoked(claims.account_id, claims.issued_at):
            raise UnauthorizedError(SessionRejection.SESSION_REVOKED)
        return claims

    def current_account(self, claims: SessionClaims) -> Account:
        """The account a verified session belongs to. Deleted accounts read as an invalid token."""
        account = self.accounts.find_by_id(claims.account_id)
        if account is None:
            raise UnauthorizedError(SessionRejection.INVALID)
        return account

    def logout(self, token: str) -> None:
        """Blacklist one token for the rest of its lifetime."""
        claims = self.signer.decode(token)
        self.blacklist.blacklist_token(token, self.signer.remaining_lifetime(claims))
        logger.info("Account %d logged out", claims.account_id)

    def logout_everywhere(self, account_id: int, source_address: str | None = None) -> None:
        """Revoke every token issued to the account so far."""
        self.blacklist.blacklist_all_for_account(account_id, self.token_expire_seconds)
        self.audit.record(
            AuditAction.SESSIONS_REVOKED,
            success=True,
            account_id=account_id,
            source_address=source_address,
            metadata={"reason": "logout_everywhere"},
        )

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def forgot_password(
        self,
        email: str,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """Email a password-reset code if the account exists.

        The return value is identical for known and unknown emails.

        Raises:
            RateLimitExceededError: too many successful requests for this email
                in the rolling window
        """
        email = normalize_email(email)
        recent = self.audit.count(
            AuditAction.PASSWORD_RESET_REQUESTED,
            email=email,
            success=True,
            window_seconds=self.reset_window_seconds,
        )
        if recent >= self.reset_max_requests:
            self.audit.record(
                AuditAction.PASSWORD_RESET_REQUESTED,
                success=False,
                email=email,
                source_address=source_address,
                user_agent=user_agent,
                metadata={"reason": "Rate limit exceeded"},
            )
            logger.warning("Password reset rate limit hit for %s", email)
            raise RateLimitExceededError(retry_after=self.reset_window_seconds)

        account = self.accounts.find_by_email(email)
        if account is None:
            self.audit.record(
                AuditAction.PASSWORD_RESET_REQUESTED,
                success=False,
                email=email,
                source_address=source_address,
                user_agent=user_agent,
                metadata={"reason": "Account not found"},
            )
            return MSG_RESET_REQUESTED

        self.otp.invalidate_active(email, OtpPurpose.PASSWORD_RESET)
        code = self.otp.issue(email, OtpPurpose.PASSWORD_RESET, account_id=account.id)
        self._notify(self.notifier.send_otp, email, code, OtpPurpose.PASSWORD_RESET)
        self.audit.record(
            AuditAction.PASSWORD_RESET_REQUESTED,
            success=True,
            account_id=account.id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
        )
        return MSG_RESET_REQUESTED

    def reset_password(
        self,
        email: str,
        code: str,
        new_password: str,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """Replace the password using an emailed code and revoke every existing session.

        Raises:
            ExpiredOrInvalidOtpError: code missing, expired, or wrong (with attempts_left)
            OtpLockedError:           too many wrong guesses on this code
            ResourceNotFoundError:    the account disappeared after the code was issued
            PasswordReusedError:      new password matches the current or a recent one
        """
        email = normalize_email(email)
        result = self.otp.verify(email, code, OtpPurpose.PASSWORD_RESET)
        if not result.success:
            self.audit.record(
                AuditAction.PASSWORD_RESET_FAILED,
                success=False,
                email=email,
                source_address=source_address,
                user_agent=user_agent,
                metadata={"reason": result.message, "attempts_left": result.attempts_left},
            )
            raise self._otp_error(result)

        account = self.accounts.find_by_email(email)
        if account is None:
            self.audit.record(
                AuditAction.PASSWORD_RESET_FAILED,
                success=False,
                email=email,
                source_address=source_address,
                user_agent=user_agent,
                metadata={"reason": "Account not found"},
            )
            raise ResourceNotFoundError("User")

        self._replace_password(account, new_password, AuditAction.PASSWORD_RESET_FAILED, source_address, user_agent)
        self._notify(self.notifier.send_password_changed_notice, account.email, account.full_name, source_address)
        self.audit.record(
            AuditAction.PASSWORD_RESET_SUCCESS,
            success=True,
            account_id=account.id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
        )
        return MSG_RESET_SUCCESS

    def change_password(
        self,
        account_id: int,
        current_password: str,
        new_password: str,
        source_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Authenticated password change. Returns a fresh session; older ones are revoked.

        Raises:
            ResourceNotFoundError:   unknown account
            InvalidCredentialsError: current password is wrong
            PasswordReusedError:     new password matches the current or a recent one
        """
        account = self.accounts.find_by_id(account_id)
        if account is None:
            raise ResourceNotFoundError("User", account_id)
        if not verify_password(current_password, account.password_hash):
            self.audit.record(
                AuditAction.PASSWORD_CHANGED,
                success=False,
                account_id=account.id,
                email=account.email,
                source_address=source_address,
                user_agent=user_agent,
                metadata={"reason": "Current password incorrect"},
            )
            raise InvalidCredentialsError("Current password is incorrect")

        self._replace_password(account, new_password, AuditAction.PASSWORD_CHANGED, source_address, user_agent)
        self._notify(self.notifier.send_password_changed_notice, account.email, account.full_name, source_address)
        self.audit.record(
            AuditAction.PASSWORD_CHANGED,
            success=True,
            account_id=account.id,
            email=account.email,
            source_address=source_address,
            user_agent=user_agent,
        )
        return self._issue(self.accounts.find_by_id(account.id))

    def _replace_password(
        self,
        account: Account,
        new_password: str,
        failure_action: AuditAction,
        source_address: str | None,
        user_agent: str | None,
    ) -> None:
        if verify_password(new_password, account.password_hash) or self.history.is_reused(account.id, new_password):
            self.audit.record(
                failure_action,
                success=False,
                account_id=account.id,
                email=account.email,
                source_address=source_address,
                user_agent=user_agent,
                metadata={"reason": "Password reused"},
            )
            raise PasswordReusedError()

        new_hash = hash_password(new_password)
        self.history.record(account.id, account.password_hash)
        self.accounts.update_password(account.id, new_hash)
        self.blacklist.blacklist_all_for_account(account.id, self.token_expire_seconds)
        logger.info("Password replaced for account %d; existing sessions revoked", account.id)

    # ------------------------------------------------------------------
    # Profile and role administration
    # ------------------------------------------------------------------

    def get_account(self, account_id: int, actor: Account | None = None) -> Account:
        account = self.accounts.find_by_id(account_id)
        if account is None:
            raise ResourceNotFoundError("User", account_id)
        if actor is not None:
            ensure_can(actor, Action.READ, Resource.USER, account)
        return account

    def _authorize_profile_update(self, actor: Account | None, account: Account, fields: dict) -> None:
        if actor is None:
            return
        ensure_can(actor, Action.UPDATE, Resource.USER, account)
        if "station_id" in fields and not can(actor, Action.MANAGE, Resource.STATION):
            raise ForbiddenError("You do not have permission to change the station assignment")

    def _authorize_role_change(self, actor: Account | None, account: Account, role: RoleType) -> None:
        if actor is not None:
            ensure_can(actor, Action.UPDATE, Resource.USER, account)
            if actor.id == account.id and actor.role.name is not RoleType.SUPER_ADMIN:
                raise ForbiddenError("You cannot change your own role")
        self._privileged_check(actor, role, account.role.name)

    def _apply_role(self, account: Account, role: RoleType, actor: Account | None) -> None:
        self.accounts.update_role(account.id, self._role(role))
        # The role claim in outstanding tokens is now stale.
        self.blacklist.blacklist_all_for_account(account.id, self.token_expire_seconds)
        self.audit.record(
            AuditAction.SESSIONS_REVOKED,
            success=True,
            account_id=account.id,
            email=account.email,
            metadata={"reason": "role_changed", "role": role.value, "actor_id": actor.id if actor else None},
        )
        logger.info("Account %d role changed %s -> %s", account.id, account.role.name.value, role.value)

    def update_profile(
        self,
        account_id: int,
        actor: Account | None = None,
        role: RoleType | None = None,
        **fields,
    ) -> Account:
        """Update names, phone, station, and optionally the role. Passwords go through change/reset only.

        Moving an account to another station needs the station-management
        capability, not just the right to edit the user record. Every check
        runs before the first write, so a rejected role change leaves the
        profile fields untouched too.
        """
        account = self.get_account(account_id, actor=actor)
        role = RoleType(role) if role is not None else None
        role_changes = role is not None and role is not account.role.name
        if fields:
            self._authorize_profile_update(actor, account, fields)
        if role_changes:
            self._authorize_role_change(actor, account, role)

        if fields:
            self.accounts.update_profile(account_id, **fields)
        if role_changes:
            self._apply_role(account, role, actor)
        return self.accounts.find_by_id(account_id)

    def change_role(self, account_id: int, role: RoleType, actor: Account | None = None) -> Account:
        """Assign a different role. Nobody but a super_admin changes their own role."""
        role = RoleType(role)
        account = self.get_account(account_id)
        self._authorize_role_change(actor, account, role)
        self._apply_role(account, role, actor)
        return self.accounts.find_by_id(account_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> dict[str, int]:
        """Run every expiry/retention cleanup once. Returns rows removed per store."""
        removed = {
            "otps": self.otp.purge_expired(),
            "blacklist": self.blacklist.purge_expired(),
            "invitations": self.invitations.purge_expired(),
            "audit_events": self.audit.purge_older_than(self.audit_retention_days),
        }
        logger.info("Purge complete: %s", ", ".join(f"{k}={v}" for k, v in removed.items()))
        return removed
