"""
auth/notifier.py -- Outbound notification interface used by the auth core.

Delivery (SMTP, templating, queueing) lives outside this package. The core
only needs something that satisfies the Notifier protocol. Calls are
fire-and-forget: CredentialService and InvitationManager catch and log any
exception a notifier raises so a failed send never rolls back the state
change that triggered it.

LoggingNotifier is the default. It writes one log line per notification and,
when reveal_codes is on (DEBUG=true), includes the OTP / link so local
development works without a mail server.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from auth.models import OtpPurpose, RoleType

logger = logging.getLogger("petrosmart.auth.notifier")


class Notifier(Protocol):
    def send_otp(self, email: str, code: str, purpose: OtpPurpose) -> None: ...

    def send_password_changed_notice(self, email: str, name: str, source_address: str | None) -> None: ...

    def send_invitation(
        self,
        email: str,
        link: str,
        role: RoleType,
        inviter_name: str,
        expires_at: datetime,
    ) -> None: ...


class LoggingNotifier:
    def __init__(self, reveal_codes: bool = False) -> None:
        self.reveal_codes = reveal_codes

    def send_otp(self, email: str, code: str, purpose: OtpPurpose) -> None:
        if self.reveal_codes:
            logger.info("OTP for %s (%s): %s", email, OtpPurpose(purpose).value, code)
        else:
            logger.info("OTP issued for %s (%s)", email, OtpPurpose(purpose).value)

    def send_password_changed_notice(self, email: str, name: str, source_address: str | None) -> None:
        logger.info("Password changed notice for %s (%s) from %s", email, name, source_address or "unknown")

    def send_invitation(
        self,
        email: str,
        link: str,
        role: RoleType,
        inviter_name: str,
        expires_at: datetime,
    ) -> None:
        if self.reveal_codes:
            logger.info("Invitation for %s as %s from %s: %s", email, RoleType(role).value, inviter_name, link)
        else:
            logger.info(
                "Invitation sent to %s as %s from %s (expires %s)",
                email,
                RoleType(role).value,
                inviter_name,
                expires_at.isoformat(),
            )
