"""
auth/audit.py -- Append-only log of security-relevant events.

Besides being a record for operators, the log is the source of truth for the
password-reset rate limit: CredentialService.forgot_password() counts recent
successful password_reset_requested events per email with count().

Rows are never updated. purge_older_than() is the only delete and is driven
by the retention setting (audit_retention_days, default 90).

metadata is a free-form dict serialized to JSON. It holds the reason a
failure happened (e.g. "Password reused", "Rate limit exceeded") so the true
cause is kept internally even when the caller sees a generic message.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.engine import Engine

from auth.models import AuditAction, AuditEvent
from auth.schema import audit_events, from_epoch

logger = logging.getLogger("petrosmart.auth.audit")

_MAX_USER_AGENT = 512


class AuditLog:
    """Writer and query helper for audit events.

    Usage:
        audit = AuditLog(engine)
        audit.record(AuditAction.LOGIN_FAILED, success=False, email="a@b.com",
                     metadata={"reason": "unknown username"})
        audit.count(AuditAction.LOGIN_FAILED, email="a@b.com", window_seconds=900)
    """

    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time) -> None:
        self.engine = engine
        self._clock = clock

    def record(
        self,
        action: AuditAction,
        *,
        success: bool,
        account_id: int | None = None,
        email: str | None = None,
        source_address: str | None = None,
        user_agent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one event and return it with its id."""
        now = self._clock()
        if user_agent and len(user_agent) > _MAX_USER_AGENT:
            user_agent = user_agent[:_MAX_USER_AGENT]
        with self.engine.begin() as conn:
            result = conn.execute(
                audit_events.insert().values(
                    account_id=account_id,
                    action=AuditAction(action).value,
                    email=email,
                    source_address=source_address,
                    user_agent=user_agent,
                    metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
                    success=1 if success else 0,
                    created_at=now,
                )
            )
        logger.debug("audit %s success=%s account=%s", AuditAction(action).value, success, account_id)
        return AuditEvent(
            id=result.inserted_primary_key[0],
            action=AuditAction(action),
            success=success,
            account_id=account_id,
            email=email,
            source_address=source_address,
            user_agent=user_agent,
            metadata=dict(metadata or {}),
            created_at=from_epoch(now),
        )

    def count(
        self,
        action: AuditAction,
        *,
        window_seconds: float,
        email: str | None = None,
        success: bool | None = None,
    ) -> int:
        """Count events of one action in the rolling window ending now.

        email and success narrow the count when given.
        """
        clauses = [
            audit_events.c.action == AuditAction(action).value,
            audit_events.c.created_at >= self._clock() - window_seconds,
        ]
        if email is not None:
            clauses.append(audit_events.c.email == email)
        if success is not None:
            clauses.append(audit_events.c.success == (1 if success else 0))
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(audit_events).where(and_(*clauses))).scalar_one()

    def list_for_account(self, account_id: int, limit: int = 50) -> list[AuditEvent]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(audit_events)
                .where(audit_events.c.account_id == account_id)
                .order_by(audit_events.c.created_at.desc(), audit_events.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_event(r) for r in rows]

    def list_for_email(self, email: str, limit: int = 50) -> list[AuditEvent]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(audit_events)
                .where(audit_events.c.email == email)
                .order_by(audit_events.c.created_at.desc(), audit_events.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_event(r) for r in rows]

    def purge_older_than(self, days: int) -> int:
        """Retention cleanup. Returns number of events deleted."""
        cutoff = self._clock() - days * 86400
        with self.engine.begin() as conn:
            result = conn.execute(audit_events.delete().where(audit_events.c.created_at < cutoff))
        if result.rowcount:
            logger.info("Purged %d audit event(s) older than %d days", result.rowcount, days)
        return result.rowcount


def _row_to_event(row) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        action=AuditAction(row.action),
        success=bool(row.success),
        account_id=row.account_id,
        email=row.email,
        source_address=row.source_address,
        user_agent=row.user_agent,
        metadata=json.loads(row.metadata_json) if row.metadata_json else {},
        created_at=from_epoch(row.created_at),
    )
