"""
auth/blacklist.py -- Revocation registry for session tokens.

Two kinds of entry:

  token_blacklist      one revoked token, keyed by SHA-256(token) so the raw
                       bearer credential is never stored. Written by logout
                       with a TTL equal to the token's remaining lifetime.

  session_revocations  an account-wide floor. Every token whose iat is
                       strictly earlier than revoked_at is rejected. Written
                       by password reset / change and logout-everywhere with
                       a TTL equal to the maximum token lifetime, after which
                       no token older than the floor can still be valid.

Both writes are upserts, so revoking twice is harmless. SQLite and PostgreSQL
use INSERT ... ON CONFLICT DO UPDATE. Other dialects update first and insert
when no row matched. Lookups ignore rows whose expires_at has passed;
purge_expired() deletes them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable

from sqlalchemy import Table, and_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine

from auth.schema import session_revocations, token_blacklist

logger = logging.getLogger("petrosmart.auth.blacklist")

# Dialects with INSERT ... ON CONFLICT DO UPDATE.
_NATIVE_UPSERT = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenBlacklist:
    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time) -> None:
        self.engine = engine
        self._clock = clock

    def _upsert(self, conn: Connection, table: Table, key: str, **values) -> None:
        """Insert values, or overwrite the row whose key column matches."""
        dialect_insert = _NATIVE_UPSERT.get(self.engine.dialect.name)
        if dialect_insert is not None:
            stmt = dialect_insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c[key]],
                set_={name: stmt.excluded[name] for name in values if name != key},
            )
            conn.execute(stmt)
            return
        updated = conn.execute(table.update().where(table.c[key] == values[key]).values(**values)).rowcount
        if not updated:
            conn.execute(table.insert().values(**values))

    # ------------------------------------------------------------------
    # Single tokens
    # ------------------------------------------------------------------

    def blacklist_token(self, token: str, ttl_seconds: int) -> None:
        """Revoke one token for ttl_seconds (at least its remaining validity)."""
        expires_at = self._clock() + max(ttl_seconds, 1)
        with self.engine.begin() as conn:
            self._upsert(conn, token_blacklist, "token_digest", token_digest=token_digest(token), expires_at=expires_at)

    def is_token_blacklisted(self, token: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(token_blacklist.c.token_digest).where(
                    and_(
                        token_blacklist.c.token_digest == token_digest(token),
                        token_blacklist.c.expires_at > self._clock(),
                    )
                )
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Account-wide floor
    # ------------------------------------------------------------------

    def blacklist_all_for_account(self, account_id: int, ttl_seconds: int) -> float:
        """Set the account's revocation floor to now. Returns the floor."""
        now = self._clock()
        with self.engine.begin() as conn:
            self._upsert(
                conn,
                session_revocations,
                "account_id",
                account_id=account_id,
                revoked_at=now,
                expires_at=now + max(ttl_seconds, 1),
            )
        logger.info("Revoked all sessions for account %d", account_id)
        return now

    def revocation_floor(self, account_id: int) -> float | None:
        with self.engine.connect() as conn:
            return conn.execute(
                select(session_revocations.c.revoked_at).where(
                    and_(
                        session_revocations.c.account_id == account_id,
                        session_revocations.c.expires_at > self._clock(),
                    )
                )
            ).scalar_one_or_none()

    def is_session_revoked(self, account_id: int, issued_at: float) -> bool:
        """True iff a live floor exists and the token was issued strictly before it."""
        floor = self.revocation_floor(account_id)
        return floor is not None and issued_at < floor

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        now = self._clock()
        with self.engine.begin() as conn:
            removed = conn.execute(token_blacklist.delete().where(token_blacklist.c.expires_at <= now)).rowcount
            removed += conn.execute(
                session_revocations.delete().where(session_revocations.c.expires_at <= now)
            ).rowcount
        return removed
