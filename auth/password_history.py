"""
auth/password_history.py -- Bounded per-account password history.

The guard keeps the most recent `limit` password hashes per account (5 by
default). The credential service records the OLD hash right before it
overwrites the stored one, so the history is "passwords this account used
before the current one".

record() inserts and prunes in one transaction: a concurrent reader sees
either the old window or the new one, never an unbounded list.

is_reused() has to run bcrypt against every retained hash because salted
hashes are not comparable to each other. With a cost factor of 10 and five
entries that is roughly a quarter of a second in the worst case.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from sqlalchemy import and_, select
from sqlalchemy.engine import Engine

from auth.models import PasswordHistoryEntry
from auth.schema import from_epoch, password_history
from auth.tokens import verify_password

logger = logging.getLogger("petrosmart.auth.password_history")


class PasswordHistoryGuard:
    def __init__(self, engine: Engine, limit: int = 5, clock: Callable[[], float] = time.time) -> None:
        if limit < 1:
            raise ValueError("password history limit must be at least 1")
        self.engine = engine
        self.limit = limit
        self._clock = clock

    def record(self, account_id: int, password_hash: str) -> None:
        """Append a hash and drop everything older than the newest `limit` entries."""
        with self.engine.begin() as conn:
            conn.execute(
                password_history.insert().values(
                    account_id=account_id,
                    password_hash=password_hash,
                    created_at=self._clock(),
                )
            )
            keep = (
                select(password_history.c.id)
                .where(password_history.c.account_id == account_id)
                .order_by(password_history.c.created_at.desc(), password_history.c.id.desc())
                .limit(self.limit)
            )
            kept_ids = [row.id for row in conn.execute(keep)]
            pruned = conn.execute(
                password_history.delete().where(
                    and_(
                        password_history.c.account_id == account_id,
                        password_history.c.id.not_in(kept_ids),
                    )
                )
            ).rowcount
        if pruned:
            logger.debug("Pruned %d password history entr(ies) for account %d", pruned, account_id)

    def history(self, account_id: int) -> list[PasswordHistoryEntry]:
        """Retained entries for an account, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(password_history)
                .where(password_history.c.account_id == account_id)
                .order_by(password_history.c.created_at.desc(), password_history.c.id.desc())
            ).fetchall()
        return [
            PasswordHistoryEntry(
                id=row.id,
                account_id=row.account_id,
                password_hash=row.password_hash,
                created_at=from_epoch(row.created_at),
            )
            for row in rows
        ]

    def is_reused(self, account_id: int, candidate: str) -> bool:
        """True if the plaintext candidate matches any retained hash."""
        for entry in self.history(account_id):
            if verify_password(candidate, entry.password_hash):
                return True
        return False

    def clear(self, account_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(password_history.delete().where(password_history.c.account_id == account_id))
        return result.rowcount
