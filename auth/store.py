"""
auth/store.py -- SQLAlchemy Core repositories for accounts and roles.

Pattern: Repository + Data Mapper. AccountStore / RoleStore are the
repositories; _row_to_account / _row_to_role are the mappers. Service and
route code never touches SQL directly.

Read contract: every AccountStore read joins the roles table, so an Account
always comes back with its Role embedded. There is no lazy loading.

Write contract: password hashing is NOT done here. update_password() stores
the hash it is given and update_profile() refuses to touch password_hash, so
a plaintext can never be written by accident and a hash can never be hashed
twice.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.models import Account, Role, RoleType
from auth.schema import accounts, from_epoch, roles

_PROFILE_FIELDS: set = {"first_name", "last_name", "phone", "station_id"}


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore(engine)
        role = RoleStore(engine).find_by_name(RoleType.USER)
        store.create(Account(username="jdoe", email="j@x.com", role=role, password_hash=hash_password("s3cret!")))
        account = store.find_by_username("jdoe")
    """

    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time) -> None:
        self.engine = engine
        self._clock = clock

    def _select(self):
        return select(
            accounts,
            roles.c.name.label("role_name"),
            roles.c.display_name.label("role_display_name"),
            roles.c.description.label("role_description"),
        ).join(roles, accounts.c.role_id == roles.c.id)

    def _fetch_one(self, clause) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(self._select().where(clause)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, account_id: int) -> Account | None:
        return self._fetch_one(accounts.c.id == account_id)

    def find_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive)."""
        return self._fetch_one(accounts.c.username == username)

    def find_by_email(self, email: str) -> Account | None:
        """Look up an account by email. Emails are stored lower-cased by the service."""
        return self._fetch_one(accounts.c.email == email)

    def find_by_federation_id(self, federation_id: str) -> Account | None:
        return self._fetch_one(accounts.c.federation_id == federation_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, account: Account, on_insert: Callable[[Connection, int], None] | None = None) -> Account:
        """Insert a new account and return it as re-read from the database.

        on_insert(conn, account_id) runs inside the insert transaction. If it
        raises, the insert is rolled back and the exception propagates.

        account.role must carry its database id (fetch it from RoleStore).
        Raises sqlalchemy.exc.IntegrityError if the username, email, or
        federation id is already taken. The service maps that to
        DuplicateResourceError so a concurrent registration loses cleanly.
        """
        if account.role.id is None:
            raise ValueError("Account.role must be a persisted Role (id is None)")
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                accounts.insert().values(
                    username=account.username,
                    email=account.email,
                    password_hash=account.password_hash,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    phone=account.phone,
                    is_email_verified=1 if account.is_email_verified else 0,
                    federation_id=account.federation_id,
                    role_id=account.role.id,
                    station_id=account.station_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            account_id = result.inserted_primary_key[0]
            if on_insert is not None:
                on_insert(conn, account_id)
        created = self.find_by_id(account_id)
        if created is None:
            raise RuntimeError(f"Account {account_id} vanished after insert")
        return created

    def update_profile(self, account_id: int, **fields) -> bool:
        """Update non-credential profile fields.

        Accepted fields: first_name, last_name, phone, station_id. Anything
        else (password_hash in particular) raises ValueError -- use
        update_password() for credentials.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown or protected account fields: {sorted(unknown)!r}")
        if not fields:
            return False
        return self._update(account_id, **fields)

    def update_password(self, account_id: int, password_hash: str) -> bool:
        """Store an already-computed password hash."""
        return self._update(account_id, password_hash=password_hash)

    def update_role(self, account_id: int, role: Role) -> bool:
        if role.id is None:
            raise ValueError("role must be a persisted Role (id is None)")
        return self._update(account_id, role_id=role.id)

    def link_federation(self, account_id: int, federation_id: str) -> bool:
        """Attach an external identity and mark the email verified.

        The provider has already confirmed the email address, so the link
        doubles as verification.
        """
        return self._update(account_id, federation_id=federation_id, is_email_verified=1)

    def _update(self, account_id: int, **values) -> bool:
        values["updated_at"] = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(accounts.update().where(accounts.c.id == account_id).values(**values))
        return result.rowcount > 0


class RoleStore:
    """Read-only repository for the fixed role rows seeded by create_store_engine()."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_by_name(self, name: RoleType) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(roles).where(roles.c.name == RoleType(name).value)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(roles).order_by(roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=RoleType(row.name),
        display_name=row.display_name,
        description=row.description,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        phone=row.phone,
        is_email_verified=bool(row.is_email_verified),
        federation_id=row.federation_id,
        station_id=row.station_id,
        role=Role(
            id=row.role_id,
            name=RoleType(row.role_name),
            display_name=row.role_display_name,
            description=row.role_description,
        ),
        created_at=from_epoch(row.created_at),
        updated_at=from_epoch(row.updated_at),
    )
