"""
auth/schema.py -- SQLAlchemy Core schema and engine lifecycle for the auth core.

Every auth store (accounts, roles, OTPs, password history, audit, blacklist,
invitations) shares ONE Engine created here at startup and disposed at
shutdown. Stores receive the engine by injection -- there is no module-level
connection or store singleton.

Timestamps are stored as UTC epoch seconds (REAL). Expiry checks and the
rolling rate-limit window are numeric comparisons, and ordering by creation
time is exact. from_epoch() converts to aware datetimes for the dataclasses.

Security:
  All queries in the stores use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import ROLE_DISPLAY_NAMES, RoleType

logger = logging.getLogger("petrosmart.auth.schema")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(30), nullable=False, unique=True),
    Column("display_name", String(100), nullable=False),
    Column("description", Text),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("phone", String(30)),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("federation_id", String(255), unique=True),  # Google subject
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("station_id", Integer),
    Column("created_at", Float, nullable=False),
    Column("updated_at", Float, nullable=False),
)

otps = Table(
    "otps",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("purpose", String(30), nullable=False),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("account_id", Integer),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
    Column("is_used", Integer, nullable=False, server_default="0"),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("is_locked", Integer, nullable=False, server_default="0"),
    Index("ix_otps_email_purpose", "email", "purpose"),
)

password_history = Table(
    "password_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", Float, nullable=False),
)

audit_events = Table(
    "audit_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer),
    Column("action", String(50), nullable=False),
    Column("email", String(255)),
    Column("source_address", String(64)),
    Column("user_agent", String(512)),
    Column("metadata_json", Text),
    Column("success", Integer, nullable=False, server_default="0"),
    Column("created_at", Float, nullable=False),
    Index("ix_audit_email_action_created", "email", "action", "created_at"),
    Index("ix_audit_account_created", "account_id", "created_at"),
)

token_blacklist = Table(
    "token_blacklist",
    metadata,
    Column("token_digest", String(64), primary_key=True),  # SHA-256 hex of the raw token
    Column("expires_at", Float, nullable=False, index=True),
)

session_revocations = Table(
    "session_revocations",
    metadata,
    Column("account_id", Integer, primary_key=True),
    Column("revoked_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
)

invitations = Table(
    "invitations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("email", String(255), nullable=False),
    Column("role", String(30), nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("station_id", Integer),
    Column("expires_at", Float, nullable=False),
    Column("invited_by", Integer),
    Column("accepted_at", Float),
    Column("accepted_by", Integer),
    Column("created_at", Float, nullable=False),
    Index("ix_invitations_email_role_status", "email", "role", "status"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Engine lifecycle
# ---------------------------------------------------------------------------


def create_store_engine(db_url: str) -> Engine:
    """Create the shared Engine, create missing tables, and seed the role rows.

    Call once at startup. The caller owns the engine and must dispose() it on
    shutdown (api/main.py lifespan does this).
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    _seed_roles(engine)
    return engine


def _seed_roles(engine: Engine) -> None:
    """Insert any of the fixed role rows that are missing. Idempotent."""
    with engine.begin() as conn:
        existing = {row.name for row in conn.execute(select(roles.c.name))}
        missing = [r for r in RoleType if r.value not in existing]
        for role in missing:
            conn.execute(
                roles.insert().values(
                    name=role.value,
                    display_name=ROLE_DISPLAY_NAMES[role],
                )
            )
    if missing:
        logger.info("Seeded %d role(s): %s", len(missing), ", ".join(r.value for r in missing))


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def from_epoch(ts: float | None) -> datetime | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)
