"""
tests/conftest.py -- Shared test fixtures for the Petrosmart auth test suite.

This module provides:
  - FakeClock / RecordingNotifier: deterministic time and captured notifications
  - engine / service: an isolated in-memory database wired into a CredentialService
  - make_account: factory that provisions an account with a given role
  - api: TestClient over the real app with a patched lifespan, plus signed-in
    tokens for several roles

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The env vars below must be set before any project import: get_settings() is
cached at first call and several modules read it at import time.
"""

from __future__ import annotations

import asyncio
import itertools
import os
import time
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.models import Account, OtpPurpose, RegistrationProfile, RoleType
from auth.schema import create_store_engine
from auth.service import CredentialService
from core.config import get_settings

_db_ids = itertools.count()

DEFAULT_PASSWORD = "Corr3ct-Horse"


def memory_db_url(name: str) -> str:
    """A fresh named shared-memory SQLite URL. Every call gets its own database."""
    return f"sqlite:///file:{name}_{next(_db_ids)}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for stores. Starts at real time so JWT exp checks still pass."""

    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@dataclass
class RecordingNotifier:
    """Notifier that records every call instead of sending anything.

    Set fail=True to make every send raise, to check that delivery failures
    never break the calling flow.
    """

    otps: list[tuple[str, str, OtpPurpose]] = field(default_factory=list)
    notices: list[tuple[str, str, str | None]] = field(default_factory=list)
    invitations: list[tuple[str, str, RoleType]] = field(default_factory=list)
    fail: bool = False

    def _check(self) -> None:
        if self.fail:
            raise RuntimeError("mail server unavailable")

    def send_otp(self, email, code, purpose) -> None:
        self._check()
        self.otps.append((email, code, OtpPurpose(purpose)))

    def send_password_changed_notice(self, email, name, source_address) -> None:
        self._check()
        self.notices.append((email, name, source_address))

    def send_invitation(self, email, link, role, inviter_name, expires_at) -> None:
        self._check()
        self.invitations.append((email, link, RoleType(role)))

    def last_code(self, email: str, purpose: OtpPurpose) -> str:
        for sent_to, code, sent_purpose in reversed(self.otps):
            if sent_to == email and sent_purpose is purpose:
                return code
        raise AssertionError(f"no {purpose.value} code sent to {email}")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_store_engine(memory_db_url("test_auth"))
    yield eng
    eng.dispose()


@pytest.fixture
def service(engine: Engine, clock: FakeClock, notifier: RecordingNotifier) -> CredentialService:
    return CredentialService.from_engine(engine, get_settings(), notifier, clock=clock)


@pytest.fixture
def make_account(service: CredentialService) -> Callable[..., Account]:
    """Factory: make_account("alice", RoleType.STAFF, station_id=3) -> Account."""

    def _make(
        username: str,
        role: RoleType = RoleType.USER,
        password: str = DEFAULT_PASSWORD,
        station_id: int | None = None,
        email: str | None = None,
    ) -> Account:
        profile = RegistrationProfile(
            username=username,
            email=email or f"{username}@example.com",
            password=password,
            first_name=username.capitalize(),
            last_name="Tester",
        )
        return service.provision_account(profile, role, station_id=station_id)

    return _make


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    service: CredentialService
    notifier: RecordingNotifier
    accounts: dict[RoleType, Account]
    tokens: dict[RoleType, str]

    def headers(self, role: RoleType) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[role]}"}


def _patch_lifespan(service: CredentialService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so TestClient routes see
    the isolated test DB. The OAuth registry is mocked to prevent network
    calls. The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credential_service = service
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for route tests.

    One database per test module. An account is provisioned for each of
    super_admin, admin, manager and staff, and each is signed in once so
    tests can call protected routes straight away. Tests that revoke
    sessions must create their own accounts.
    """
    eng = create_store_engine(memory_db_url("test_api"))
    notifier = RecordingNotifier()
    service = CredentialService.from_engine(eng, get_settings(), notifier)

    accounts: dict[RoleType, Account] = {}
    tokens: dict[RoleType, str] = {}
    for role in (RoleType.SUPER_ADMIN, RoleType.ADMIN, RoleType.MANAGER, RoleType.STAFF):
        username = f"api_{role.value}"
        accounts[role] = service.provision_account(
            RegistrationProfile(username=username, email=f"{username}@example.com", password=DEFAULT_PASSWORD),
            role,
        )
        tokens[role] = service.login(username, DEFAULT_PASSWORD).access_token

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, service=service, notifier=notifier, accounts=accounts, tokens=tokens)

    eng.dispose()
