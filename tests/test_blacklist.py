"""
tests/test_blacklist.py -- TokenBlacklist single-token and account-floor revocation.
"""

from __future__ import annotations

import pytest

import auth.blacklist as blacklist_module
from auth.blacklist import TokenBlacklist, token_digest
from auth.schema import session_revocations, token_blacklist


@pytest.fixture
def blacklist(engine, clock) -> TokenBlacklist:
    return TokenBlacklist(engine, clock=clock)


class TestSingleToken:
    def test_blacklisted_token_is_reported(self, blacklist) -> None:
        blacklist.blacklist_token("tok-a", ttl_seconds=60)
        assert blacklist.is_token_blacklisted("tok-a")
        assert not blacklist.is_token_blacklisted("tok-b")

    def test_raw_token_is_not_stored(self, blacklist, engine) -> None:
        blacklist.blacklist_token("tok-a", ttl_seconds=60)
        with engine.connect() as conn:
            digests = [r.token_digest for r in conn.execute(token_blacklist.select())]
        assert digests == [token_digest("tok-a")]

    def test_entry_lapses_after_ttl(self, blacklist, clock) -> None:
        blacklist.blacklist_token("tok-a", ttl_seconds=60)
        clock.advance(61)
        assert not blacklist.is_token_blacklisted("tok-a")

    def test_reblacklisting_is_idempotent_and_extends(self, blacklist, clock) -> None:
        blacklist.blacklist_token("tok-a", ttl_seconds=60)
        clock.advance(30)
        blacklist.blacklist_token("tok-a", ttl_seconds=60)
        clock.advance(45)
        assert blacklist.is_token_blacklisted("tok-a")


class TestAccountFloor:
    def test_tokens_issued_before_floor_are_revoked(self, blacklist, clock) -> None:
        issued_before = clock()
        clock.advance(1)
        blacklist.blacklist_all_for_account(7, ttl_seconds=3600)
        clock.advance(1)
        issued_after = clock()

        assert blacklist.is_session_revoked(7, issued_before)
        assert not blacklist.is_session_revoked(7, issued_after)

    def test_token_issued_at_the_floor_instant_survives(self, blacklist, clock) -> None:
        floor = blacklist.blacklist_all_for_account(7, ttl_seconds=3600)
        assert not blacklist.is_session_revoked(7, floor)
        assert blacklist.is_session_revoked(7, floor - 0.001)

    def test_floor_is_per_account(self, blacklist, clock) -> None:
        issued = clock()
        clock.advance(1)
        blacklist.blacklist_all_for_account(7, ttl_seconds=3600)
        assert not blacklist.is_session_revoked(8, issued)

    def test_no_floor_means_not_revoked(self, blacklist, clock) -> None:
        assert blacklist.revocation_floor(7) is None
        assert not blacklist.is_session_revoked(7, clock())

    def test_floor_moves_forward(self, blacklist, clock) -> None:
        blacklist.blacklist_all_for_account(7, ttl_seconds=3600)
        clock.advance(10)
        middle = clock()
        clock.advance(10)
        blacklist.blacklist_all_for_account(7, ttl_seconds=3600)
        assert blacklist.is_session_revoked(7, middle)

    def test_floor_lapses_after_ttl(self, blacklist, clock) -> None:
        issued = clock()
        clock.advance(1)
        blacklist.blacklist_all_for_account(7, ttl_seconds=3600)
        clock.advance(3601)
        assert not blacklist.is_session_revoked(7, issued)


def test_purge_expired_removes_both_kinds(blacklist, clock) -> None:
    blacklist.blacklist_token("tok-a", ttl_seconds=10)
    blacklist.blacklist_all_for_account(7, ttl_seconds=10)
    blacklist.blacklist_token("tok-b", ttl_seconds=1000)

    clock.advance(11)

    assert blacklist.purge_expired() == 2
    assert blacklist.is_token_blacklisted("tok-b")


class TestPortableUpsert:
    """Dialects without ON CONFLICT fall back to update-then-insert."""

    @pytest.fixture(autouse=True)
    def _no_native_upsert(self, monkeypatch) -> None:
        monkeypatch.setattr(blacklist_module, "_NATIVE_UPSERT", {})

    def test_token_rewrite_keeps_one_row(self, blacklist, engine, clock) -> None:
        blacklist.blacklist_token("tok-a", ttl_seconds=60)
        clock.advance(30)
        blacklist.blacklist_token("tok-a", ttl_seconds=60)
        clock.advance(45)

        assert blacklist.is_token_blacklisted("tok-a")
        with engine.connect() as conn:
            assert len(conn.execute(token_blacklist.select()).fetchall()) == 1

    def test_floor_moves_forward(self, blacklist, engine, clock) -> None:
        first = blacklist.blacklist_all_for_account(7, ttl_seconds=3600)
        clock.advance(10)
        second = blacklist.blacklist_all_for_account(7, ttl_seconds=3600)

        assert second > first
        assert blacklist.revocation_floor(7) == second
        assert blacklist.is_session_revoked(7, first + 1)
        with engine.connect() as conn:
            assert len(conn.execute(session_revocations.select()).fetchall()) == 1
