"""
tests/test_cli.py -- Operator CLI commands run against the test service.
"""

from __future__ import annotations

import pytest

from auth.models import RoleType
from main import (
    build_parser,
    cmd_audit,
    cmd_clear_history,
    cmd_create_user,
    cmd_purge,
    cmd_roles,
    cmd_set_role,
)


def test_create_user_bootstraps_super_admin(service, capsys) -> None:
    args = build_parser().parse_args(
        ["create-user", "--username", "root", "--email", "Root@Example.com", "--role", "super_admin", "--password", "Sup3r-Secret"]
    )

    assert cmd_create_user(service, args) == 0

    account = service.accounts.find_by_username("root")
    assert account.role.name is RoleType.SUPER_ADMIN
    assert account.email == "root@example.com"
    assert "Created super_admin 'root'" in capsys.readouterr().out
    assert service.login("root", "Sup3r-Secret")


def test_create_user_reports_duplicates(service, make_account, capsys) -> None:
    make_account("root")
    args = build_parser().parse_args(["create-user", "--username", "root", "--email", "x@example.com", "--password", "Sup3r-Secret"])

    assert cmd_create_user(service, args) == 1
    assert "already exists" in capsys.readouterr().out


def test_create_user_rejects_short_password(service) -> None:
    args = build_parser().parse_args(["create-user", "--username", "root", "--email", "x@example.com", "--password", "short"])
    assert cmd_create_user(service, args) == 1
    assert service.accounts.find_by_username("root") is None


def test_roles_lists_every_seeded_role(service, capsys) -> None:
    assert cmd_roles(service, build_parser().parse_args(["roles"])) == 0
    out = capsys.readouterr().out
    for role in RoleType:
        assert role.value in out


def test_purge_prints_counts(service, capsys) -> None:
    assert cmd_purge(service, build_parser().parse_args(["purge"])) == 0
    assert "otps" in capsys.readouterr().out


def test_audit_shows_events_for_an_email(service, make_account, capsys) -> None:
    make_account("alice")
    service.forgot_password("alice@example.com", source_address="10.2.2.2")

    assert cmd_audit(service, build_parser().parse_args(["audit", "--email", "Alice@Example.com"])) == 0

    out = capsys.readouterr().out
    assert "password_reset_requested" in out
    assert "10.2.2.2" in out


def test_audit_requires_a_target() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["audit"])


def test_clear_history_forgets_previous_passwords(service, make_account, capsys) -> None:
    account = make_account("alice")
    service.history.record(account.id, account.password_hash)

    assert cmd_clear_history(service, build_parser().parse_args(["clear-history", "--username", "alice"])) == 0

    assert service.history.history(account.id) == []
    assert "Cleared 1 password history entry" in capsys.readouterr().out


def test_clear_history_unknown_user(service, capsys) -> None:
    assert cmd_clear_history(service, build_parser().parse_args(["clear-history", "--username", "nobody"])) == 1
    assert "No account named" in capsys.readouterr().out


def test_set_role_promotes_and_revokes_sessions(service, make_account, clock, capsys) -> None:
    account = make_account("alice", RoleType.STAFF)
    token = service.login("alice", "Corr3ct-Horse").access_token
    clock.advance(1)

    assert cmd_set_role(service, build_parser().parse_args(["set-role", "--username", "alice", "--role", "admin"])) == 0

    assert service.accounts.find_by_id(account.id).role.name is RoleType.ADMIN
    assert service.blacklist.is_session_revoked(account.id, service.signer.decode(token).issued_at)
    assert "now admin" in capsys.readouterr().out


def test_set_role_unknown_user(service) -> None:
    assert cmd_set_role(service, build_parser().parse_args(["set-role", "--username", "nobody", "--role", "staff"])) == 1
