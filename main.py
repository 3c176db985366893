#!/usr/bin/env python3
"""
Petrosmart auth -- operator command line.

Talks to the same database as the API (DATABASE_URL) without going through
HTTP. Use it to bootstrap the first super_admin and to run maintenance by hand.

Usage:
  python main.py create-user --username root --email root@example.com --role super_admin
  python main.py create-user --username jdoe --email jdoe@example.com --role staff --station 4
  python main.py purge
  python main.py roles
  python main.py set-role --username jdoe --role manager
  python main.py audit --email jdoe@example.com --limit 20
  python main.py clear-history --username jdoe

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: ./petrosmart_auth.db)
  SECRET_KEY    Required unless DEBUG=true. Must match the API's key.
"""

import argparse
import getpass
import logging
import sys

from auth.errors import AuthError
from auth.models import RegistrationProfile, RoleType
from auth.schema import create_store_engine
from auth.service import CredentialService
from core.config import get_settings

logger = logging.getLogger("petrosmart.cli")


def _read_password(args: argparse.Namespace) -> str:
    """Prompt twice unless --password was given. Returns "" on mismatch."""
    if args.password:
        return args.password
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return ""
    return first


def cmd_create_user(service: CredentialService, args: argparse.Namespace) -> int:
    password = _read_password(args)
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    profile = RegistrationProfile(
        username=args.username,
        email=args.email,
        password=password,
        first_name=args.first_name,
        last_name=args.last_name,
    )
    try:
        account = service.provision_account(profile, RoleType(args.role), station_id=args.station)
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    print(f"  Created {account.role.name.value} '{account.username}' (id {account.id}, {account.email}).")
    return 0


def cmd_purge(service: CredentialService, args: argparse.Namespace) -> int:
    removed = service.purge_expired()
    for store, count in removed.items():
        print(f"  {store:<14} {count} removed")
    return 0


def cmd_roles(service: CredentialService, args: argparse.Namespace) -> int:
    for role in service.roles.list_roles():
        print(f"  {role.name.value:<12} {role.display_name}")
    return 0


def cmd_set_role(service: CredentialService, args: argparse.Namespace) -> int:
    account = service.accounts.find_by_username(args.username)
    if account is None:
        print(f"  [!] No account named '{args.username}'.")
        return 1
    updated = service.change_role(account.id, RoleType(args.role))
    print(f"  '{updated.username}' is now {updated.role.name.value}. Existing sessions were revoked.")
    return 0


def cmd_audit(service: CredentialService, args: argparse.Namespace) -> int:
    if args.email:
        events = service.audit.list_for_email(args.email.strip().lower(), limit=args.limit)
    else:
        events = service.audit.list_for_account(args.user, limit=args.limit)
    if not events:
        print("  No audit events.")
        return 0
    for event in events:
        when = event.created_at.strftime("%Y-%m-%d %H:%M:%S") if event.created_at else "-"
        outcome = "ok  " if event.success else "FAIL"
        reason = event.metadata.get("reason", "")
        print(f"  {when}  {outcome}  {event.action.value:<26} {event.source_address or '-':<15} {reason}")
    return 0


def cmd_clear_history(service: CredentialService, args: argparse.Namespace) -> int:
    account = service.accounts.find_by_username(args.username)
    if account is None:
        print(f"  [!] No account named '{args.username}'.")
        return 1
    removed = service.history.clear(account.id)
    print(f"  Cleared {removed} password history entr{'y' if removed == 1 else 'ies'} for '{account.username}'.")
    return 0


_COMMANDS = {
    "create-user": cmd_create_user,
    "purge": cmd_purge,
    "roles": cmd_roles,
    "set-role": cmd_set_role,
    "audit": cmd_audit,
    "clear-history": cmd_clear_history,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="petrosmart-auth",
        description="Operator tools for the Petrosmart authentication database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --username root --email root@example.com --role super_admin
  python main.py purge
  DATABASE_URL=sqlite:////var/lib/petrosmart/auth.db python main.py roles
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    create = sub.add_parser("create-user", help="Provision an account with any role")
    create.add_argument("--username", required=True)
    create.add_argument("--email", required=True)
    create.add_argument(
        "--role",
        choices=[r.value for r in RoleType],
        default=RoleType.USER.value,
        help="Role to assign (default: user)",
    )
    create.add_argument("--station", type=int, default=None, metavar="ID", help="Station the account belongs to")
    create.add_argument("--first-name", default="")
    create.add_argument("--last-name", default="")
    create.add_argument(
        "--password",
        default=None,
        help="Initial password. Prompted for when omitted (preferred: keeps it out of shell history).",
    )

    sub.add_parser("purge", help="Run every expiry and retention purge once")
    sub.add_parser("roles", help="List the seeded roles")

    set_role = sub.add_parser("set-role", help="Change an account's role and revoke its sessions")
    set_role.add_argument("--username", required=True)
    set_role.add_argument("--role", required=True, choices=[r.value for r in RoleType])

    audit = sub.add_parser("audit", help="Show recent audit events for an email or account")
    target = audit.add_mutually_exclusive_group(required=True)
    target.add_argument("--email")
    target.add_argument("--user", type=int, metavar="ID", help="Account id")
    audit.add_argument("--limit", type=int, default=50)

    clear = sub.add_parser("clear-history", help="Forget an account's previous passwords")
    clear.add_argument("--username", required=True)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    settings = get_settings()
    logger.debug("Using database %s", settings.database_url)
    engine = create_store_engine(settings.database_url)
    try:
        service = CredentialService.from_engine(engine, settings)
        return _COMMANDS[args.command](service, args)
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
