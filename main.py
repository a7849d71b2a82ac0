#!/usr/bin/env python3
"""
shopfront admin CLI -- the out-of-band channel for role changes.

Roles never change through the HTTP API. An operator with database access
uses this tool instead.

Usage:
  python main.py set-role alice@example.com admin
  python main.py set-role alice@example.com user
  python main.py create-admin ops@example.com --name "Ops Team"

Environment variables:
  DATABASE_URL  Database to operate on (same variable the API reads).
"""

from __future__ import annotations

import argparse
import getpass
import sys
from typing import Optional

from auth.models import ROLE_ADMIN, ROLES, Identity
from auth.providers import password_problem
from auth.store import ProfileStore
from auth.tokens import CredentialService
from core.config import get_settings
from core.errors import Conflict


def _set_role(store: ProfileStore, email: str, role: str) -> int:
    if not store.set_role(email, role):
        print(f"  [!] No profile with email '{email}'.", file=sys.stderr)
        return 1
    print(f"  {email} is now '{role}'.")
    return 0


def _read_password() -> Optional[str]:
    password = getpass.getpass("Password: ")
    problem = password_problem(password)
    if problem is not None:
        print(f"  [!] {problem}.", file=sys.stderr)
        return None
    if getpass.getpass("Repeat password: ") != password:
        print("  [!] Passwords do not match.", file=sys.stderr)
        return None
    return password


def _create_admin(store: ProfileStore, email: str, name: Optional[str]) -> int:
    settings = get_settings()
    if settings.identity_backend != "local":
        print(
            "  [!] create-admin only works with IDENTITY_BACKEND=local. "
            "Sign up through the API, then use set-role.",
            file=sys.stderr,
        )
        return 1
    password = _read_password()
    if password is None:
        return 1

    credentials = CredentialService.from_settings(settings)
    try:
        identity = store.create(
            Identity(
                email=email,
                full_name=name,
                role=ROLE_ADMIN,
                hashed_password=credentials.hash_password(password),
                email_verified=True,
            )
        )
    except Conflict:
        print(f"  [!] '{email}' is already registered. Use set-role instead.", file=sys.stderr)
        return 1
    print(f"  Admin {identity.email} created (id {identity.id}).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="shopfront",
        description="Administrative tasks for the shopfront API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py set-role alice@example.com admin
  python main.py create-admin ops@example.com --name "Ops Team"
  DATABASE_URL=sqlite:///prod.db python main.py set-role bob@example.com user
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Database to operate on (default: DATABASE_URL from the environment)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    set_role = commands.add_parser("set-role", help="Change the role of an existing profile")
    set_role.add_argument("email", help="Email of the profile to change")
    set_role.add_argument("role", choices=ROLES, help="New role")

    create_admin = commands.add_parser("create-admin", help="Create a verified admin account (local backend)")
    create_admin.add_argument("email", help="Email for the new admin")
    create_admin.add_argument("--name", default=None, help="Display name")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    store = ProfileStore(args.database_url or get_settings().database_url)
    try:
        if args.command == "set-role":
            return _set_role(store, args.email, args.role)
        return _create_admin(store, args.email, args.name)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
