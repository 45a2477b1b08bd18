#!/usr/bin/env python3
"""
AuthGate -- operator command line.

Usage:
  python main.py create-user admin@example.com --role admin --first-name Ada --last-name Admin
  python main.py set-role 42 veterinarian
  python main.py verify-token eyJhbGciOi...
  python main.py purge-sessions

Reads the same environment as the API (SECRET_KEY, DIRECTORY_BACKEND,
DIRECTORY_DB_URL, SESSION_BACKEND, SESSION_DB_URL, ...). The in-memory
backends do not outlive this process, so commands that write only make
sense against the SQL backends.

The password for create-user is read from the AUTHGATE_PASSWORD environment
variable or prompted for, never taken from argv (shell history, ps).
"""

import argparse
import getpass
import os
import sys
from typing import Optional

from auth.errors import AuthError
from auth.factory import build_gateway, create_account
from auth.gateway import AuthGateway
from auth.models import Role
from core.config import get_settings


def _read_password() -> Optional[str]:
    password = os.environ.get("AUTHGATE_PASSWORD")
    if password:
        return password
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return None
    return first


def _cmd_create_user(gateway: AuthGateway, args: argparse.Namespace) -> int:
    password = _read_password()
    if not password:
        return 1
    try:
        user = create_account(
            gateway,
            args.email,
            password,
            first_name=args.first_name,
            last_name=args.last_name,
            role=Role(args.role),
        )
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        for detail in exc.details:
            print(f"      - {detail}")
        return 1
    if user is None:
        print(f"  [!] An account for {args.email} already exists.")
        return 1
    print(f"  Created {user.role.value} {user.email} (id {user.id})")
    return 0


def _cmd_set_role(gateway: AuthGateway, args: argparse.Namespace) -> int:
    if not gateway.directory.assign_role(args.user_id, Role(args.role)):
        print(f"  [!] No user with id {args.user_id}.")
        return 1
    print(f"  User {args.user_id} now resolves to role {gateway.directory.resolve_role(args.user_id).value}")
    return 0


def _cmd_verify_token(gateway: AuthGateway, args: argparse.Namespace) -> int:
    try:
        claims = gateway.verify_token(args.token)
    except AuthError as exc:
        print(f"  invalid: {exc.message}")
        return 1
    print(f"  valid: user={claims.user_id} email={claims.email} role={claims.role.value}")
    print(f"  issued {claims.issued_at.isoformat()}, expires {claims.expires_at.isoformat()}")
    return 0


def _cmd_purge_sessions(gateway: AuthGateway, args: argparse.Namespace) -> int:
    removed = gateway.sessions.purge_expired()
    print(f"  Removed {removed} expired session(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Operator tasks for the AuthGate authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create an account with an explicit role")
    create.add_argument("email")
    create.add_argument("--role", choices=[r.value for r in Role], default=Role.ADMIN.value)
    create.add_argument("--first-name", default="Admin")
    create.add_argument("--last-name", default="User")
    create.set_defaults(handler=_cmd_create_user)

    set_role = sub.add_parser("set-role", help="Assign a role that overrides the user's stored role")
    set_role.add_argument("user_id")
    set_role.add_argument("role", choices=[r.value for r in Role])
    set_role.set_defaults(handler=_cmd_set_role)

    verify = sub.add_parser("verify-token", help="Decode and check an access token")
    verify.add_argument("token")
    verify.set_defaults(handler=_cmd_verify_token)

    purge = sub.add_parser("purge-sessions", help="Delete expired refresh sessions")
    purge.set_defaults(handler=_cmd_purge_sessions)

    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 2

    gateway = build_gateway(get_settings())
    try:
        return args.handler(gateway, args)
    finally:
        gateway.sessions.close()
        gateway.directory.close()


if __name__ == "__main__":
    sys.exit(main())
