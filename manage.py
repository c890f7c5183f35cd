#!/usr/bin/env python3
"""
Marquee operator commands. Runs against DATABASE_URL (or the dev database
when DEBUG=true), the same database the API uses.

Usage:
  python manage.py grant alice@example.com movies:write users:read
  python manage.py revoke alice@example.com movies:write
  python manage.py issue-token alice@example.com
  python manage.py issue-token alice@example.com --scope activation --ttl 3600
  python manage.py purge-tokens

issue-token is the only way to obtain an authentication token. The plaintext
is printed once and cannot be recovered afterwards; only its hash is stored.
"""

import argparse
import sys
from datetime import timedelta
from typing import Optional

from auth.models import Scope
from auth.permissions import PERMISSION_LIST, Permission, validate_permissions
from auth.store import CredentialStore
from core.config import get_settings
from core.database import create_db_engine
from core.errors import DuplicatePermission, RecordNotFound
from core.validation import Validator


def _open_store() -> CredentialStore:
    settings = get_settings()
    return CredentialStore(create_db_engine(settings.database_url, settings.db_timeout_seconds))


def _parse_codes(codes: list[str]) -> Optional[list[Permission]]:
    v = Validator()
    parsed = validate_permissions(v, codes)
    if not v.valid:
        for field, message in v.errors.items():
            print(f"  [!] {field}: {message}")
        print(f"  Known codes: {', '.join(p.value for p in PERMISSION_LIST)}")
        return None
    return parsed


def cmd_grant(store: CredentialStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email {args.email}")
        return 1
    parsed = _parse_codes(args.codes)
    if parsed is None:
        return 2
    try:
        store.add_for_user(user.id, *parsed)
    except DuplicatePermission:
        print(f"  [!] {args.email} already holds one or more of: {', '.join(args.codes)}")
        return 1
    print(f"  Granted {', '.join(args.codes)} to {args.email}")
    print(f"  Now holds: {', '.join(store.get_all_for_user(user.id).to_list())}")
    return 0


def cmd_revoke(store: CredentialStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email {args.email}")
        return 1
    parsed = _parse_codes(args.codes)
    if parsed is None:
        return 2
    try:
        store.delete_for_user(user.id, *parsed)
    except RecordNotFound:
        print(f"  [!] {args.email} does not hold all of: {', '.join(args.codes)} (nothing revoked)")
        return 1
    held = store.get_all_for_user(user.id).to_list()
    print(f"  Revoked {', '.join(args.codes)} from {args.email}")
    print(f"  Now holds: {', '.join(held) or '(none)'}")
    return 0


def cmd_issue_token(store: CredentialStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email {args.email}")
        return 1
    scope = Scope(args.scope)
    if args.ttl is not None:
        ttl_seconds = args.ttl
    elif scope is Scope.ACTIVATION:
        ttl_seconds = get_settings().activation_token_ttl_seconds
    else:
        ttl_seconds = get_settings().authentication_token_ttl_seconds
    if ttl_seconds <= 0:
        print("  [!] --ttl must be a positive number of seconds")
        return 2
    if scope is Scope.AUTHENTICATION and not user.activated:
        print(f"  [!] Warning: {args.email} is not activated; gated routes will answer 403")
    token = store.new_token(user.id, timedelta(seconds=ttl_seconds), scope)
    print(f"  {scope.value} token for {args.email} (expires {token.expiry.isoformat(timespec='seconds')}):")
    print(token.plaintext)
    return 0


def cmd_purge_tokens(store: CredentialStore, args: argparse.Namespace) -> int:
    removed = store.purge_expired_tokens()
    print(f"  Removed {removed} expired token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marquee-manage",
        description="Operator commands for the Marquee API database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manage.py grant admin@example.com permissions:read permissions:write
  python manage.py issue-token admin@example.com
  DATABASE_URL=postgresql+psycopg://... python manage.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    grant = sub.add_parser("grant", help="Grant permission codes to a user")
    grant.add_argument("email", help="Email address of the user")
    grant.add_argument("codes", nargs="+", metavar="CODE", help="Permission codes, e.g. movies:write")
    grant.set_defaults(handler=cmd_grant)

    revoke = sub.add_parser("revoke", help="Revoke permission codes from a user (all or nothing)")
    revoke.add_argument("email", help="Email address of the user")
    revoke.add_argument("codes", nargs="+", metavar="CODE", help="Permission codes, e.g. movies:write")
    revoke.set_defaults(handler=cmd_revoke)

    issue = sub.add_parser("issue-token", help="Create a token and print its plaintext once")
    issue.add_argument("email", help="Email address of the user")
    issue.add_argument(
        "--scope",
        choices=[s.value for s in Scope],
        default=Scope.AUTHENTICATION.value,
        help="Token scope (default: authentication)",
    )
    issue.add_argument(
        "--ttl",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Lifetime in seconds (default: from settings for the chosen scope)",
    )
    issue.set_defaults(handler=cmd_issue_token)

    purge = sub.add_parser("purge-tokens", help="Delete every expired token")
    purge.set_defaults(handler=cmd_purge_tokens)

    return parser


def main(argv: Optional[list[str]] = None, store: Optional[CredentialStore] = None) -> int:
    args = build_parser().parse_args(argv)
    store = store or _open_store()
    return args.handler(store, args)


if __name__ == "__main__":
    sys.exit(main())
