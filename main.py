#!/usr/bin/env python3
"""
QR Login -- housekeeping CLI for the authentication service.

Usage:
  python main.py create-user alice@example.com --username alice
  python main.py create-user admin@example.com --username admin --role admin --password 's3cret!'
  python main.py deactivate-user alice@example.com
  python main.py purge-qr-sessions
  python main.py purge-qr-sessions --retention-seconds 0 --status pending --status rejected

Environment variables:
  AUTH_DB_URL   SQLAlchemy URL of the database shared with the API server.
  SECRET_KEY    Required unless DEBUG=true (see core/config.py).
"""

import argparse
import getpass
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.errors import AuthServiceError
from qrlogin.models import QRStatus
from qrlogin.store import SessionStore

logger = logging.getLogger("qrauth.cli")

_MIN_PASSWORD = 6
_MAX_PASSWORD = 72


def _read_password(given: Optional[str]) -> str:
    """Return the password from --password, or prompt twice for it."""
    if given is not None:
        return given
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        raise ValueError("passwords do not match")
    return first


def cmd_create_user(args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if not _MIN_PASSWORD <= len(password) <= _MAX_PASSWORD:
        print(f"  [!] Password must be {_MIN_PASSWORD}-{_MAX_PASSWORD} characters.")
        return 1
    store = UserStore(args.db_url)
    try:
        user_id = store.create_user(
            User(
                email=args.email,
                username=args.username or args.email.split("@", 1)[0],
                hashed_password=hash_password(password),
                role=args.role,
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    finally:
        store.close()
    logger.info("Created user %s", user_id)
    print(f"  Created user {user_id} ({args.email.strip().lower()}, role={args.role}).")
    return 0


def cmd_deactivate_user(args: argparse.Namespace) -> int:
    store = UserStore(args.db_url)
    try:
        user = store.get_by_email(args.email)
        if user is None:
            print(f"  [!] No user with email '{args.email}'.")
            return 1
        store.set_active(user.id, args.reactivate)
    finally:
        store.close()
    state = "Reactivated" if args.reactivate else "Deactivated"
    logger.info("%s user %s", state, user.id)
    print(f"  {state} user {user.id} ({user.email}).")
    return 0


def cmd_purge_qr_sessions(args: argparse.Namespace) -> int:
    statuses = [QRStatus(s) for s in args.status] if args.status else list(QRStatus)
    retention = args.retention_seconds
    if retention is None:
        retention = get_settings().qr_session_retention_seconds
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=retention)

    store = SessionStore(args.db_url)
    try:
        removed = store.delete_expired_before(cutoff, statuses)
    finally:
        store.close()
    print(f"  Removed {removed} QR session(s) that expired before {cutoff.isoformat(timespec='seconds')}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qr-login",
        description="Housekeeping for the QR login service: user accounts and stale QR sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice@example.com --username alice
  python main.py deactivate-user alice@example.com
  python main.py deactivate-user alice@example.com --reactivate
  python main.py purge-qr-sessions --retention-seconds 0
        """,
    )
    parser.add_argument(
        "--db-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: AUTH_DB_URL from the environment / .env)",
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a user account")
    create.add_argument("email", help="Login email (stored lowercase)")
    create.add_argument("--username", help="Unique username (default: local part of the email)")
    create.add_argument("--password", help="Password; prompted for when omitted")
    create.add_argument("--role", choices=["user", "admin"], default="user")
    create.add_argument("--first-name", default="")
    create.add_argument("--last-name", default="")
    create.set_defaults(func=cmd_create_user)

    deactivate = sub.add_parser("deactivate-user", help="Deactivate (or reactivate) a user account")
    deactivate.add_argument("email")
    deactivate.add_argument(
        "--reactivate",
        action="store_true",
        help="Re-enable the account instead of disabling it",
    )
    deactivate.set_defaults(func=cmd_deactivate_user)

    purge = sub.add_parser("purge-qr-sessions", help="Delete QR sessions whose TTL ended long ago")
    purge.add_argument(
        "--retention-seconds",
        type=int,
        default=None,
        metavar="N",
        help="Keep sessions that expired less than N seconds ago (default: QR_SESSION_RETENTION_SECONDS)",
    )
    purge.add_argument(
        "--status",
        action="append",
        choices=[s.value for s in QRStatus],
        help="Only purge sessions in this status; repeatable (default: all statuses)",
    )
    purge.set_defaults(func=cmd_purge_qr_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except AuthServiceError as exc:
        print(f"  [!] {exc.message}")
        return 1
    except ValueError as exc:
        print(f"  [!] {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
