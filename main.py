#!/usr/bin/env python3
"""
authcore -- operator CLI.

Incident-response helpers that talk to the same database as the API.

Usage:
  python main.py sessions bob@example.com
  python main.py sessions bob@example.com --json
  python main.py revoke-sessions bob@example.com
  python main.py audit bob@example.com --limit 20
  python main.py serve --host 0.0.0.0 --port 8000

Environment variables:
  SECRET_KEY     Required (>= 32 chars) unless --database-url is given.
  DATABASE_URL   SQLAlchemy URL of the auth database (default: sqlite:///./authcore.db).
"""

import argparse
import json
import logging
import sys
from typing import Optional

from auth.models import RevokedReason
from auth.store import AuditStore, UserStore
from auth.token_store import SecretTokenStore
from core.config import get_settings

logger = logging.getLogger("authcore.cli")


def _db_url(args: argparse.Namespace) -> str:
    return args.database_url or get_settings().database_url


def _lookup_user_id(users: UserStore, email: str) -> Optional[str]:
    user = users.find_by_email(email)
    if user is None:
        print(f"  [!] No account for '{email}'.", file=sys.stderr)
        return None
    return user.id


def cmd_sessions(args: argparse.Namespace) -> int:
    """List active sessions for one account."""
    db_url = _db_url(args)
    users, tokens = UserStore(db_url), SecretTokenStore(db_url)
    try:
        user_id = _lookup_user_id(users, args.email)
        if user_id is None:
            return 1
        records = tokens.list_active_refresh_tokens(user_id)
    finally:
        users.close()
        tokens.close()

    if args.json:
        print(
            json.dumps(
                [
                    {
                        "id": r.id,
                        "device_fingerprint": r.device_fingerprint,
                        "created_at": r.created_at.isoformat() if r.created_at else None,
                        "expires_at": r.expires_at.isoformat(),
                    }
                    for r in records
                ],
                indent=2,
            )
        )
        return 0

    if not records:
        print(f"  No active sessions for {args.email}.")
        return 0
    print(f"\n  Active sessions for {args.email}: {len(records)}")
    print("  " + "-" * 72)
    for r in records:
        created = r.created_at.strftime("%Y-%m-%d %H:%M") if r.created_at else "?"
        print(f"  {r.id}  device {r.device_fingerprint[:12]}...  created {created}  expires {r.expires_at:%Y-%m-%d}")
    print()
    return 0


def cmd_revoke_sessions(args: argparse.Namespace) -> int:
    """Revoke every session of one account (suspected compromise)."""
    db_url = _db_url(args)
    users, tokens = UserStore(db_url), SecretTokenStore(db_url)
    try:
        user_id = _lookup_user_id(users, args.email)
        if user_id is None:
            return 1
        revoked = tokens.revoke_all_for_user(user_id, RevokedReason.LOGOUT_ALL)
    finally:
        users.close()
        tokens.close()
    logger.warning("Operator revoked %d session(s) for user %s", revoked, user_id)
    print(f"  Revoked {revoked} session(s) for {args.email}.")
    return 0


def cmd_audit(args: argparse.Namespace) -> int:
    """Print recent audit entries for one account, newest first."""
    db_url = _db_url(args)
    users, audit = UserStore(db_url), AuditStore(db_url)
    try:
        user_id = _lookup_user_id(users, args.email)
        if user_id is None:
            return 1
        events = audit.list_events(user_id=user_id, limit=args.limit)
    finally:
        users.close()
        audit.close()

    for e in events:
        status = "ok  " if e.success else "FAIL"
        reason = (e.metadata or {}).get("reason", "")
        print(f"  {status} {e.event_type.value:<24} {e.error_code or '-':<26} {e.ip_address:<15} {reason}")
    if not events:
        print(f"  No audit entries for {args.email}.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the API with uvicorn. Settings (SECRET_KEY included) are validated on import."""
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authcore",
        description="Operator tools for the authcore credential service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py sessions bob@example.com
  python main.py revoke-sessions bob@example.com
  DATABASE_URL=sqlite:///./prod.db python main.py audit bob@example.com
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_sessions = sub.add_parser("sessions", help="List active sessions for an account")
    p_sessions.add_argument("email", help="Account email (case-insensitive)")
    p_sessions.add_argument("--json", action="store_true", help="Output structured JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_revoke = sub.add_parser("revoke-sessions", help="Revoke every session for an account")
    p_revoke.add_argument("email", help="Account email (case-insensitive)")
    p_revoke.set_defaults(func=cmd_revoke_sessions)

    p_audit = sub.add_parser("audit", help="Show recent audit entries for an account")
    p_audit.add_argument("email", help="Account email (case-insensitive)")
    p_audit.add_argument("--limit", type=int, default=50, help="Maximum entries to show (default: 50)")
    p_audit.set_defaults(func=cmd_audit)

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
