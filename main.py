#!/usr/bin/env python3
"""
AuthGate -- administration CLI.

Usage:
  python main.py create-principal admin --role admin
  python main.py create-principal jwo --password 12345
  python main.py set-password jwo
  python main.py revoke-all jwo
  python main.py purge
  python main.py serve --host 0.0.0.0 --port 8000

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. Session ids and tokens are stored
                 as HMAC(SECRET_KEY, value); changing it orphans all of them.
  DATABASE_URL   SQLAlchemy URL of the auth database (default sqlite:///authgate.db).
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.errors import LoginTaken, StoreUnavailable
from auth.passwords import MAX_SECRET_BYTES
from auth.service import AuthService
from core.config import get_settings


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the --password value, or prompt twice on a TTY."""
    if given is not None:
        return given
    if not sys.stdin.isatty():
        return sys.stdin.readline().rstrip("\n") or None
    first = getpass.getpass("  Password: ")
    if first != getpass.getpass("  Confirm:  "):
        print("  [!] Passwords do not match.")
        return None
    return first


def _too_long(password: Optional[str]) -> bool:
    if password is not None and len(password.encode("utf-8")) > MAX_SECRET_BYTES:
        print(f"  [!] Password must be at most {MAX_SECRET_BYTES} bytes.")
        return True
    return False


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Manage AuthGate principals, sessions and tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-principal", help="Create a principal")
    create.add_argument("login")
    create.add_argument("--role", choices=["admin", "user"], default="user")
    create.add_argument("--password", default=None, help="Read from stdin / prompt when omitted")
    create.add_argument(
        "--no-password",
        action="store_true",
        help="Create a principal without a local password (delegated sign-in only)",
    )

    set_pw = sub.add_parser("set-password", help="Replace a principal's password and sign it out everywhere")
    set_pw.add_argument("login")
    set_pw.add_argument("--password", default=None)

    revoke = sub.add_parser("revoke-all", help="End every session and revoke every token of a principal")
    revoke.add_argument("login")

    sub.add_parser("purge", help="Delete expired sessions and tokens")

    serve = sub.add_parser("serve", help="Run the HTTP server (uvicorn)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")

    if args.command == "serve":
        import uvicorn

        uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    service = AuthService.from_settings(get_settings(), db_url=args.db)
    try:
        return _run(service, args)
    except StoreUnavailable as e:
        print(f"  [!] Database unavailable: {e}")
        return 2
    finally:
        service.close()


def _run(service: AuthService, args: argparse.Namespace) -> int:
    if args.command == "create-principal":
        password = None if args.no_password else _read_password(args.password)
        if password is None and not args.no_password:
            print("  [!] A password is required (or pass --no-password).")
            return 1
        if _too_long(password):
            return 1
        try:
            principal = service.register(args.login, password, role=args.role)
        except LoginTaken:
            print(f"  [!] A principal named '{args.login}' already exists.")
            return 1
        print(f"  Created principal '{principal.login}' (id={principal.id}, role={principal.role}).")
        return 0

    principal = service.principals.get_by_login(args.login) if hasattr(args, "login") else None
    if hasattr(args, "login") and principal is None:
        print(f"  [!] No principal named '{args.login}'.")
        return 1

    if args.command == "set-password":
        password = _read_password(args.password)
        if not password:
            print("  [!] A password is required.")
            return 1
        if _too_long(password):
            return 1
        service.update_principal(principal.id, password=password)
        print(f"  Password updated for '{principal.login}'; all sessions and tokens revoked.")
        return 0

    if args.command == "revoke-all":
        removed = service.revoke_everything(principal.id)
        print(f"  Revoked {removed} session(s)/token(s) for '{principal.login}'.")
        return 0

    if args.command == "purge":
        removed = service.purge_expired()
        print(f"  Purged {removed} expired session(s)/token(s).")
        return 0

    return 1


if __name__ == "__main__":
    sys.exit(main())
