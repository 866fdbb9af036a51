#!/usr/bin/env python3
"""
Chirp -- credential login and server-side sessions.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py create-user alice@example.com
  python main.py create-user alice@example.com --display-name "Alice"
  python main.py sweep

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL for identities and sessions.
"""

import argparse
import asyncio
import getpass
import sys

from auth.passwords import PasswordHasher
from auth.registration import register_identity
from auth.store import CredentialStore
from core.config import get_settings
from core.errors import DuplicateIdentifier, StoreUnavailable
from sessions.store import SessionStore


async def _create_user(identifier: str, display_name: str | None) -> int:
    """Register an identity from the terminal. The secret is read with getpass."""
    settings = get_settings()
    secret = getpass.getpass("Password: ")
    if secret != getpass.getpass("Repeat password: "):
        print("Error: passwords do not match.", file=sys.stderr)
        return 1

    hasher = PasswordHasher(rounds=settings.bcrypt_rounds, max_workers=1)
    store = CredentialStore(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        record = await register_identity(store, hasher, identifier, secret, display_name=display_name)
    except DuplicateIdentifier:
        print(f"Error: {identifier!r} is already registered.", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()
        hasher.close()
    print(f"Created {record.identifier}")
    return 0


async def _sweep() -> int:
    settings = get_settings()
    store = SessionStore(
        settings.database_url,
        secret_key=settings.secret_key,
        timeout=settings.store_timeout_seconds,
    )
    try:
        removed = await store.sweep_expired()
    except StoreUnavailable as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"Removed {removed} expired session(s)")
    return 0


def _serve(host: str, port: int, reload: bool) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=host, port=port, reload=reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="chirp",
        description="Credential login and server-side sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP server (uvicorn)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")

    create = sub.add_parser("create-user", help="Register an identity; prompts for the password")
    create.add_argument("identifier", metavar="IDENTIFIER", help="e.g. alice@example.com")
    create.add_argument("--display-name", default=None)

    sub.add_parser("sweep", help="Delete expired sessions once and exit")

    args = parser.parse_args()

    # Settings validation (e.g. missing SECRET_KEY) fails here with a clear message.
    try:
        get_settings()
    except ValueError as exc:
        parser.error(str(exc))

    if args.command == "serve":
        sys.exit(_serve(args.host, args.port, args.reload))
    if args.command == "create-user":
        sys.exit(asyncio.run(_create_user(args.identifier, args.display_name)))
    sys.exit(asyncio.run(_sweep()))


if __name__ == "__main__":
    main()
