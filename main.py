#!/usr/bin/env python3
"""
Login portal - session-based username/password sign-in.
"""

import argparse
import asyncio
import logging
import os
import sys
from getpass import getpass
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep portal imports lazy (inside functions) so `migrate` and
# `create-user` don't build the web app.
#


async def _migrate() -> int:
    from portal.db.config import load_db_config
    from portal.db.migrate import apply_migrations
    from portal.db.pool import Database

    db = Database.from_config(load_db_config())
    await db.open()
    try:
        applied = await apply_migrations(db)
    finally:
        await db.close()
    if applied:
        print(f"Applied {len(applied)} migration(s): {', '.join(applied)}")
    else:
        print("No pending migrations.")
    return 0


async def _create_user(username: str, password: str) -> int:
    from portal.auth.config import load_auth_config
    from portal.auth.passwords import hash_password
    from portal.db.config import load_db_config
    from portal.db.pool import Database
    from portal.db.users import PostgresUserStore
    from portal.errors import DuplicateRegistration

    auth_cfg = load_auth_config()
    db = Database.from_config(load_db_config())
    await db.open()
    try:
        store = PostgresUserStore(db)
        password_hash = await asyncio.to_thread(hash_password, password, rounds=auth_cfg.bcrypt_rounds)
        try:
            user = await store.insert(username, password_hash)
        except DuplicateRegistration:
            print(f"User {username!r} already exists.", file=sys.stderr)
            return 1
    finally:
        await db.close()
    print(f"Created user {user.username!r} (id={user.id})")
    return 0


def create_user(username: Optional[str]) -> int:
    """Register a user explicitly (for deployments with AUTH_AUTO_REGISTER off)."""
    username = username if username is not None else input("Username: ")
    if not username:
        print("Username is required.", file=sys.stderr)
        return 2
    pw1 = getpass("Password: ")
    pw2 = getpass("Repeat password: ")
    if pw1 != pw2:
        print("Passwords do not match.", file=sys.stderr)
        return 2
    if not pw1:
        print("Password is required.", file=sys.stderr)
        return 2
    return asyncio.run(_create_user(username, pw1))


def main() -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Session-based login portal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the server (APP_HOST / APP_PORT or flags)
  python main.py serve --port 8080

  # Apply database migrations
  python main.py migrate

  # Create a user explicitly
  python main.py create-user alice
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument(
        "--host", default=os.getenv("APP_HOST", "0.0.0.0"), help="Bind host (default: APP_HOST or 0.0.0.0)"
    )
    serve.add_argument(
        "--port", type=int, default=int(os.getenv("APP_PORT", "8080")), help="Listen port (default: APP_PORT or 8080)"
    )

    sub.add_parser("migrate", help="Apply pending database migrations")

    cu = sub.add_parser("create-user", help="Create a user (prompts for the password)")
    cu.add_argument("username", nargs="?", help="Username (prompted if omitted)")

    args = parser.parse_args()

    try:
        if args.command == "serve":
            from portal.api.server import run

            run(host=args.host, port=args.port)
            return 0

        if args.command == "migrate":
            return asyncio.run(_migrate())

        if args.command == "create-user":
            return create_user(args.username)

        parser.print_help()
        return 2

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    raise SystemExit(main())
