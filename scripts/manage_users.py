"""Create, reset or list accounts directly in MongoDB.

Usage:
  python scripts/manage_users.py create <username> <email> <password> [--role super-admin]
  python scripts/manage_users.py reset <username-or-email> <new-password>
  python scripts/manage_users.py list
  python scripts/manage_users.py ensure-super-admin [--password ...]

Reads DATABASE_URL / DATABASE_NAME from the environment (or .env).
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import users
from config import get_settings
from database import Database
from errors import InvalidRequest, NotFound


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    sub = ap.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="create an approved admin account")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("password")
    create.add_argument("--role", choices=["admin", "super-admin"], default="super-admin")

    reset = sub.add_parser("reset", help="set a new password")
    reset.add_argument("login", help="username or email")
    reset.add_argument("password")

    sub.add_parser("list", help="list all accounts")

    ensure = sub.add_parser("ensure-super-admin", help="create admin/admin@example.com if no super-admin exists")
    ensure.add_argument("--password", default="admin123")
    return ap


def run(db, args: argparse.Namespace) -> int:
    if args.command == "create":
        if len(args.password) < 6:
            print("Password must be at least 6 characters")
            return 1
        u = users.create_account(
            db, username=args.username, email=args.email, password=args.password, role=args.role
        )
        print(f"Created {u['role']} account: {u['username']} ({u['email']})")
        return 0

    if args.command == "reset":
        if len(args.password) < 6:
            print("Password must be at least 6 characters")
            return 1
        u = users.reset_password(db, args.login, args.password)
        print(f"Password reset for {u['username']} ({u['email']})")
        return 0

    if args.command == "list":
        rows = users.list_users(db)
        if not rows:
            print("No users found.")
        for u in rows:
            print(f"{u['username']:<20} {u['email']:<30} {u.get('role', ''):<12} {u.get('status', '')}")
        return 0

    if args.command == "ensure-super-admin":
        if users.super_admin_exists(db):
            print("Super-admin already exists.")
            return 0
        users.create_account(
            db, username="admin", email="admin@example.com", password=args.password, role="super-admin"
        )
        print("Super-admin created: username=admin email=admin@example.com")
        return 0

    return 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    database = Database(settings.database_url, settings.database_name,
                        timeout_ms=settings.db_connect_timeout_ms)
    try:
        return run(database.get(), args)
    except (InvalidRequest, NotFound) as exc:
        print(f"Error: {exc}")
        return 1
    finally:
        database.close()


if __name__ == "__main__":
    sys.exit(main())
