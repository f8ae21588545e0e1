"""Create the catalog schema, seed an admin user and prune the audit log.

Run any time after configuring your .env, e.g.:
    python scripts/bootstrap.py --uname admin --full-name "Site Admin"
    python scripts/bootstrap.py --skip-admin --prune-logs 30

You will be prompted for a password if --password is not supplied.
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta, timezone
from getpass import getpass
from pathlib import Path
from typing import Optional, Tuple

from sqlalchemy import select

# Ensure the project root is on sys.path so `catalog` imports resolve
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from catalog.core.config import get_settings
from catalog.core.logging import configure_logging
from catalog.core.security import hash_password
from catalog.db.models import AdminUser, Base
from catalog.db.session import SessionLocal, database_engine, get_audit_log


def create_tables() -> None:
    """Create all tables defined on the metadata (no-op for existing ones)."""
    Base.metadata.create_all(bind=database_engine, checkfirst=True)


def ensure_admin_user(uname: str, password: Optional[str], name: Optional[str]) -> Tuple[AdminUser, bool]:
    """Create or update the admin user record matching the user name.

    Returns the admin instance and a flag indicating whether it was newly created.
    """
    with SessionLocal() as session:
        admin = session.execute(select(AdminUser).where(AdminUser.user_name == uname)).scalar_one_or_none()

        if admin:
            if name:
                admin.full_name = name
            if password:
                admin.password_hash = hash_password(password)
            session.commit()
            session.refresh(admin)
            return admin, False

        if not password:
            raise ValueError("A password is required when creating a new admin user.")

        admin = AdminUser(
            user_name=uname,
            password_hash=hash_password(password),
            full_name=name,
        )
        session.add(admin)
        session.commit()
        session.refresh(admin)
        return admin, True


def prune_audit_log(days: int) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    return get_audit_log().purge_older_than(cutoff)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set up catalog tables, seed the admin user, prune old audit entries.")
    parser.add_argument("--uname", help="User name for the admin account.")
    parser.add_argument(
        "--password",
        help="Password for the admin account (omit to receive an interactive prompt).",
    )
    parser.add_argument(
        "--full-name",
        default=None,
        help="Optional display name for the admin account.",
    )
    parser.add_argument(
        "--skip-tables",
        action="store_true",
        help="Skip creating tables (useful when they already exist).",
    )
    parser.add_argument(
        "--skip-admin",
        action="store_true",
        help="Do not create or update an admin account.",
    )
    parser.add_argument(
        "--prune-logs",
        type=int,
        metavar="DAYS",
        default=None,
        help="Delete audit log entries older than DAYS days.",
    )
    args = parser.parse_args()
    if not args.skip_admin and not args.uname:
        parser.error("--uname is required unless --skip-admin is given.")
    return args


def main() -> int:
    args = parse_args()

    # Ensure settings are loaded so environment variables are validated early.
    settings = get_settings()
    configure_logging(settings.log_level)
    print(f"Using database: {settings.database_url}")

    if not args.skip_tables:
        print("Creating database tables (no-op if already present)...")
        create_tables()
        print("Tables ensured.")
    else:
        print("Skipping table creation.")

    if not args.skip_admin:
        password = args.password
        if password is None:
            password = getpass("Admin password (leave blank to keep current if account exists): ").strip() or None

        try:
            admin, created = ensure_admin_user(args.uname, password, args.full_name)
        except ValueError as exc:
            print(f"Error: {exc}")
            return 1

        if created:
            print(f"Admin user created with user name: {admin.user_name}")
        elif password or args.full_name:
            print(f"Admin user {admin.user_name} updated.")
        else:
            print(f"Admin user {admin.user_name} already exists. No changes applied.")

    if args.prune_logs is not None:
        if args.prune_logs < 1:
            print("Error: --prune-logs must be at least 1 day.")
            return 1
        removed = prune_audit_log(args.prune_logs)
        print(f"Removed {removed} audit log entries older than {args.prune_logs} days.")

    print("Bootstrap complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
