#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from asset_control.db.base import Base
from asset_control.db.engine import build_engine
from asset_control.models import Principal
from asset_control.services.asset_ledger_service import SYSTEM_PRINCIPAL_ID
from asset_control.services.permission_service import seed_default_roles
from asset_control.services.principal_service import create_principal, update_principal
from asset_control.services.user_access_service import create_session


def _upsert_system_principal(db: Session, username: str) -> Principal:
    taken = db.execute(
        select(Principal.UserID).where(Principal.Username == username, Principal.UserID != SYSTEM_PRINCIPAL_ID)
    ).first()
    if taken:
        raise ValueError(f"Username {username} already belongs to user {taken.UserID}.")

    principal = db.get(Principal, SYSTEM_PRINCIPAL_ID)
    if principal is None:
        principal = Principal(
            UserID=SYSTEM_PRINCIPAL_ID,
            Username=username,
            IsAdmin=True,
            CreatedAt=datetime.now(),
            UpdatedAt=datetime.now(),
        )
        db.add(principal)
    elif not principal.IsAdmin:
        principal.IsAdmin = True
        principal.UpdatedAt = datetime.now()
    db.commit()
    return principal


def _upsert_admin(db: Session, username: str) -> Principal:
    existing = db.execute(select(Principal).where(Principal.Username == username)).scalars().first()
    if existing is None:
        return create_principal(db, username, is_admin=True, actor_id=SYSTEM_PRINCIPAL_ID)
    if not existing.IsAdmin:
        return update_principal(db, existing.UserID, is_admin=True, actor_id=SYSTEM_PRINCIPAL_ID)
    return existing


def bootstrap(
    engine: Engine,
    *,
    admin_username: str | None = None,
    system_username: str = "system",
    ttl_seconds: int | None = None,
) -> dict[str, Any]:
    """Prepare a database for first use and issue an admin session token.

    Creates missing tables, makes sure the system principal exists as an
    admin, seeds the default roles and optionally upserts a named admin.
    Safe to run repeatedly.
    """
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    with SessionLocal() as db:
        system = _upsert_system_principal(db, system_username)
        seeded = seed_default_roles(db)
        db.commit()
        admin = _upsert_admin(db, admin_username) if admin_username else system
        return {
            "systemUserID": system.UserID,
            "adminUserID": admin.UserID,
            "adminUsername": admin.Username,
            "seededRoles": [role.RoleName for role in seeded],
            "sessionToken": create_session(admin.UserID, ttl_seconds),
        }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create the schema, system account and default roles, then print an admin session token.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("ASSET_CONTROL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to ASSET_CONTROL_DB_URL env var.",
    )
    parser.add_argument("--admin-username", default=None, help="Admin account to create or promote.")
    parser.add_argument("--system-username", default="system", help=f"Username for user {SYSTEM_PRINCIPAL_ID}.")
    parser.add_argument("--ttl-seconds", type=int, default=None, help="Lifetime of the printed session token.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.db_url:
        parser.error("Missing DB URL. Set ASSET_CONTROL_DB_URL or pass --db-url.")
    if args.admin_username is not None and not args.admin_username.strip():
        parser.error("--admin-username must not be blank.")
    if args.ttl_seconds is not None and args.ttl_seconds <= 0:
        parser.error("--ttl-seconds must be > 0")

    engine = build_engine(args.db_url)
    try:
        result = bootstrap(
            engine,
            admin_username=args.admin_username.strip() if args.admin_username else None,
            system_username=args.system_username.strip(),
            ttl_seconds=args.ttl_seconds,
        )
    except ValueError as exc:
        parser.error(str(exc))
    finally:
        engine.dispose()

    print(
        f"OK system_user_id={result['systemUserID']} admin_user_id={result['adminUserID']} "
        f"admin={result['adminUsername']} seeded_roles={','.join(result['seededRoles']) or '-'}"
    )
    print(f"X-Session-Token: {result['sessionToken']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
