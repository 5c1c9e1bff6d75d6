from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from asset_control.models.access_models import Principal, Role
from asset_control.models.asset_models import Asset
from asset_control.services.activity_service import detach_principal, record_activity
from asset_control.services.asset_ledger_service import SYSTEM_PRINCIPAL_ID, release_principal_assets
from asset_control.services.permission_service import resolve_matrix


AUTH_LOGGER = logging.getLogger("asset_control.auth")

_UNSET: Any = object()


def _require_role(db: Session, role_id: int | None) -> None:
    if role_id is None:
        return
    if db.get(Role, int(role_id)) is None:
        raise ValueError(f"Role {role_id} does not exist.")


def get_principal(db: Session, principal_id: int) -> Principal | None:
    return db.get(Principal, int(principal_id), populate_existing=True)


def create_principal(
    db: Session,
    username: str,
    *,
    is_admin: bool = False,
    role_id: int | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
    actor_id: int | None = None,
) -> Principal:
    name = (username or "").strip()
    if not name:
        raise ValueError("Username is required.")
    existing = db.execute(select(Principal.UserID).where(Principal.Username == name)).first()
    if existing:
        raise ValueError(f"Username {name} is already taken.")
    _require_role(db, role_id)

    principal = Principal(
        Username=name,
        FirstName=first_name,
        LastName=last_name,
        Email=email,
        IsAdmin=bool(is_admin),
        RoleID=role_id,
        CreatedAt=datetime.now(),
        UpdatedAt=datetime.now(),
    )
    try:
        db.add(principal)
        db.flush()
        record_activity(
            db,
            action="create",
            item_type="user",
            item_id=principal.UserID,
            user_id=actor_id,
            notes=f"User {principal.Username} created (admin: {principal.IsAdmin}, roleId: {principal.RoleID})",
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return principal


def update_principal(
    db: Session,
    principal_id: int,
    *,
    is_admin: bool | None = None,
    role_id: int | None = _UNSET,
    first_name: str | None = None,
    last_name: str | None = None,
    email: str | None = None,
    actor_id: int | None = None,
) -> Principal:
    principal = get_principal(db, principal_id)
    if principal is None:
        raise LookupError(f"User {principal_id} not found.")

    if is_admin is not None:
        principal.IsAdmin = bool(is_admin)
    if role_id is not _UNSET:
        _require_role(db, role_id)
        principal.RoleID = role_id
    if first_name is not None:
        principal.FirstName = first_name
    if last_name is not None:
        principal.LastName = last_name
    if email is not None:
        principal.Email = email
    principal.UpdatedAt = datetime.now()

    try:
        db.flush()
        record_activity(
            db,
            action="update",
            item_type="user",
            item_id=principal.UserID,
            user_id=actor_id,
            notes=f"User {principal.Username} updated (admin: {principal.IsAdmin}, roleId: {principal.RoleID})",
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    AUTH_LOGGER.info("Privilege updated user_id=%s admin=%s role_id=%s", principal.UserID, principal.IsAdmin, principal.RoleID)
    return principal


def delete_principal(db: Session, principal_id: int, *, force: bool = False, actor_id: int | None = None) -> bool:
    """Remove a principal while keeping every audit entry that names it.

    Activities are detached (UserID nulled, note appended), never deleted.
    A principal still holding assets is refused unless ``force`` checks them
    in first.
    """
    principal = get_principal(db, principal_id)
    if principal is None:
        return False
    if principal.UserID == SYSTEM_PRINCIPAL_ID:
        raise ValueError("Cannot delete the system account.")

    held = db.execute(
        select(func.count(Asset.AssetID)).where(Asset.AssignedTo == principal.UserID)
    ).scalar_one()
    if held and not force:
        raise ValueError(
            f"Cannot delete user. User has {held} asset(s) assigned. Please check in all assets first."
        )

    username = principal.Username
    try:
        if held:
            release_principal_assets(db, principal.UserID)
        detached = detach_principal(db, principal.UserID, username)
        principal = get_principal(db, principal_id)
        db.delete(principal)
        db.flush()
        record_activity(
            db,
            action="delete",
            item_type="user",
            item_id=int(principal_id),
            user_id=actor_id,
            notes=f"User {username} deleted",
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    AUTH_LOGGER.info("User deleted user_id=%s username=%s detached_activities=%s", principal_id, username, detached)
    return True


def describe_principal(db: Session, principal_id: int) -> dict[str, Any] | None:
    principal = get_principal(db, principal_id)
    if principal is None:
        return None
    matrix = resolve_matrix(db, is_admin=bool(principal.IsAdmin), role_id=principal.RoleID)
    return {
        "userID": principal.UserID,
        "username": principal.Username,
        "displayName": principal.DisplayName,
        "email": principal.Email,
        "isAdmin": bool(principal.IsAdmin),
        "roleID": principal.RoleID,
        "permissions": matrix.to_raw(),
    }
