from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_control.models.access_models import Principal
from asset_control.schemas.access import AccessDecision, Action, Allow, Deny, DenyReason, Resource
from asset_control.services.permission_service import resolve_matrix


ACCESS_LOGGER = logging.getLogger("asset_control.access")


def _coerce(resource: Resource | str, action: Action | str) -> tuple[Resource, Action]:
    try:
        return Resource(resource), Action(action)
    except ValueError as exc:
        raise ValueError(f"Unknown permission {resource}.{action}") from exc


def _fetch_privilege(db: Session, principal_id: int) -> tuple[bool, int | None] | None:
    row = db.execute(
        select(Principal.IsAdmin, Principal.RoleID).where(Principal.UserID == int(principal_id))
    ).first()
    if row is None:
        return None
    return bool(row.IsAdmin), row.RoleID


def authorize(db: Session, principal_id: int, resource: Resource | str, action: Action | str) -> AccessDecision:
    """Decide whether a principal may perform ``action`` on ``resource``.

    Privilege is re-read from the Users table on every call; whatever a session
    carries is only used as the principal id. Denials are returned, not raised.
    """
    resource, action = _coerce(resource, action)
    principal_id = int(principal_id)

    privilege = _fetch_privilege(db, principal_id)
    if privilege is None:
        ACCESS_LOGGER.info("Access denied user_id=%s perm=%s.%s reason=unknown_principal", principal_id, resource.value, action.value)
        return Deny.because(principal_id, DenyReason.UNKNOWN_PRINCIPAL, resource, action)

    is_admin, role_id = privilege
    if is_admin:
        return Allow(principalID=principal_id, viaAdmin=True)

    matrix = resolve_matrix(db, is_admin=False, role_id=role_id)
    if matrix.is_empty():
        reason = DenyReason.NO_ROLE_PERMISSIONS
    else:
        grants = matrix.grants_for(resource)
        if grants is None:
            reason = DenyReason.RESOURCE_NOT_PERMITTED
        elif grants.get(action) is not True:
            reason = DenyReason.ACTION_NOT_PERMITTED
        else:
            return Allow(principalID=principal_id)

    ACCESS_LOGGER.info(
        "Access denied user_id=%s role_id=%s perm=%s.%s reason=%s",
        principal_id,
        role_id,
        resource.value,
        action.value,
        reason.value,
    )
    return Deny.because(principal_id, reason, resource, action)
