from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from asset_control.models.access_models import Principal, Role
from asset_control.schemas.access import Action, Resource


ACCESS_LOGGER = logging.getLogger("asset_control.access")


class PermissionMatrix:
    """Effective grants of a principal: resource -> action -> bool.

    Built once from free-form role data; every resource and action name is
    checked against the closed enumerations at construction time.
    """

    __slots__ = ("_grants",)

    def __init__(self, grants: Mapping[Resource, Mapping[Action, bool]] | None = None):
        self._grants: dict[Resource, dict[Action, bool]] = {
            Resource(resource): {Action(action): bool(flag) for action, flag in actions.items()}
            for resource, actions in (grants or {}).items()
        }

    @classmethod
    def full(cls) -> "PermissionMatrix":
        return cls({resource: {action: True for action in Action} for resource in Resource})

    @classmethod
    def empty(cls) -> "PermissionMatrix":
        return cls()

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None, *, strict: bool = True) -> "PermissionMatrix":
        if raw is None:
            return cls.empty()
        if not isinstance(raw, Mapping):
            raise ValueError("Permission matrix must be an object of resources.")

        grants: dict[Resource, dict[Action, bool]] = {}
        for raw_resource, raw_actions in raw.items():
            try:
                resource = Resource(str(raw_resource))
            except ValueError:
                if strict:
                    raise ValueError(f"Unknown permission resource: {raw_resource}") from None
                ACCESS_LOGGER.warning("Dropping unknown permission resource=%s", raw_resource)
                continue
            if not isinstance(raw_actions, Mapping):
                if strict:
                    raise ValueError(f"Permissions for {resource.value} must be an object of actions.")
                continue

            actions: dict[Action, bool] = {}
            for raw_action, flag in raw_actions.items():
                try:
                    action = Action(str(raw_action))
                except ValueError:
                    if strict:
                        raise ValueError(f"Unknown permission action: {resource.value}.{raw_action}") from None
                    ACCESS_LOGGER.warning("Dropping unknown permission action=%s.%s", resource.value, raw_action)
                    continue
                actions[action] = flag is True
            grants[resource] = actions
        return cls(grants)

    def is_empty(self) -> bool:
        return not self._grants

    def grants_for(self, resource: Resource) -> dict[Action, bool] | None:
        actions = self._grants.get(resource)
        return dict(actions) if actions is not None else None

    def allows(self, resource: Resource, action: Action) -> bool:
        return self._grants.get(resource, {}).get(action) is True

    def to_raw(self) -> dict[str, dict[str, bool]]:
        return {
            resource.value: {action.value: flag for action, flag in actions.items()}
            for resource, actions in self._grants.items()
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermissionMatrix):
            return NotImplemented
        return self._grants == other._grants

    def __repr__(self) -> str:
        return f"PermissionMatrix({self.to_raw()!r})"


def _grant(actions: tuple[Action, ...], resources: tuple[Resource, ...]) -> dict[str, dict[str, bool]]:
    return {resource.value: {action.value: action in actions for action in Action} for resource in resources}


_INVENTORY = (
    Resource.ASSETS,
    Resource.COMPONENTS,
    Resource.ACCESSORIES,
    Resource.CONSUMABLES,
    Resource.LICENSES,
    Resource.IT_EQUIPMENT,
)

DEFAULT_ROLES: dict[str, dict[str, Any]] = {
    "Viewer": {
        "description": "Read-only access to inventory and reports.",
        "permissions": _grant((Action.VIEW,), _INVENTORY + (Resource.REPORTS,)),
    },
    "Editor": {
        "description": "Maintain inventory records without deleting them.",
        "permissions": _grant((Action.VIEW, Action.EDIT, Action.ADD), _INVENTORY)
        | _grant((Action.VIEW,), (Resource.REPORTS, Resource.ACTIVITIES)),
    },
    "Manager": {
        "description": "Full inventory control and user overview.",
        "permissions": _grant(tuple(Action), _INVENTORY + (Resource.REPORTS, Resource.ACTIVITIES))
        | _grant((Action.VIEW,), (Resource.USERS,)),
    },
}


def _to_json(matrix: PermissionMatrix) -> str:
    return json.dumps(matrix.to_raw(), ensure_ascii=True, sort_keys=True)


def _from_json_dict(value: Any) -> dict[str, Any]:
    if value in (None, ""):
        return {}
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(str(value))
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def matrix_for_role_data(raw_permissions: Any) -> PermissionMatrix:
    return PermissionMatrix.from_raw(_from_json_dict(raw_permissions), strict=False)


def resolve_permissions(db: Session, principal: Principal) -> PermissionMatrix:
    return resolve_matrix(db, is_admin=bool(principal.IsAdmin), role_id=principal.RoleID)


def resolve_matrix(db: Session, *, is_admin: bool, role_id: int | None) -> PermissionMatrix:
    if is_admin:
        return PermissionMatrix.full()
    if role_id is None:
        return PermissionMatrix.empty()
    # Column select: always reaches the database instead of a cached Role in the identity map.
    raw_permissions = db.execute(
        select(Role.Permissions).where(Role.RoleID == int(role_id))
    ).scalar_one_or_none()
    if raw_permissions is None:
        return PermissionMatrix.empty()
    return matrix_for_role_data(raw_permissions)


def get_role_by_name(db: Session, role_name: str) -> Role | None:
    return db.execute(select(Role).where(Role.RoleName == role_name)).scalars().first()


def create_role(
    db: Session,
    role_name: str,
    permissions: Mapping[str, Any] | None = None,
    *,
    description: str | None = None,
    is_system: bool = False,
) -> Role:
    name = (role_name or "").strip()
    if not name:
        raise ValueError("Role name is required.")
    if get_role_by_name(db, name):
        raise ValueError(f"Role {name} already exists.")
    matrix = PermissionMatrix.from_raw(permissions or {}, strict=True)

    role = Role(
        RoleName=name,
        Description=description,
        Permissions=_to_json(matrix),
        IsSystem=is_system,
        CreatedAt=datetime.now(),
        UpdatedAt=datetime.now(),
    )
    db.add(role)
    db.flush()
    return role


def update_role_permissions(db: Session, role_id: int, permissions: Mapping[str, Any]) -> Role:
    role = db.get(Role, int(role_id))
    if not role:
        raise LookupError(f"Role {role_id} not found.")
    matrix = PermissionMatrix.from_raw(permissions, strict=True)
    role.Permissions = _to_json(matrix)
    role.UpdatedAt = datetime.now()
    db.flush()
    return role


def delete_role(db: Session, role_id: int) -> bool:
    role = db.get(Role, int(role_id))
    if not role:
        return False
    in_use = db.execute(
        select(func.count(Principal.UserID)).where(Principal.RoleID == role.RoleID)
    ).scalar_one()
    if in_use:
        raise ValueError(f"Role {role.RoleName} is assigned to {in_use} user(s).")
    db.delete(role)
    db.flush()
    return True


def seed_default_roles(db: Session) -> list[Role]:
    created: list[Role] = []
    for role_name, definition in DEFAULT_ROLES.items():
        if get_role_by_name(db, role_name):
            continue
        created.append(
            create_role(
                db,
                role_name,
                definition["permissions"],
                description=definition["description"],
                is_system=True,
            )
        )
    return created


def serialize_role(role: Role) -> dict:
    return {
        "roleID": role.RoleID,
        "roleName": role.RoleName,
        "description": role.Description,
        "permissions": matrix_for_role_data(role.Permissions).to_raw(),
        "isSystem": bool(role.IsSystem),
        "createdAt": role.CreatedAt,
        "updatedAt": role.UpdatedAt,
    }
