from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class Resource(str, Enum):
    ASSETS = "assets"
    COMPONENTS = "components"
    ACCESSORIES = "accessories"
    CONSUMABLES = "consumables"
    LICENSES = "licenses"
    IT_EQUIPMENT = "it_equipment"
    USERS = "users"
    REPORTS = "reports"
    ADMIN = "admin"
    ACTIVITIES = "activities"


class Action(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    ADD = "add"
    DELETE = "delete"


class DenyReason(str, Enum):
    UNKNOWN_PRINCIPAL = "unknown_principal"
    NO_ROLE_PERMISSIONS = "no_role_permissions"
    RESOURCE_NOT_PERMITTED = "resource_not_permitted"
    ACTION_NOT_PERMITTED = "action_not_permitted"


DENY_MESSAGES = {
    DenyReason.UNKNOWN_PRINCIPAL: "principal not found",
    DenyReason.NO_ROLE_PERMISSIONS: "no role permissions configured",
    DenyReason.RESOURCE_NOT_PERMITTED: "resource not permitted",
    DenyReason.ACTION_NOT_PERMITTED: "action not permitted",
}


class Allow(BaseModel):
    model_config = ConfigDict(frozen=True)

    decision: Literal["allow"] = "allow"
    principalID: int
    viaAdmin: bool = False

    @property
    def allowed(self) -> bool:
        return True


class Deny(BaseModel):
    model_config = ConfigDict(frozen=True)

    decision: Literal["deny"] = "deny"
    principalID: int
    reason: DenyReason
    message: str
    resource: Optional[Resource] = None
    action: Optional[Action] = None

    @property
    def allowed(self) -> bool:
        return False

    @classmethod
    def because(cls, principal_id: int, reason: DenyReason, resource: Resource, action: Action) -> "Deny":
        return cls(
            principalID=principal_id,
            reason=reason,
            message=DENY_MESSAGES[reason],
            resource=resource,
            action=action,
        )


AccessDecision = Union[Allow, Deny]
