from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict


class CreateRoleDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    roleName: str
    description: Optional[str] = None
    permissions: Dict[str, Dict[str, bool]] = {}


class CreatePrincipalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    username: str
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    isAdmin: bool = False
    roleID: Optional[int] = None


class UpdateRolePermissionsDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    permissions: Dict[str, Dict[str, bool]]
