from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreatePoolDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    kind: Literal["it_equipment", "consumable", "license"]
    totalQuantity: int = Field(0, ge=0)


class AssignmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assignedTo: str = Field(min_length=1)
    quantity: int = Field(1, ge=1)
    serialNumber: Optional[str] = None
    identityTag: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("assignedTo")
    @classmethod
    def _strip_assignee(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("assignedTo must not be blank")
        return value


class BulkAssignmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assignments: List[AssignmentRequest] = []


class InsufficientCapacity(BaseModel):
    model_config = ConfigDict(frozen=True)

    error: Literal["insufficient_capacity"] = "insufficient_capacity"
    poolID: int
    requested: int
    available: int


class PoolCapacityDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    totalQuantity: int = Field(ge=0)
