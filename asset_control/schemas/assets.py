from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict


class RegisterAssetDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assetTag: str
    name: str
    serialNumber: Optional[str] = None
    category: Optional[str] = None
    identityTag: Optional[str] = None


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    userID: int
    expectedCheckinDate: Optional[date] = None
    notes: Optional[str] = None


class IdentityTagRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    identityTag: Optional[str] = None
