from asset_control.models.access_models import Principal, Role
from asset_control.models.asset_models import (
    Activity,
    Asset,
    AssetStatus,
    AssignmentStatus,
    PoolAssignment,
    PoolKind,
    ResourcePool,
)

__all__ = [
    "Activity",
    "Asset",
    "AssetStatus",
    "AssignmentStatus",
    "PoolAssignment",
    "PoolKind",
    "Principal",
    "ResourcePool",
    "Role",
]
