from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from asset_control.models.asset_models import AssignmentStatus, PoolAssignment, PoolKind, ResourcePool
from asset_control.schemas.access import Resource
from asset_control.schemas.pools import AssignmentRequest, InsufficientCapacity
from asset_control.services.activity_service import record_activity


POOL_LOGGER = logging.getLogger("asset_control.pools")

ITEM_TYPE_BY_KIND = {
    PoolKind.IT_EQUIPMENT: "it-equipment",
    PoolKind.CONSUMABLE: "consumable",
    PoolKind.LICENSE: "license",
}

RESOURCE_BY_KIND = {
    PoolKind.IT_EQUIPMENT: Resource.IT_EQUIPMENT,
    PoolKind.CONSUMABLE: Resource.CONSUMABLES,
    PoolKind.LICENSE: Resource.LICENSES,
}


def _item_type(pool: ResourcePool) -> str:
    return ITEM_TYPE_BY_KIND.get(pool.Kind, pool.Kind)


def _coerce_request(request: AssignmentRequest | dict[str, Any]) -> AssignmentRequest:
    if isinstance(request, AssignmentRequest):
        return request
    try:
        return AssignmentRequest.model_validate(request)
    except ValidationError as exc:
        raise ValueError(f"Invalid assignment request: {exc.errors()[0].get('msg')}") from exc


def _reload_pool(db: Session, pool_id: int) -> ResourcePool | None:
    return db.get(ResourcePool, int(pool_id), populate_existing=True)


def get_pool(db: Session, pool_id: int) -> ResourcePool:
    pool = _reload_pool(db, pool_id)
    if pool is None:
        raise LookupError(f"Pool {pool_id} not found.")
    return pool


def available_quantity(pool: ResourcePool) -> int:
    return max(0, int(pool.TotalQuantity or 0) - int(pool.AssignedQuantity or 0))


def resource_for_pool(pool: ResourcePool) -> Resource:
    return RESOURCE_BY_KIND[pool.Kind]


def create_pool(
    db: Session,
    name: str,
    kind: str,
    total_quantity: int = 0,
    *,
    actor_id: int | None = None,
) -> ResourcePool:
    if not (name or "").strip():
        raise ValueError("Pool name is required.")
    if kind not in PoolKind.ALL:
        raise ValueError(f"Unknown pool kind: {kind}")
    if int(total_quantity) < 0:
        raise ValueError("totalQuantity must be zero or greater.")

    pool = ResourcePool(
        Name=name.strip(),
        Kind=kind,
        TotalQuantity=int(total_quantity),
        AssignedQuantity=0,
        CreatedAt=datetime.now(),
        UpdatedAt=datetime.now(),
    )
    try:
        db.add(pool)
        db.flush()
        record_activity(
            db,
            action="create",
            item_type=_item_type(pool),
            item_id=pool.PoolID,
            user_id=actor_id,
            notes=f"{pool.Name} created with quantity {pool.TotalQuantity}",
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return pool


def _reserve(db: Session, pool_id: int, quantity: int) -> bool:
    # Capacity is checked by the database in the same statement that increments it.
    result = db.execute(
        update(ResourcePool)
        .where(ResourcePool.PoolID == int(pool_id))
        .where(ResourcePool.AssignedQuantity + quantity <= ResourcePool.TotalQuantity)
        .values(
            AssignedQuantity=ResourcePool.AssignedQuantity + quantity,
            UpdatedAt=datetime.now(),
        )
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


def _create_assignment(db: Session, pool: ResourcePool, request: AssignmentRequest, actor_id: int | None) -> PoolAssignment:
    assignment = PoolAssignment(
        PoolID=pool.PoolID,
        AssignedTo=request.assignedTo.strip(),
        SerialNumber=request.serialNumber,
        IdentityTag=request.identityTag,
        Quantity=request.quantity,
        AssignedDate=datetime.now(),
        Status=AssignmentStatus.ASSIGNED,
        Notes=request.notes,
    )
    db.add(assignment)
    db.flush()
    record_activity(
        db,
        action="checkout",
        item_type=_item_type(pool),
        item_id=pool.PoolID,
        user_id=actor_id,
        notes=f"{pool.Name} assigned to {assignment.AssignedTo} (Qty: {assignment.Quantity})",
    )
    return assignment


def _capacity_error(db: Session, pool_id: int, requested: int) -> InsufficientCapacity:
    pool = get_pool(db, pool_id)
    available = available_quantity(pool)
    POOL_LOGGER.info("Assignment rejected pool_id=%s requested=%s available=%s", pool_id, requested, available)
    return InsufficientCapacity(poolID=int(pool_id), requested=requested, available=available)


def assign(
    db: Session,
    pool_id: int,
    request: AssignmentRequest | dict[str, Any],
    actor_id: int | None = None,
) -> PoolAssignment | InsufficientCapacity:
    dto = _coerce_request(request)
    pool = get_pool(db, pool_id)
    if dto.quantity > available_quantity(pool):
        return _capacity_error(db, pool.PoolID, dto.quantity)

    try:
        if not _reserve(db, pool.PoolID, dto.quantity):
            db.rollback()
            POOL_LOGGER.warning("Assignment conflict pool_id=%s requested=%s", pool.PoolID, dto.quantity)
            return _capacity_error(db, pool.PoolID, dto.quantity)
        assignment = _create_assignment(db, pool, dto, actor_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return assignment


def bulk_assign(
    db: Session,
    pool_id: int,
    requests: Iterable[AssignmentRequest | dict[str, Any]],
    actor_id: int | None = None,
) -> list[PoolAssignment] | InsufficientCapacity:
    """Create several assignments against one pool, all or none.

    The summed quantity is validated and reserved in a single conditional
    update before any assignment row exists.
    """
    dtos = [_coerce_request(item) for item in requests]
    if not dtos:
        raise ValueError("No assignments supplied.")
    total = sum(dto.quantity for dto in dtos)

    pool = get_pool(db, pool_id)
    if total > available_quantity(pool):
        return _capacity_error(db, pool.PoolID, total)

    created: list[PoolAssignment] = []
    try:
        if not _reserve(db, pool.PoolID, total):
            db.rollback()
            POOL_LOGGER.warning("Bulk assignment conflict pool_id=%s requested=%s", pool.PoolID, total)
            return _capacity_error(db, pool.PoolID, total)
        for dto in dtos:
            created.append(_create_assignment(db, pool, dto, actor_id))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    POOL_LOGGER.info("Bulk assignment pool_id=%s count=%s quantity=%s", pool.PoolID, len(created), total)
    return created


def unassign(db: Session, assignment_id: int, actor_id: int | None = None) -> PoolAssignment | None:
    assignment = db.get(PoolAssignment, int(assignment_id), populate_existing=True)
    if assignment is None or assignment.Status != AssignmentStatus.ASSIGNED:
        return None
    quantity = int(assignment.Quantity or 0)

    try:
        result = db.execute(
            update(PoolAssignment)
            .where(PoolAssignment.AssignmentID == assignment.AssignmentID)
            .where(PoolAssignment.Status == AssignmentStatus.ASSIGNED)
            .values(Status=AssignmentStatus.RETURNED, ReturnedDate=datetime.now())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            db.rollback()
            return None

        db.execute(
            update(ResourcePool)
            .where(ResourcePool.PoolID == assignment.PoolID)
            .values(
                AssignedQuantity=case(
                    (ResourcePool.AssignedQuantity >= quantity, ResourcePool.AssignedQuantity - quantity),
                    else_=0,
                ),
                UpdatedAt=datetime.now(),
            )
            .execution_options(synchronize_session=False)
        )
        pool = get_pool(db, assignment.PoolID)
        assignment = db.get(PoolAssignment, assignment.AssignmentID, populate_existing=True)
        record_activity(
            db,
            action="unassign",
            item_type=_item_type(pool),
            item_id=pool.PoolID,
            user_id=actor_id,
            notes=f"{pool.Name} assignment removed for {assignment.AssignedTo} (Qty: {quantity})",
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return assignment


def set_pool_capacity(db: Session, pool_id: int, total_quantity: int, actor_id: int | None = None) -> ResourcePool:
    total = int(total_quantity)
    if total < 0:
        raise ValueError("totalQuantity must be zero or greater.")
    pool = get_pool(db, pool_id)
    previous_total = pool.TotalQuantity

    try:
        result = db.execute(
            update(ResourcePool)
            .where(ResourcePool.PoolID == pool.PoolID)
            .where(ResourcePool.AssignedQuantity <= total)
            .values(TotalQuantity=total, UpdatedAt=datetime.now())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            db.rollback()
            pool = get_pool(db, pool.PoolID)
            raise ValueError(
                f"totalQuantity {total} is below the {pool.AssignedQuantity} unit(s) currently assigned."
            )
        pool = get_pool(db, pool.PoolID)
        record_activity(
            db,
            action="update",
            item_type=_item_type(pool),
            item_id=pool.PoolID,
            user_id=actor_id,
            notes=f"{pool.Name} quantity changed from {previous_total} to {total}",
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return pool


def reconcile_pool(db: Session, pool_id: int) -> ResourcePool:
    pool = get_pool(db, pool_id)
    assigned_sum = db.execute(
        select(func.coalesce(func.sum(PoolAssignment.Quantity), 0))
        .where(PoolAssignment.PoolID == pool.PoolID)
        .where(PoolAssignment.Status == AssignmentStatus.ASSIGNED)
    ).scalar_one()
    target = min(int(assigned_sum), int(pool.TotalQuantity or 0))
    if target == pool.AssignedQuantity:
        return pool

    POOL_LOGGER.warning(
        "Pool drift corrected pool_id=%s cached=%s actual=%s total=%s",
        pool.PoolID,
        pool.AssignedQuantity,
        assigned_sum,
        pool.TotalQuantity,
    )
    try:
        pool.AssignedQuantity = target
        pool.UpdatedAt = datetime.now()
        db.flush()
        record_activity(
            db,
            action="reconcile",
            item_type=_item_type(pool),
            item_id=pool.PoolID,
            notes=f"{pool.Name} assigned quantity reconciled to {target}",
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return pool


def list_assignments(db: Session, pool_id: int, include_returned: bool = False) -> list[PoolAssignment]:
    stmt = select(PoolAssignment).where(PoolAssignment.PoolID == int(pool_id))
    if not include_returned:
        stmt = stmt.where(PoolAssignment.Status == AssignmentStatus.ASSIGNED)
    return list(db.execute(stmt.order_by(PoolAssignment.AssignedDate.desc(), PoolAssignment.AssignmentID.desc())).scalars().all())


def serialize_pool(pool: ResourcePool) -> dict:
    return {
        "poolID": pool.PoolID,
        "name": pool.Name,
        "kind": pool.Kind,
        "totalQuantity": pool.TotalQuantity,
        "assignedQuantity": pool.AssignedQuantity,
        "availableQuantity": available_quantity(pool),
        "createdAt": pool.CreatedAt,
        "updatedAt": pool.UpdatedAt,
    }


def serialize_assignment(assignment: PoolAssignment) -> dict:
    return {
        "assignmentID": assignment.AssignmentID,
        "poolID": assignment.PoolID,
        "assignedTo": assignment.AssignedTo,
        "serialNumber": assignment.SerialNumber,
        "identityTag": assignment.IdentityTag,
        "quantity": assignment.Quantity,
        "assignedDate": assignment.AssignedDate,
        "returnedDate": assignment.ReturnedDate,
        "status": assignment.Status,
        "notes": assignment.Notes,
    }
