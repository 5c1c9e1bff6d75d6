from __future__ import annotations

import logging
import os
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from asset_control.models.access_models import Principal
from asset_control.models.asset_models import Asset, AssetStatus
from asset_control.services.activity_service import record_activity


LEDGER_LOGGER = logging.getLogger("asset_control.ledger")

SYSTEM_PRINCIPAL_ID = int(os.environ.get("SYSTEM_PRINCIPAL_ID") or "1")

ITEM_TYPE = "asset"


def _reload(db: Session, asset_id: int) -> Asset | None:
    return db.get(Asset, int(asset_id), populate_existing=True)


def _principal_label(db: Session, principal_id: int) -> str | None:
    row = db.execute(
        select(Principal.Username, Principal.FirstName, Principal.LastName).where(Principal.UserID == int(principal_id))
    ).first()
    if row is None:
        return None
    full_name = " ".join(part for part in (row.FirstName, row.LastName) if part)
    return full_name or row.Username


def register_asset(
    db: Session,
    asset_tag: str,
    name: str,
    *,
    serial_number: str | None = None,
    category: str | None = None,
    identity_tag: str | None = None,
    actor_id: int | None = None,
) -> Asset:
    tag = (asset_tag or "").strip()
    if not tag:
        raise ValueError("Asset tag is required.")
    if not (name or "").strip():
        raise ValueError("Asset name is required.")
    existing = db.execute(select(Asset.AssetID).where(Asset.AssetTag == tag)).first()
    if existing:
        raise ValueError(f"Asset tag {tag} is already in use.")

    asset = Asset(
        AssetTag=tag,
        Name=name.strip(),
        SerialNumber=serial_number,
        Category=category,
        Status=AssetStatus.AVAILABLE,
        IdentityTag=(identity_tag or "").strip() or None,
        CreatedAt=datetime.now(),
        UpdatedAt=datetime.now(),
    )
    try:
        db.add(asset)
        db.flush()
        record_activity(
            db,
            action="create",
            item_type=ITEM_TYPE,
            item_id=asset.AssetID,
            user_id=actor_id,
            notes=f"Asset {asset.Name} ({asset.AssetTag}) created",
        )
        if asset.IdentityTag is not None:
            _checkout_to_identity_tag(db, asset.AssetID, asset.IdentityTag)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return _reload(db, asset.AssetID)


def _checkout(
    db: Session,
    asset_id: int,
    principal_id: int,
    expected_checkin_date: date | None,
    notes: str | None,
) -> Asset | None:
    asset = _reload(db, asset_id)
    label = _principal_label(db, principal_id)
    if asset is None or label is None:
        return None
    if asset.Status != AssetStatus.AVAILABLE:
        return None

    # The status guard in the WHERE clause makes the database arbitrate racing checkouts.
    result = db.execute(
        update(Asset)
        .where(Asset.AssetID == asset.AssetID, Asset.Status == AssetStatus.AVAILABLE)
        .values(
            Status=AssetStatus.DEPLOYED,
            AssignedTo=int(principal_id),
            CheckoutDate=date.today(),
            ExpectedCheckinDate=expected_checkin_date,
            UpdatedAt=datetime.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        LEDGER_LOGGER.warning("Checkout conflict asset_id=%s user_id=%s", asset.AssetID, principal_id)
        return None

    asset = _reload(db, asset.AssetID)
    record_activity(
        db,
        action="checkout",
        item_type=ITEM_TYPE,
        item_id=asset.AssetID,
        user_id=int(principal_id),
        notes=notes or f"Asset {asset.Name} ({asset.AssetTag}) checked out to {label}",
    )
    return asset


def _checkout_to_identity_tag(db: Session, asset_id: int, tag: str) -> Asset | None:
    return _checkout(
        db,
        asset_id,
        SYSTEM_PRINCIPAL_ID,
        None,
        f"Asset automatically checked out to identity tag: {tag}",
    )


def checkout(
    db: Session,
    asset_id: int,
    principal_id: int,
    expected_checkin_date: date | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> Asset | None:
    """Move an available asset to deployed for ``principal_id``.

    Returns None when the transition does not apply (asset or principal
    missing, or asset not available); callers treat that as a declined
    request, not an error.
    """
    try:
        asset = _checkout(db, asset_id, principal_id, expected_checkin_date, notes)
        if asset is None:
            db.rollback()
            return None
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    LEDGER_LOGGER.info("Checkout asset_id=%s user_id=%s actor_id=%s", asset.AssetID, principal_id, actor_id)
    return asset


def _checkin(db: Session, asset_id: int, actor_id: int | None = None) -> Asset | None:
    asset = _reload(db, asset_id)
    if asset is None or asset.Status not in AssetStatus.CHECKED_OUT:
        return None
    previous_holder = asset.AssignedTo

    result = db.execute(
        update(Asset)
        .where(Asset.AssetID == asset.AssetID, Asset.Status.in_(AssetStatus.CHECKED_OUT))
        .values(
            Status=AssetStatus.AVAILABLE,
            AssignedTo=None,
            CheckoutDate=None,
            ExpectedCheckinDate=None,
            IdentityTag=None,
            UpdatedAt=datetime.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        LEDGER_LOGGER.warning("Checkin conflict asset_id=%s", asset.AssetID)
        return None

    asset = _reload(db, asset.AssetID)
    record_activity(
        db,
        action="checkin",
        item_type=ITEM_TYPE,
        item_id=asset.AssetID,
        user_id=previous_holder if previous_holder is not None else actor_id,
        notes=f"Asset {asset.Name} ({asset.AssetTag}) checked in",
    )
    return asset


def checkin(db: Session, asset_id: int, actor_id: int | None = None) -> Asset | None:
    try:
        asset = _checkin(db, asset_id, actor_id)
        if asset is None:
            db.rollback()
            return None
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return asset


def attach_identity_tag(db: Session, asset_id: int, tag: str | None, actor_id: int | None = None) -> Asset | None:
    """Store an external identity tag on an asset.

    Attaching a new or changed tag also checks the asset out to the system
    principal when it is available. Re-attaching the tag an asset is already
    deployed under changes nothing.
    """
    asset = _reload(db, asset_id)
    if asset is None:
        return None
    normalized = (tag or "").strip() or None

    if normalized is not None and asset.Status == AssetStatus.DEPLOYED and asset.IdentityTag == normalized:
        return asset

    try:
        previous = asset.IdentityTag
        asset.IdentityTag = normalized
        asset.UpdatedAt = datetime.now()
        db.flush()
        if previous != normalized:
            record_activity(
                db,
                action="update",
                item_type=ITEM_TYPE,
                item_id=asset.AssetID,
                user_id=actor_id,
                notes=f"Asset {asset.Name} ({asset.AssetTag}) identity tag set to {normalized or 'none'}",
            )

        if normalized is not None:
            _checkout_to_identity_tag(db, asset.AssetID, normalized)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return _reload(db, asset.AssetID)


def mark_overdue(db: Session, today: date | None = None) -> list[Asset]:
    current = today or date.today()
    candidates = db.execute(
        select(Asset.AssetID)
        .where(Asset.Status == AssetStatus.DEPLOYED)
        .where(Asset.ExpectedCheckinDate.is_not(None))
        .where(Asset.ExpectedCheckinDate < current)
        .order_by(Asset.AssetID)
    ).scalars().all()

    changed: list[Asset] = []
    try:
        for asset_id in candidates:
            result = db.execute(
                update(Asset)
                .where(Asset.AssetID == asset_id, Asset.Status == AssetStatus.DEPLOYED)
                .values(Status=AssetStatus.OVERDUE, UpdatedAt=datetime.now())
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                continue
            asset = _reload(db, asset_id)
            record_activity(
                db,
                action="overdue",
                item_type=ITEM_TYPE,
                item_id=asset_id,
                user_id=asset.AssignedTo,
                notes=f"Asset {asset.Name} ({asset.AssetTag}) overdue since {asset.ExpectedCheckinDate}",
            )
            changed.append(asset)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if changed:
        LEDGER_LOGGER.info("Marked overdue count=%s date=%s", len(changed), current)
    return changed


def release_principal_assets(db: Session, principal_id: int) -> int:
    held = db.execute(
        select(Asset.AssetID).where(Asset.AssignedTo == int(principal_id)).order_by(Asset.AssetID)
    ).scalars().all()
    released = 0
    for asset_id in held:
        if _checkin(db, asset_id) is not None:
            released += 1
    return released


def delete_asset(db: Session, asset_id: int, actor_id: int | None = None) -> bool:
    asset = _reload(db, asset_id)
    if asset is None:
        return False
    try:
        record_activity(
            db,
            action="delete",
            item_type=ITEM_TYPE,
            item_id=asset.AssetID,
            user_id=actor_id,
            notes=f"Asset {asset.Name} ({asset.AssetTag}) deleted while {asset.Status}",
        )
        db.delete(asset)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return True


def serialize_asset(asset: Asset) -> dict:
    return {
        "assetID": asset.AssetID,
        "assetTag": asset.AssetTag,
        "name": asset.Name,
        "serialNumber": asset.SerialNumber,
        "category": asset.Category,
        "status": asset.Status,
        "assignedTo": asset.AssignedTo,
        "checkoutDate": asset.CheckoutDate,
        "expectedCheckinDate": asset.ExpectedCheckinDate,
        "identityTag": asset.IdentityTag,
        "createdAt": asset.CreatedAt,
        "updatedAt": asset.UpdatedAt,
    }
