from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from asset_control.models.asset_models import Activity


AUDIT_LOGGER = logging.getLogger("asset_control.audit")


def _write_activity(db: Session, activity: Activity) -> None:
    with db.begin_nested():
        db.add(activity)


def record_activity(
    db: Session,
    *,
    action: str,
    item_type: str,
    item_id: int,
    user_id: int | None = None,
    notes: str | None = None,
) -> None:
    """Append one audit entry without ever failing the caller.

    The row is written inside a SAVEPOINT so a failed insert rolls back only
    itself; the enclosing business transaction stays usable.
    """
    activity = Activity(
        Action=action,
        ItemType=item_type,
        ItemID=int(item_id),
        UserID=user_id,
        Timestamp=datetime.now(),
        Notes=notes,
    )
    try:
        _write_activity(db, activity)
    except SQLAlchemyError as exc:
        AUDIT_LOGGER.warning(
            "Activity write failed action=%s item_type=%s item_id=%s error=%s",
            action,
            item_type,
            item_id,
            exc,
        )


def list_activities(
    db: Session,
    *,
    item_type: str | None = None,
    item_id: int | None = None,
    user_id: int | None = None,
    limit: int | None = None,
) -> list[Activity]:
    stmt = select(Activity)
    if item_type:
        stmt = stmt.where(Activity.ItemType == item_type)
    if item_id is not None:
        stmt = stmt.where(Activity.ItemID == int(item_id))
    if user_id is not None:
        stmt = stmt.where(Activity.UserID == int(user_id))
    stmt = stmt.order_by(Activity.Timestamp, Activity.ActivityID)
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def detach_principal(db: Session, principal_id: int, username: str) -> int:
    note = f" [User deleted: {username}]"
    db.flush()
    result = db.execute(
        update(Activity)
        .where(Activity.UserID == int(principal_id))
        .values(UserID=None, Notes=func.coalesce(Activity.Notes, "") + note)
        .execution_options(synchronize_session=False)
    )
    # Bulk UPDATE bypasses the identity map; drop cached rows so readers see the detached state.
    db.expire_all()
    return result.rowcount or 0


def serialize_activity(activity: Activity) -> dict:
    return {
        "activityID": activity.ActivityID,
        "action": activity.Action,
        "itemType": activity.ItemType,
        "itemID": activity.ItemID,
        "userID": activity.UserID,
        "timestamp": activity.Timestamp,
        "notes": activity.Notes,
    }
