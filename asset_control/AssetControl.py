import logging

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from sqlalchemy import text
from sqlalchemy.orm import Session

from asset_control.db.deps import get_asset_db
from asset_control.models.asset_models import Asset, PoolAssignment
from asset_control.schemas.access import Action, Deny, DenyReason, Resource
from asset_control.schemas.assets import CheckoutRequest, IdentityTagRequest, RegisterAssetDto
from asset_control.schemas.pools import (
    AssignmentRequest,
    BulkAssignmentRequest,
    CreatePoolDto,
    InsufficientCapacity,
    PoolCapacityDto,
)
from asset_control.schemas.principals import CreatePrincipalDto, CreateRoleDto, UpdateRolePermissionsDto
from asset_control.services.access_service import authorize
from asset_control.services.activity_service import list_activities, serialize_activity
from asset_control.services.asset_ledger_service import (
    attach_identity_tag,
    checkin,
    checkout,
    delete_asset,
    mark_overdue,
    register_asset,
    serialize_asset,
)
from asset_control.services.permission_service import create_role, delete_role, serialize_role, update_role_permissions
from asset_control.services.pool_assignment_service import (
    RESOURCE_BY_KIND,
    assign,
    bulk_assign,
    create_pool,
    get_pool,
    list_assignments,
    reconcile_pool,
    resource_for_pool,
    serialize_assignment,
    serialize_pool,
    set_pool_capacity,
    unassign,
)
from asset_control.services.principal_service import (
    create_principal,
    delete_principal,
    describe_principal,
    update_principal,
)
from asset_control.services.user_access_service import get_session, remove_session


app = FastAPI()

AUTH_LOGGER = logging.getLogger("asset_control.auth")


def current_principal_id(x_session_token: str | None = Header(None, alias="X-Session-Token")) -> int:
    session = get_session(x_session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return int(session["userID"])


def _authorize_or_raise(db: Session, principal_id: int, resource: Resource, action: Action) -> None:
    decision = authorize(db, principal_id, resource, action)
    if isinstance(decision, Deny):
        status_code = 401 if decision.reason == DenyReason.UNKNOWN_PRINCIPAL else 403
        raise HTTPException(
            status_code=status_code,
            detail={"reason": decision.reason.value, "message": decision.message},
        )


def require_permission(resource: Resource, action: Action):
    def _dependency(
        principal_id: int = Depends(current_principal_id),
        db: Session = Depends(get_asset_db),
    ) -> int:
        _authorize_or_raise(db, principal_id, resource, action)
        return principal_id

    return _dependency


def _capacity_conflict(result: InsufficientCapacity) -> HTTPException:
    return HTTPException(status_code=409, detail=result.model_dump())


def _get_asset_or_404(db: Session, asset_id: int) -> Asset:
    asset = db.get(Asset, asset_id)
    if not asset:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset


def _get_pool_or_404(db: Session, pool_id: int):
    try:
        return get_pool(db, pool_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="Pool not found") from exc


@app.get("/healthz")
def healthcheck(db: Session = Depends(get_asset_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/auth/me")
def auth_me(principal_id: int = Depends(current_principal_id), db: Session = Depends(get_asset_db)):
    user = describe_principal(db, principal_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return {"user": user}


@app.post("/api/auth/logout")
def auth_logout(x_session_token: str | None = Header(None, alias="X-Session-Token")):
    remove_session(x_session_token)
    return {"ok": True}


@app.post("/api/roles")
def create_role_route(
    payload: CreateRoleDto,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ADMIN, Action.ADD)),
):
    try:
        role = create_role(db, payload.roleName, payload.permissions, description=payload.description)
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    AUTH_LOGGER.info("Role created role_id=%s by user_id=%s", role.RoleID, actor_id)
    return serialize_role(role)


@app.patch("/api/roles/{role_id}")
def update_role_route(
    role_id: int,
    payload: UpdateRolePermissionsDto,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ADMIN, Action.EDIT)),
):
    try:
        role = update_role_permissions(db, role_id, payload.permissions)
        db.commit()
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail="Role not found") from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    AUTH_LOGGER.info("Role permissions updated role_id=%s by user_id=%s", role_id, actor_id)
    return serialize_role(role)


@app.delete("/api/roles/{role_id}")
def delete_role_route(
    role_id: int,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ADMIN, Action.DELETE)),
):
    try:
        deleted = delete_role(db, role_id)
        db.commit()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Role not found")
    AUTH_LOGGER.info("Role deleted role_id=%s by user_id=%s", role_id, actor_id)
    return {"ok": True}


@app.post("/api/users")
def create_user_route(
    payload: CreatePrincipalDto,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.USERS, Action.ADD)),
):
    try:
        principal = create_principal(
            db,
            payload.username,
            is_admin=payload.isAdmin,
            role_id=payload.roleID,
            first_name=payload.firstName,
            last_name=payload.lastName,
            email=payload.email,
            actor_id=actor_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return describe_principal(db, principal.UserID)


@app.patch("/api/users/{user_id}")
def update_user_route(
    user_id: int,
    payload: dict,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.USERS, Action.EDIT)),
):
    try:
        options = {}
        if "isAdmin" in payload:
            options["is_admin"] = payload.get("isAdmin") in (True, "true", 1)
        if "roleID" in payload:
            raw_role = payload.get("roleID")
            options["role_id"] = int(raw_role) if raw_role not in (None, "") else None
        update_principal(db, user_id, actor_id=actor_id, **options)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail="User not found") from exc
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return describe_principal(db, user_id)


@app.delete("/api/users/{user_id}")
def delete_user_route(
    user_id: int,
    force: bool = Query(False),
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.USERS, Action.DELETE)),
):
    try:
        deleted = delete_principal(db, user_id, force=force, actor_id=actor_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="User not found")
    return {"ok": True}


@app.post("/api/assets")
def create_asset_route(
    payload: RegisterAssetDto,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ASSETS, Action.ADD)),
):
    try:
        asset = register_asset(
            db,
            payload.assetTag,
            payload.name,
            serial_number=payload.serialNumber,
            category=payload.category,
            identity_tag=payload.identityTag,
            actor_id=actor_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_asset(asset)


@app.post("/api/assets/mark-overdue")
def mark_overdue_route(
    db: Session = Depends(get_asset_db),
    _: int = Depends(require_permission(Resource.ASSETS, Action.EDIT)),
):
    return [serialize_asset(asset) for asset in mark_overdue(db)]


@app.get("/api/assets/{asset_id}")
def get_asset_route(
    asset_id: int,
    db: Session = Depends(get_asset_db),
    _: int = Depends(require_permission(Resource.ASSETS, Action.VIEW)),
):
    return serialize_asset(_get_asset_or_404(db, asset_id))


@app.post("/api/assets/{asset_id}/checkout")
def checkout_asset_route(
    asset_id: int,
    payload: CheckoutRequest,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ASSETS, Action.EDIT)),
):
    _get_asset_or_404(db, asset_id)
    asset = checkout(db, asset_id, payload.userID, payload.expectedCheckinDate, payload.notes, actor_id=actor_id)
    if asset is None:
        raise HTTPException(status_code=409, detail="Asset cannot be checked out in its current state.")
    return serialize_asset(asset)


@app.post("/api/assets/{asset_id}/checkin")
def checkin_asset_route(
    asset_id: int,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ASSETS, Action.EDIT)),
):
    _get_asset_or_404(db, asset_id)
    asset = checkin(db, asset_id, actor_id=actor_id)
    if asset is None:
        raise HTTPException(status_code=409, detail="Asset is not checked out.")
    return serialize_asset(asset)


@app.put("/api/assets/{asset_id}/identity-tag")
def identity_tag_route(
    asset_id: int,
    payload: IdentityTagRequest,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ASSETS, Action.EDIT)),
):
    _get_asset_or_404(db, asset_id)
    asset = attach_identity_tag(db, asset_id, payload.identityTag, actor_id=actor_id)
    return serialize_asset(asset)


@app.delete("/api/assets/{asset_id}")
def delete_asset_route(
    asset_id: int,
    db: Session = Depends(get_asset_db),
    actor_id: int = Depends(require_permission(Resource.ASSETS, Action.DELETE)),
):
    if not delete_asset(db, asset_id, actor_id=actor_id):
        raise HTTPException(status_code=404, detail="Asset not found")
    return {"ok": True}


@app.post("/api/pools")
def create_pool_route(
    payload: CreatePoolDto,
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    _authorize_or_raise(db, principal_id, RESOURCE_BY_KIND[payload.kind], Action.ADD)
    try:
        pool = create_pool(db, payload.name, payload.kind, payload.totalQuantity, actor_id=principal_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_pool(pool)


@app.get("/api/pools/{pool_id}")
def get_pool_route(
    pool_id: int,
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    pool = _get_pool_or_404(db, pool_id)
    _authorize_or_raise(db, principal_id, resource_for_pool(pool), Action.VIEW)
    return serialize_pool(pool)


@app.patch("/api/pools/{pool_id}")
def update_pool_capacity_route(
    pool_id: int,
    payload: PoolCapacityDto,
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    pool = _get_pool_or_404(db, pool_id)
    _authorize_or_raise(db, principal_id, resource_for_pool(pool), Action.EDIT)
    try:
        pool = set_pool_capacity(db, pool_id, payload.totalQuantity, actor_id=principal_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_pool(pool)


@app.post("/api/pools/{pool_id}/reconcile")
def reconcile_pool_route(
    pool_id: int,
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    pool = _get_pool_or_404(db, pool_id)
    _authorize_or_raise(db, principal_id, resource_for_pool(pool), Action.EDIT)
    return serialize_pool(reconcile_pool(db, pool_id))


@app.get("/api/pools/{pool_id}/assignments")
def list_pool_assignments_route(
    pool_id: int,
    include_returned: bool = Query(False, alias="includeReturned"),
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    pool = _get_pool_or_404(db, pool_id)
    _authorize_or_raise(db, principal_id, resource_for_pool(pool), Action.VIEW)
    return [serialize_assignment(item) for item in list_assignments(db, pool_id, include_returned=include_returned)]


@app.post("/api/pools/{pool_id}/assignments")
def assign_pool_route(
    pool_id: int,
    payload: AssignmentRequest,
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    pool = _get_pool_or_404(db, pool_id)
    _authorize_or_raise(db, principal_id, resource_for_pool(pool), Action.EDIT)
    result = assign(db, pool_id, payload, actor_id=principal_id)
    if isinstance(result, InsufficientCapacity):
        raise _capacity_conflict(result)
    return serialize_assignment(result)


@app.post("/api/pools/{pool_id}/assignments/bulk")
def bulk_assign_pool_route(
    pool_id: int,
    payload: BulkAssignmentRequest,
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    pool = _get_pool_or_404(db, pool_id)
    _authorize_or_raise(db, principal_id, resource_for_pool(pool), Action.EDIT)
    try:
        result = bulk_assign(db, pool_id, payload.assignments, actor_id=principal_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(result, InsufficientCapacity):
        raise _capacity_conflict(result)
    return [serialize_assignment(item) for item in result]


@app.delete("/api/pool-assignments/{assignment_id}")
def unassign_pool_route(
    assignment_id: int,
    principal_id: int = Depends(current_principal_id),
    db: Session = Depends(get_asset_db),
):
    assignment = db.get(PoolAssignment, assignment_id)
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")
    pool = _get_pool_or_404(db, assignment.PoolID)
    _authorize_or_raise(db, principal_id, resource_for_pool(pool), Action.EDIT)
    result = unassign(db, assignment_id, actor_id=principal_id)
    if result is None:
        raise HTTPException(status_code=409, detail="Assignment already returned.")
    return serialize_assignment(result)


@app.get("/api/activities")
def get_activities_route(
    item_type: str | None = Query(None, alias="itemType"),
    item_id: int | None = Query(None, alias="itemID"),
    limit: int = Query(500, ge=1, le=5000),
    db: Session = Depends(get_asset_db),
    _: int = Depends(require_permission(Resource.ACTIVITIES, Action.VIEW)),
):
    rows = list_activities(db, item_type=item_type, item_id=item_id, limit=limit)
    return [serialize_activity(row) for row in rows]
