"""
RBAC admin controller — permission catalog, roles, user assignments.

Every route requires `admin_access` or `admin_permissions_manage`.
Controllers are THIN: they delegate to `permission_service`, commit,
and then invalidate the permission cache for every user whose
effective set may have changed.  Invalidation happens strictly AFTER
the commit so a concurrent request cannot re-cache the old state.
"""

import uuid
from collections.abc import Iterable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.database import get_db, store_errors
from crm_backend.rbac.cache import PermissionCache
from crm_backend.rbac.context import AuthContext
from crm_backend.rbac.dependencies import get_permission_cache, require_any_permission
from crm_backend.rbac.permission_seed import seed
from crm_backend.rbac.resolver import PermissionResolver
from crm_backend.schemas import (
    AssignRoleRequest,
    BulkPermissionCheckOut,
    BulkPermissionCheckRequest,
    CreatePermissionRequest,
    CreateRoleRequest,
    DirectPermissionOut,
    MessageResponse,
    PermissionCatalogOut,
    PermissionCheckOut,
    PermissionOut,
    PermissionStatsOut,
    RoleOut,
    SeedReportOut,
    SetDirectPermissionRequest,
    UpdatePermissionRequest,
    UpdateRoleRequest,
    UserPermissionSummaryOut,
    UserRoleOut,
)
from crm_backend.services import permission_service

router = APIRouter(prefix="/api/rbac", tags=["RBAC"])

require_rbac_admin = require_any_permission("admin_access", "admin_permissions_manage")


async def _commit_and_invalidate(
    db: AsyncSession,
    cache: PermissionCache,
    user_ids: Iterable[uuid.UUID] = (),
) -> None:
    with store_errors("commit"):
        await db.commit()
    cache.invalidate_many(user_ids)


# ── Permissions ──────────────────────────────────────────────────────
@router.get("/permissions", response_model=PermissionCatalogOut)
async def list_permissions(
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
):
    """Full catalog, flat and grouped by module."""
    perms = await permission_service.list_permissions(db)
    grouped = permission_service.group_permissions_by_module(perms)
    return PermissionCatalogOut(
        permissions=[PermissionOut.model_validate(p) for p in perms],
        grouped_permissions={
            module: [PermissionOut.model_validate(p) for p in items]
            for module, items in grouped.items()
        },
    )


@router.post("/permissions", response_model=PermissionOut, status_code=201)
async def create_permission(
    body: CreatePermissionRequest,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    perm = await permission_service.create_permission(
        key=body.key,
        name=body.name,
        module=body.module,
        description=body.description,
        db=db,
    )
    await _commit_and_invalidate(db, cache)
    return PermissionOut.model_validate(perm)


@router.patch("/permissions/{permission_id}", response_model=PermissionOut)
async def update_permission(
    permission_id: uuid.UUID,
    body: UpdatePermissionRequest,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    perm = await permission_service.update_permission(
        permission_id,
        db,
        name=body.name,
        description=body.description,
        module=body.module,
    )
    await _commit_and_invalidate(db, cache)
    return PermissionOut.model_validate(perm)


@router.delete("/permissions/{permission_id}", response_model=MessageResponse)
async def delete_permission(
    permission_id: uuid.UUID,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    await permission_service.delete_permission(permission_id, db)
    await _commit_and_invalidate(db, cache)
    return MessageResponse(detail="Permission deleted")


# ── Roles ────────────────────────────────────────────────────────────
@router.get("/roles", response_model=list[RoleOut])
async def list_roles(
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
):
    roles = await permission_service.list_roles(db)
    return [RoleOut.from_role(r) for r in roles]


@router.post("/roles", response_model=RoleOut, status_code=201)
async def create_role(
    body: CreateRoleRequest,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    role = await permission_service.create_role(
        name=body.name,
        description=body.description,
        color=body.color,
        permission_keys=body.permission_keys,
        db=db,
    )
    await _commit_and_invalidate(db, cache)
    return RoleOut.from_role(role)


@router.get("/roles/{role_id}", response_model=RoleOut)
async def get_role(
    role_id: uuid.UUID,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
):
    return RoleOut.from_role(await permission_service.get_role(role_id, db))


@router.put("/roles/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: uuid.UUID,
    body: UpdateRoleRequest,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """Edit a custom role.  System roles are rejected with 400."""
    role = await permission_service.update_role(
        role_id,
        db,
        name=body.name,
        description=body.description,
        color=body.color,
        permission_keys=body.permission_keys,
    )
    affected = await permission_service.user_ids_for_role(role_id, db)
    await _commit_and_invalidate(db, cache, affected)
    return RoleOut.from_role(role)


@router.delete("/roles/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: uuid.UUID,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    await permission_service.delete_role(role_id, db)
    await _commit_and_invalidate(db, cache)
    return MessageResponse(detail="Role deleted")


# ── User assignments ─────────────────────────────────────────────────
@router.get("/users/{user_id}/permissions", response_model=UserPermissionSummaryOut)
async def get_user_permissions(
    user_id: uuid.UUID,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
):
    summary = await permission_service.get_user_permission_summary(user_id, db)
    user = summary["user"]
    return UserPermissionSummaryOut(
        user_id=user.id,
        email=user.email,
        full_name=user.full_name,
        roles=[RoleOut.from_role(r) for r in summary["roles"]],
        permissions=summary["permissions"],
        direct_permissions=[
            DirectPermissionOut.from_override(o) for o in summary["direct_permissions"]
        ],
    )


@router.post("/users/{user_id}/roles", response_model=UserRoleOut, status_code=201)
async def assign_role(
    user_id: uuid.UUID,
    body: AssignRoleRequest,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    assignment = await permission_service.assign_role(
        user_id, body.role_id, db, assigned_by=ctx.user_id
    )
    await _commit_and_invalidate(db, cache, [user_id])
    return UserRoleOut.model_validate(assignment)


@router.delete("/users/{user_id}/roles/{role_id}", response_model=MessageResponse)
async def remove_role(
    user_id: uuid.UUID,
    role_id: uuid.UUID,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    await permission_service.remove_role(user_id, role_id, db)
    await _commit_and_invalidate(db, cache, [user_id])
    return MessageResponse(detail="Role removed from user")


@router.put("/users/{user_id}/permissions/{permission_key}", response_model=DirectPermissionOut)
async def set_direct_permission(
    user_id: uuid.UUID,
    permission_key: str,
    body: SetDirectPermissionRequest,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """Grant (`granted=true`) or deny (`granted=false`) one permission directly."""
    override = await permission_service.set_direct_permission(
        user_id, permission_key, body.granted, db, assigned_by=ctx.user_id
    )
    await _commit_and_invalidate(db, cache, [user_id])
    return DirectPermissionOut.from_override(override)


@router.delete("/users/{user_id}/permissions/{permission_key}", response_model=MessageResponse)
async def remove_direct_permission(
    user_id: uuid.UUID,
    permission_key: str,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    await permission_service.remove_direct_permission(user_id, permission_key, db)
    await _commit_and_invalidate(db, cache, [user_id])
    return MessageResponse(detail="Permission override removed")


@router.get("/users/{user_id}/check/{permission_key}", response_model=PermissionCheckOut)
async def check_user_permission(
    user_id: uuid.UUID,
    permission_key: str,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
):
    """Live check against the store, bypassing the cache."""
    allowed = await PermissionResolver(db).has_permission(user_id, permission_key)
    return PermissionCheckOut(user_id=user_id, permission_key=permission_key, has_permission=allowed)


@router.post("/users/{user_id}/check", response_model=BulkPermissionCheckOut)
async def check_user_permissions(
    user_id: uuid.UUID,
    body: BulkPermissionCheckRequest,
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await PermissionResolver(db).check_permissions(user_id, body.permission_keys)
    return BulkPermissionCheckOut(user_id=user_id, permissions=result)


# ── Initialization & maintenance ─────────────────────────────────────
@router.post("/initialize", response_model=SeedReportOut)
async def initialize(
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """Re-run the idempotent permission / role seed."""
    report = await seed(db)
    cache.clear()
    return SeedReportOut(
        permissions_created=report.permissions_created,
        roles_created=report.roles_created,
        links_created=report.links_created,
    )


@router.get("/stats", response_model=PermissionStatsOut)
async def stats(
    ctx: AuthContext = Depends(require_rbac_admin),
    db: AsyncSession = Depends(get_db),
):
    return PermissionStatsOut(**await permission_service.permission_stats(db))


@router.post("/cache/clear", response_model=MessageResponse)
async def clear_cache(
    user_id: uuid.UUID | None = Query(None),
    ctx: AuthContext = Depends(require_rbac_admin),
    cache: PermissionCache = Depends(get_permission_cache),
):
    """Drop cached permissions for one user, or for everyone."""
    if user_id is None:
        cache.clear()
        return MessageResponse(detail="Permission cache cleared")
    cache.invalidate(user_id)
    return MessageResponse(detail=f"Permission cache cleared for user {user_id}")
