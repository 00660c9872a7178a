"""
Admin controller — user management.

Every route uses `Depends(require_permission(...))` for enforcement.
Controllers are THIN: they delegate to services and return schemas.

Architecture note:
    We inject the `AuthContext` returned by the guard so the
    controller knows who the acting admin is without a second DB call.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.database import get_db, store_errors
from crm_backend.models.user import User
from crm_backend.rbac.cache import PermissionCache
from crm_backend.rbac.context import AuthContext
from crm_backend.rbac.dependencies import (
    get_permission_cache,
    require_any_permission,
    require_permission,
)
from crm_backend.schemas import CreateUserRequest, MessageResponse, UserOut
from crm_backend.services import user_service

router = APIRouter(prefix="/api/admin", tags=["Admin"])


def _user_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        email=u.email,
        full_name=u.full_name,
        department=u.department,
        status=u.status.value,
        roles=sorted(r.name for r in u.roles),
        created_at=u.created_at,
    )


# ── Users ────────────────────────────────────────────────────────────
@router.get("/users", response_model=list[UserOut])
async def list_users(
    ctx: AuthContext = Depends(require_any_permission("admin_access", "admin_users_manage")),
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    users = await user_service.list_users(db, skip, limit)
    return [_user_out(u) for u in users]


@router.post("/users", response_model=UserOut, status_code=201)
async def create_user(
    body: CreateUserRequest,
    ctx: AuthContext = Depends(require_permission("admin_users_manage")),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.create_user(
        email=body.email,
        full_name=body.full_name,
        password=body.password,
        department=body.department,
        db=db,
    )
    with store_errors("commit"):
        await db.commit()
    return _user_out(user)


@router.post("/users/{user_id}/disable", response_model=MessageResponse)
async def disable_user(
    user_id: uuid.UUID,
    ctx: AuthContext = Depends(require_permission("admin_users_manage")),
    db: AsyncSession = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
):
    await user_service.disable_user(user_id, db)
    with store_errors("commit"):
        await db.commit()
    cache.invalidate(user_id)
    return MessageResponse(detail="User disabled successfully")
