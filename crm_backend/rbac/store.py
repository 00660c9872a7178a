"""
Read-side queries over role / permission assignment state.

These are the only calls the resolver makes, and the only suspension
points of a permission check.  Every query runs inside `store_errors`
so a driver failure surfaces as `StoreError`, never as "no rows".

The write side (assign, revoke, create, delete …) lives in
`crm_backend.services.permission_service`.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.database import store_errors
from crm_backend.models.permission import Permission, UserPermission
from crm_backend.models.role import Role, UserRole, role_permissions
from crm_backend.models.user import User, UserStatus


async def get_user_status(user_id: uuid.UUID, db: AsyncSession) -> UserStatus | None:
    """Return the user's status, or None if no such user exists."""
    with store_errors("user lookup"):
        result = await db.execute(select(User.status).where(User.id == user_id))
        return result.scalar_one_or_none()


async def list_roles_for_user(user_id: uuid.UUID, db: AsyncSession) -> list[Role]:
    """Roles assigned to the user, ordered by name."""
    stmt = (
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(Role.name)
    )
    with store_errors("role lookup"):
        result = await db.execute(stmt)
        return list(result.scalars().all())


async def list_role_names_for_user(user_id: uuid.UUID, db: AsyncSession) -> set[str]:
    stmt = (
        select(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
    )
    with store_errors("role lookup"):
        result = await db.execute(stmt)
        return set(result.scalars().all())


async def list_role_permissions(role_id: uuid.UUID, db: AsyncSession) -> list[Permission]:
    stmt = (
        select(Permission)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .where(role_permissions.c.role_id == role_id)
        .order_by(Permission.key)
    )
    with store_errors("role permission lookup"):
        result = await db.execute(stmt)
        return list(result.scalars().all())


async def list_direct_permissions_for_user(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> list[UserPermission]:
    """Every grant / deny override attached straight to the user."""
    stmt = select(UserPermission).where(UserPermission.user_id == user_id)
    with store_errors("direct permission lookup"):
        result = await db.execute(stmt)
        return list(result.scalars().all())


async def get_direct_override(
    user_id: uuid.UUID,
    key: str,
    db: AsyncSession,
) -> bool | None:
    """`granted` flag of the user's override for `key`, or None if absent."""
    stmt = (
        select(UserPermission.granted)
        .join(Permission, Permission.id == UserPermission.permission_id)
        .where(UserPermission.user_id == user_id, Permission.key == key)
    )
    with store_errors("direct permission lookup"):
        result = await db.execute(stmt)
        return result.scalar_one_or_none()


async def role_grants_permission(user_id: uuid.UUID, key: str, db: AsyncSession) -> bool:
    """True if at least one of the user's roles carries `key`."""
    stmt = (
        select(Permission.id)
        .join(role_permissions, role_permissions.c.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == role_permissions.c.role_id)
        .where(UserRole.user_id == user_id, Permission.key == key)
        .limit(1)
    )
    with store_errors("role permission lookup"):
        result = await db.execute(stmt)
        return result.first() is not None
