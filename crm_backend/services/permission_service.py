"""
Permission service — catalog, roles & user assignments.

The write side of RBAC.  Every mutation entry point enforces the
assignment invariants:

- A permission key / role name is unique.
- A (user, role) or (user, permission) pair exists at most once.
- System roles are never edited or deleted here; only the seed
  touches them.
- A role or permission still in use cannot be deleted.

Violations raise `InvalidAssignment`; missing rows raise the matching
`NotFoundError` subclass; driver failures raise `StoreError`.

Services flush but never commit.  The caller commits, then invalidates
the permission cache for the affected users (see `user_ids_for_role`).
"""

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.database import store_errors
from crm_backend.core.errors import (
    AssignmentNotFound,
    InvalidAssignment,
    PermissionNotFound,
    RoleNotFound,
    UserNotFound,
)
from crm_backend.models.permission import Permission, UserPermission
from crm_backend.models.role import DEFAULT_ROLE_COLOR, Role, UserRole, role_permissions
from crm_backend.models.user import User
from crm_backend.rbac import store
from crm_backend.rbac.keys import PermissionKey, RoleName
from crm_backend.rbac.resolver import PermissionResolver

logger = logging.getLogger(__name__)


async def _flush_or_conflict(db: AsyncSession, conflict_message: str) -> None:
    """Flush; a unique-constraint race becomes `InvalidAssignment`."""
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise InvalidAssignment(conflict_message)


async def _get_user(user_id: uuid.UUID, db: AsyncSession) -> User:
    with store_errors("user lookup"):
        user = await db.get(User, user_id)
    if user is None:
        raise UserNotFound()
    return user


# ═════════════════════════════════════════════════════════════════════
# Permissions (catalog)
# ═════════════════════════════════════════════════════════════════════


async def list_permissions(db: AsyncSession) -> list[Permission]:
    stmt = select(Permission).order_by(Permission.module, Permission.name)
    with store_errors("permission listing"):
        result = await db.execute(stmt)
        return list(result.scalars().all())


def group_permissions_by_module(permissions: Iterable[Permission]) -> dict[str, list[Permission]]:
    grouped: dict[str, list[Permission]] = {}
    for perm in permissions:
        grouped.setdefault(perm.module, []).append(perm)
    return grouped


async def get_permission(permission_id: uuid.UUID, db: AsyncSession) -> Permission:
    with store_errors("permission lookup"):
        perm = await db.get(Permission, permission_id)
    if perm is None:
        raise PermissionNotFound()
    return perm


async def get_permission_by_key(key: str, db: AsyncSession) -> Permission:
    try:
        key = PermissionKey(key)
    except ValueError:
        raise PermissionNotFound(f"Permission '{key}' not found")
    with store_errors("permission lookup"):
        result = await db.execute(select(Permission).where(Permission.key == key))
        perm = result.scalar_one_or_none()
    if perm is None:
        raise PermissionNotFound(f"Permission '{key}' not found")
    return perm


async def create_permission(
    *,
    key: str,
    name: str,
    module: str,
    db: AsyncSession,
    description: str | None = None,
) -> Permission:
    key = PermissionKey(key)
    with store_errors("permission creation"):
        existing = await db.execute(select(Permission.id).where(Permission.key == key))
        if existing.scalar_one_or_none() is not None:
            raise InvalidAssignment("A permission with this key already exists")

        perm = Permission(key=key, name=name, module=module, description=description)
        db.add(perm)
        await _flush_or_conflict(db, "A permission with this key already exists")

    logger.info("Permission %s created in module %s", key, module)
    return perm


async def update_permission(
    permission_id: uuid.UUID,
    db: AsyncSession,
    *,
    name: str | None = None,
    description: str | None = None,
    module: str | None = None,
) -> Permission:
    """Edit display fields.  The key itself is immutable."""
    perm = await get_permission(permission_id, db)
    if name is not None:
        perm.name = name
    if description is not None:
        perm.description = description
    if module is not None:
        perm.module = module
    with store_errors("permission update"):
        await db.flush()
    return perm


async def delete_permission(permission_id: uuid.UUID, db: AsyncSession) -> None:
    perm = await get_permission(permission_id, db)

    with store_errors("permission deletion"):
        role_refs = await db.scalar(
            select(func.count())
            .select_from(role_permissions)
            .where(role_permissions.c.permission_id == permission_id)
        )
        user_refs = await db.scalar(
            select(func.count())
            .select_from(UserPermission)
            .where(UserPermission.permission_id == permission_id)
        )
        if role_refs or user_refs:
            raise InvalidAssignment("Cannot delete a permission that is in use")

        await db.delete(perm)
        await db.flush()

    logger.info("Permission %s deleted", perm.key)


# ═════════════════════════════════════════════════════════════════════
# Roles
# ═════════════════════════════════════════════════════════════════════


async def list_roles(db: AsyncSession) -> list[Role]:
    with store_errors("role listing"):
        result = await db.execute(select(Role).order_by(Role.name))
        return list(result.scalars().all())


async def get_role(role_id: uuid.UUID, db: AsyncSession) -> Role:
    with store_errors("role lookup"):
        role = await db.get(Role, role_id)
    if role is None:
        raise RoleNotFound()
    return role


async def get_role_by_name(name: str, db: AsyncSession) -> Role | None:
    with store_errors("role lookup"):
        result = await db.execute(select(Role).where(Role.name == RoleName(name)))
        return result.scalar_one_or_none()


async def _permissions_for_keys(keys: Iterable[str], db: AsyncSession) -> list[Permission]:
    wanted = {PermissionKey(key) for key in keys}
    if not wanted:
        return []
    with store_errors("permission lookup"):
        result = await db.execute(select(Permission).where(Permission.key.in_(wanted)))
        found = list(result.scalars().all())
    unknown = wanted - {perm.key for perm in found}
    if unknown:
        raise PermissionNotFound(f"Unknown permission key(s): {', '.join(sorted(unknown))}")
    return found


def _ensure_mutable(role: Role, action: str) -> None:
    if role.is_system:
        raise InvalidAssignment(f"Cannot {action} a system role")


async def create_role(
    *,
    name: str,
    db: AsyncSession,
    description: str | None = None,
    color: str | None = None,
    permission_keys: Iterable[str] = (),
) -> Role:
    """Create a custom (non-system) role."""
    name = RoleName(name)
    if await get_role_by_name(name, db) is not None:
        raise InvalidAssignment("A role with this name already exists")

    perms = await _permissions_for_keys(permission_keys, db)
    role = Role(
        name=name,
        description=description,
        color=color or DEFAULT_ROLE_COLOR,
        is_system=False,
        permissions=perms,
    )
    with store_errors("role creation"):
        db.add(role)
        await _flush_or_conflict(db, "A role with this name already exists")

    logger.info("Role %s created with %d permission(s)", name, len(perms))
    return role


async def update_role(
    role_id: uuid.UUID,
    db: AsyncSession,
    *,
    name: str | None = None,
    description: str | None = None,
    color: str | None = None,
    permission_keys: Iterable[str] | None = None,
) -> Role:
    """
    Edit a custom role.  `permission_keys=None` leaves the permission
    set alone; any iterable (even empty) replaces it wholesale.
    """
    role = await get_role(role_id, db)
    _ensure_mutable(role, "edit")

    if name is not None:
        name = RoleName(name)
        if name != role.name:
            clash = await get_role_by_name(name, db)
            if clash is not None:
                raise InvalidAssignment("A role with this name already exists")
            role.name = name
    if description is not None:
        role.description = description
    if color is not None:
        role.color = color
    if permission_keys is not None:
        role.permissions = await _permissions_for_keys(permission_keys, db)

    with store_errors("role update"):
        await _flush_or_conflict(db, "A role with this name already exists")

    logger.info("Role %s updated", role.name)
    return role


async def update_role_permissions(
    role_id: uuid.UUID,
    permission_keys: Iterable[str],
    db: AsyncSession,
) -> Role:
    """Replace a custom role's permission set."""
    return await update_role(role_id, db, permission_keys=list(permission_keys))


async def delete_role(role_id: uuid.UUID, db: AsyncSession) -> None:
    role = await get_role(role_id, db)
    _ensure_mutable(role, "delete")

    with store_errors("role deletion"):
        assigned = await db.scalar(
            select(func.count()).select_from(UserRole).where(UserRole.role_id == role_id)
        )
        if assigned:
            raise InvalidAssignment("Cannot delete a role that is assigned to users")

        await db.delete(role)
        await db.flush()

    logger.info("Role %s deleted", role.name)


async def user_ids_for_role(role_id: uuid.UUID, db: AsyncSession) -> set[uuid.UUID]:
    """Users whose effective permissions change when this role changes."""
    with store_errors("role member lookup"):
        result = await db.execute(select(UserRole.user_id).where(UserRole.role_id == role_id))
        return set(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# User assignments
# ═════════════════════════════════════════════════════════════════════


async def assign_role(
    user_id: uuid.UUID,
    role_id: uuid.UUID,
    db: AsyncSession,
    *,
    assigned_by: uuid.UUID | None = None,
) -> UserRole:
    user = await _get_user(user_id, db)
    role = await get_role(role_id, db)

    with store_errors("role assignment"):
        existing = await db.execute(
            select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise InvalidAssignment("User already has this role")

        assignment = UserRole(user=user, role=role, assigned_by=assigned_by)
        db.add(assignment)
        await _flush_or_conflict(db, "User already has this role")

    logger.info("Role %s assigned to user %s by %s", role.name, user_id, assigned_by)
    return assignment


async def remove_role(user_id: uuid.UUID, role_id: uuid.UUID, db: AsyncSession) -> None:
    with store_errors("role revocation"):
        result = await db.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise AssignmentNotFound("User does not have this role")

        await db.delete(assignment)
        await db.flush()

    logger.info("Role %s removed from user %s", role_id, user_id)


async def set_direct_permission(
    user_id: uuid.UUID,
    permission_key: str,
    granted: bool,
    db: AsyncSession,
    *,
    assigned_by: uuid.UUID | None = None,
) -> UserPermission:
    """Upsert a grant (`granted=True`) or deny (`granted=False`) override."""
    user = await _get_user(user_id, db)
    perm = await get_permission_by_key(permission_key, db)

    with store_errors("direct permission assignment"):
        result = await db.execute(
            select(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == perm.id,
            )
        )
        override = result.scalar_one_or_none()
        if override is None:
            override = UserPermission(
                user=user,
                permission=perm,
                granted=granted,
                assigned_by=assigned_by,
            )
            db.add(override)
        else:
            override.granted = granted
            override.assigned_by = assigned_by
        await _flush_or_conflict(db, "User already has an override for this permission")

    logger.info(
        "Direct %s of %s for user %s by %s",
        "grant" if granted else "deny",
        perm.key,
        user_id,
        assigned_by,
    )
    return override


async def remove_direct_permission(user_id: uuid.UUID, permission_key: str, db: AsyncSession) -> None:
    """Drop the override; the user falls back to role-derived state."""
    perm = await get_permission_by_key(permission_key, db)
    with store_errors("direct permission removal"):
        result = await db.execute(
            select(UserPermission).where(
                UserPermission.user_id == user_id,
                UserPermission.permission_id == perm.id,
            )
        )
        override = result.scalar_one_or_none()
        if override is None:
            raise AssignmentNotFound("User has no override for this permission")

        await db.delete(override)
        await db.flush()


# ═════════════════════════════════════════════════════════════════════
# Reporting
# ═════════════════════════════════════════════════════════════════════


async def get_user_permission_summary(user_id: uuid.UUID, db: AsyncSession) -> dict:
    """Roles, effective permissions and raw overrides for one user."""
    user = await _get_user(user_id, db)
    roles = await store.list_roles_for_user(user_id, db)
    overrides = await store.list_direct_permissions_for_user(user_id, db)
    effective = await PermissionResolver(db).resolve(user_id)
    return {
        "user": user,
        "roles": roles,
        "permissions": effective.sorted(),
        "direct_permissions": overrides,
    }


async def permission_stats(db: AsyncSession) -> dict:
    with store_errors("permission statistics"):
        total_permissions = await db.scalar(select(func.count()).select_from(Permission))
        system_roles = await db.scalar(
            select(func.count()).select_from(Role).where(Role.is_system.is_(True))
        )
        custom_roles = await db.scalar(
            select(func.count()).select_from(Role).where(Role.is_system.is_(False))
        )
        module_rows = await db.execute(
            select(Permission.module, func.count()).group_by(Permission.module)
        )
        users_with_roles = await db.scalar(select(func.count(func.distinct(UserRole.user_id))))

    return {
        "total_permissions": total_permissions or 0,
        "total_roles": (system_roles or 0) + (custom_roles or 0),
        "system_roles": system_roles or 0,
        "custom_roles": custom_roles or 0,
        "module_stats": {module: count for module, count in module_rows.all()},
        "users_with_roles": users_with_roles or 0,
    }
