"""
RBAC dependencies — the heart of permission enforcement.

Each guard is a *dependency factory*: build it with the requirement and
it returns a FastAPI dependency that will:

1. Resolve the bearer token to a user id (`get_principal_id`).
2. Reject missing / disabled users as *unauthenticated* (401).
3. Fetch the effective permission set through the process-wide
   `PermissionCache` (falling back to `PermissionResolver`).
4. Compare it to the requirement and raise *forbidden* (403) on a miss.
5. Hand an `AuthContext` to the route handler on success.

Fail-closed: a store failure or a lookup slower than
`PERMISSION_LOOKUP_TIMEOUT_SECONDS` becomes `StoreError` (500), and the
handler never runs on an ambiguous outcome.

Usage in a route:
    @router.get("/leads", dependencies=[Depends(require_permission("leads_view"))])
    async def list_leads(...): ...

Or inject the context:
    @router.get("/reports")
    async def reports(ctx: AuthContext = Depends(require_any_permission("reports_view", "admin_access"))): ...
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.config import settings
from crm_backend.core.database import get_db, store_errors
from crm_backend.core.errors import Forbidden, StoreError, Unauthenticated
from crm_backend.core.security import get_principal_id
from crm_backend.models.user import User, UserStatus
from crm_backend.rbac import store
from crm_backend.rbac.cache import PermissionCache
from crm_backend.rbac.catalog import is_known_permission
from crm_backend.rbac.context import AuthContext
from crm_backend.rbac.keys import PermissionKey, RoleName
from crm_backend.rbac.resolver import EffectivePermissions, PermissionResolver

logger = logging.getLogger("rbac")

T = TypeVar("T")


def get_permission_cache(request: Request) -> PermissionCache:
    cache = getattr(request.app.state, "permission_cache", None)
    if cache is None:
        # Fail closed rather than silently resolving without a cache owner.
        raise StoreError("permission cache is not configured")
    return cache


async def _bounded(awaitable: Awaitable[T]) -> T:
    """Await a store lookup under the configured timeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.PERMISSION_LOOKUP_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.error("Permission lookup timed out after %ss", settings.PERMISSION_LOOKUP_TIMEOUT_SECONDS)
        raise StoreError("permission lookup timed out")


async def _ensure_active_user(user_id: uuid.UUID, db: AsyncSession) -> None:
    user_status = await store.get_user_status(user_id, db)
    if user_status is None:
        raise Unauthenticated("User not found")
    if user_status == UserStatus.DISABLED:
        raise Unauthenticated("Account disabled")


async def _load_effective_permissions(user_id: uuid.UUID, db: AsyncSession) -> EffectivePermissions:
    await _ensure_active_user(user_id, db)
    return await PermissionResolver(db).resolve(user_id)


async def resolve_cached_permissions(
    user_id: uuid.UUID,
    db: AsyncSession,
    cache: PermissionCache,
) -> EffectivePermissions:
    return await _bounded(
        cache.get_or_load(user_id, lambda: _load_effective_permissions(user_id, db))
    )


def _granted_detail(values) -> list[str] | None:
    """Caller's own grants, only echoed back when explicitly enabled."""
    if not settings.RBAC_EXPOSE_GRANTED_PERMISSIONS:
        return None
    return sorted(values)


# ── Permission guards ────────────────────────────────────────────────


class _PermissionGuard:
    """Shared plumbing for the permission-based guards."""

    def __init__(self, *permission_keys: str, strict: bool = True):
        if not permission_keys:
            raise ValueError(f"{type(self).__name__} needs at least one permission key")
        # dict.fromkeys keeps declaration order while dropping duplicates
        self.required: tuple[PermissionKey, ...] = tuple(
            dict.fromkeys(PermissionKey(key) for key in permission_keys)
        )
        if strict:
            unknown = [key for key in self.required if not is_known_permission(key)]
            if unknown:
                raise ValueError(f"Unknown permission key(s): {', '.join(unknown)}")

    def is_satisfied_by(self, permissions: EffectivePermissions) -> bool:
        raise NotImplementedError

    def denial(self, permissions: EffectivePermissions) -> Forbidden:
        raise NotImplementedError

    async def __call__(
        self,
        request: Request,
        user_id: uuid.UUID = Depends(get_principal_id),
        db: AsyncSession = Depends(get_db),
    ) -> AuthContext:
        cache = get_permission_cache(request)
        permissions = await resolve_cached_permissions(user_id, db, cache)

        if not self.is_satisfied_by(permissions):
            logger.warning(
                "Permission denied for user %s, required: %s, granted: %s",
                user_id,
                list(self.required),
                permissions.sorted(),
            )
            raise self.denial(permissions)

        return AuthContext(user_id=user_id, permissions=permissions)


class require_permission(_PermissionGuard):
    """
    Passes iff the caller holds `permission_key`.

        Depends(require_permission("leads_view"))
    """

    def __init__(self, permission_key: str, *, strict: bool = True):
        super().__init__(permission_key, strict=strict)
        self.permission_key = self.required[0]

    def is_satisfied_by(self, permissions: EffectivePermissions) -> bool:
        return permissions.has(self.permission_key)

    def denial(self, permissions: EffectivePermissions) -> Forbidden:
        return Forbidden(
            f"Access denied. Required permission: {self.permission_key}",
            required=self.required,
            missing=self.required,
            granted=_granted_detail(permissions),
        )


class require_any_permission(_PermissionGuard):
    """
    Passes iff the caller holds at least one of the keys.

        Depends(require_any_permission("admin_access", "admin_users_manage"))
    """

    def is_satisfied_by(self, permissions: EffectivePermissions) -> bool:
        return permissions.has_any(self.required)

    def denial(self, permissions: EffectivePermissions) -> Forbidden:
        return Forbidden(
            f"Access denied. One of these permissions is required: {', '.join(self.required)}",
            required=self.required,
            granted=_granted_detail(permissions),
        )


class require_all_permissions(_PermissionGuard):
    """
    Passes iff the caller holds every key.

        Depends(require_all_permissions("reports_view", "reports_export"))
    """

    def is_satisfied_by(self, permissions: EffectivePermissions) -> bool:
        return permissions.has_all(self.required)

    def denial(self, permissions: EffectivePermissions) -> Forbidden:
        missing = permissions.missing(self.required)
        return Forbidden(
            f"Access denied. Missing permissions: {', '.join(missing)}",
            required=self.required,
            missing=missing,
            granted=_granted_detail(permissions),
        )


# Ready-made guards for the implementation area and admin-only routes.
require_implantacao_access = require_any_permission("implantacao_access", "admin_access")
ensure_admin = require_permission("admin_access")


# ── Role guard ───────────────────────────────────────────────────────


class require_role:
    """
    Passes iff the caller has a role named `role_name`.

    Inspects role assignments directly; derived permissions and the
    permission cache play no part in this check.
    """

    def __init__(self, role_name: str):
        self.role_name = RoleName(role_name)

    async def _lookup(self, user_id: uuid.UUID, db: AsyncSession) -> frozenset[str]:
        await _ensure_active_user(user_id, db)
        return frozenset(await store.list_role_names_for_user(user_id, db))

    async def __call__(
        self,
        user_id: uuid.UUID = Depends(get_principal_id),
        db: AsyncSession = Depends(get_db),
    ) -> AuthContext:
        role_names = await _bounded(self._lookup(user_id, db))

        if self.role_name not in role_names:
            logger.warning(
                "Role check failed for user %s, required: %s, has: %s",
                user_id,
                self.role_name,
                sorted(role_names),
            )
            raise Forbidden(
                f"Access denied. Required role: {self.role_name}",
                required=[self.role_name],
                granted=_granted_detail(role_names),
            )

        return AuthContext(user_id=user_id, role_names=role_names)


# ── Authentication-only dependencies ─────────────────────────────────


async def get_auth_context(
    request: Request,
    user_id: uuid.UUID = Depends(get_principal_id),
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Authenticated caller with resolved permissions, no requirement."""
    cache = get_permission_cache(request)
    permissions = await resolve_cached_permissions(user_id, db, cache)
    return AuthContext(user_id=user_id, permissions=permissions)


async def get_current_active_user(
    user_id: uuid.UUID = Depends(get_principal_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency that returns the current user WITHOUT permission checks.
    Useful for routes that only need authentication, not authorization."""
    with store_errors("user lookup"):
        user = await db.get(User, user_id)
    if user is None:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Unauthenticated("Account disabled")
    return user
