"""
Permission resolver — computes a user's effective permission set.

    effective = (role permissions ∪ direct grants) − direct denies

A deny override always wins, even over a role that grants the same key.
The result is never persisted; callers that want memoisation go through
`PermissionCache`.  The resolver itself knows nothing about the cache.

Two entry points with deliberately different contracts:

- `effective_permissions(user_id)`: explicit per-user lookup.  Raises
  `UserNotFound` when the id matches no user.
- `resolve(user_id)`: the bare merge.  An unknown id simply has no
  roles and no overrides, so it yields the empty set.
"""

import logging
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.errors import UserNotFound
from crm_backend.rbac import store
from crm_backend.rbac.keys import PermissionKey, to_permission_keys

logger = logging.getLogger("rbac")


@dataclass(frozen=True)
class EffectivePermissions:
    """Immutable, resolved permission set for one user.

    Resolve once per request, then run as many checks as needed.
    """

    keys: frozenset[PermissionKey] = frozenset()

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    def __iter__(self) -> Iterator[PermissionKey]:
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.keys)

    def has(self, key: str) -> bool:
        return key in self.keys

    def has_any(self, keys: Iterable[str]) -> bool:
        return any(key in self.keys for key in keys)

    def has_all(self, keys: Iterable[str]) -> bool:
        return all(key in self.keys for key in keys)

    def missing(self, keys: Iterable[str]) -> list[str]:
        return sorted({key for key in keys if key not in self.keys})

    def sorted(self) -> list[str]:
        return sorted(self.keys)


EMPTY_PERMISSIONS = EffectivePermissions()


def merge_permissions(
    role_keys: Iterable[str],
    granted_keys: Iterable[str],
    denied_keys: Iterable[str],
) -> EffectivePermissions:
    """(role ∪ granted) − denied."""
    merged = (set(role_keys) | set(granted_keys)) - set(denied_keys)
    return EffectivePermissions(to_permission_keys(merged))


class PermissionResolver:
    """Per-session resolver.  Cheap to build, one per request."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _ensure_user(self, user_id: uuid.UUID) -> None:
        if await store.get_user_status(user_id, self.db) is None:
            raise UserNotFound()

    async def resolve(self, user_id: uuid.UUID) -> EffectivePermissions:
        roles = await store.list_roles_for_user(user_id, self.db)
        role_keys: set[str] = set()
        for role in roles:
            role_keys.update(perm.key for perm in await store.list_role_permissions(role.id, self.db))

        overrides = await store.list_direct_permissions_for_user(user_id, self.db)
        granted = {o.permission.key for o in overrides if o.granted}
        denied = {o.permission.key for o in overrides if not o.granted}

        effective = merge_permissions(role_keys, granted, denied)
        logger.debug(
            "Resolved %d permission(s) for user %s (%d role(s), %d grant(s), %d deny(s))",
            len(effective),
            user_id,
            len(roles),
            len(granted),
            len(denied),
        )
        return effective

    async def effective_permissions(self, user_id: uuid.UUID) -> EffectivePermissions:
        await self._ensure_user(user_id)
        return await self.resolve(user_id)

    async def has_permission(self, user_id: uuid.UUID, key: str) -> bool:
        """Single-key check.  Stops at the first decisive row."""
        await self._ensure_user(user_id)
        override = await store.get_direct_override(user_id, key, self.db)
        if override is not None:
            return override
        return await store.role_grants_permission(user_id, key, self.db)

    async def has_any_permission(self, user_id: uuid.UUID, keys: Iterable[str]) -> bool:
        return (await self.effective_permissions(user_id)).has_any(keys)

    async def has_all_permissions(self, user_id: uuid.UUID, keys: Iterable[str]) -> bool:
        return (await self.effective_permissions(user_id)).has_all(keys)

    async def check_permissions(self, user_id: uuid.UUID, keys: Iterable[str]) -> dict[str, bool]:
        """Resolve once, then answer every key: ``{key: held}``."""
        permissions = await self.effective_permissions(user_id)
        return {key: permissions.has(key) for key in keys}

    async def role_names(self, user_id: uuid.UUID) -> frozenset[str]:
        """Names of the user's assigned roles, independent of permissions."""
        await self._ensure_user(user_id)
        return frozenset(await store.list_role_names_for_user(user_id, self.db))
