"""
Request-scoped authorization context.

Guards return an `AuthContext` instead of stashing the principal on the
request object.  Handlers receive it through `Depends(...)` and can run
further checks against the already-resolved permission set without
another store round-trip:

    @router.post("/leads/{lead_id}/convert")
    async def convert(ctx: AuthContext = Depends(require_permission("leads_convert"))):
        if ctx.has_permission("leads_approve_conversion"):
            ...
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

from crm_backend.rbac.resolver import EMPTY_PERMISSIONS, EffectivePermissions


@dataclass(frozen=True)
class AuthContext:
    """
    Authorization facts about the current caller.

    - user_id: the authenticated principal.
    - permissions: effective permission set (empty for role-only guards).
    - role_names: assigned role names (populated by role guards).
    """

    user_id: uuid.UUID
    permissions: EffectivePermissions = EMPTY_PERMISSIONS
    role_names: frozenset[str] = field(default_factory=frozenset)

    def has_permission(self, key: str) -> bool:
        return self.permissions.has(key)

    def has_any_permission(self, keys: Iterable[str]) -> bool:
        return self.permissions.has_any(keys)

    def has_all_permissions(self, keys: Iterable[str]) -> bool:
        return self.permissions.has_all(keys)

    def has_role(self, name: str) -> bool:
        return name in self.role_names
