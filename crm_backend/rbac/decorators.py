"""
Service-level permission decorator.

Route handlers are guarded with `Depends(require_permission(...))`.
Service functions that can be reached from several places (routes,
scripts, background jobs) can additionally declare their requirement
with `@permission_required`, checked against the `AuthContext` the
caller already holds, without a store round-trip.

Example:
    @permission_required("leads_approve_conversion")
    async def approve_conversion(ctx: AuthContext, lead_id: int, db: AsyncSession): ...
"""

import functools
import logging
from typing import Any, Callable

from crm_backend.core.errors import Forbidden
from crm_backend.rbac.context import AuthContext
from crm_backend.rbac.keys import PermissionKey

logger = logging.getLogger("rbac")


def _find_context(args: tuple, kwargs: dict[str, Any]) -> AuthContext:
    ctx = kwargs.get("ctx")
    if ctx is None and args:
        ctx = args[0]
    if not isinstance(ctx, AuthContext):
        raise TypeError("permission_required expects an AuthContext as first argument or `ctx=`")
    return ctx


def permission_required(*keys: str) -> Callable:
    """Require every key in `keys` before the wrapped coroutine runs."""
    if not keys:
        raise ValueError("permission_required needs at least one permission key")
    required = tuple(dict.fromkeys(PermissionKey(key) for key in keys))

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            ctx = _find_context(args, kwargs)
            missing = ctx.permissions.missing(required)
            if missing:
                logger.warning(
                    "Service call %s denied for user %s, missing: %s",
                    func.__qualname__,
                    ctx.user_id,
                    missing,
                )
                raise Forbidden(
                    f"Access denied. Missing permissions: {', '.join(missing)}",
                    required=required,
                    missing=missing,
                )
            return await func(*args, **kwargs)

        wrapper.required_permissions = required
        return wrapper

    return decorator
