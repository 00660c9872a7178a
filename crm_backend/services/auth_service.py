"""
Authentication service.

Handles:
- Login with email + password → signed access token.
- Token payload construction.

The token only proves identity.  Roles and permissions are resolved
server-side on every guarded request, so a role change takes effect
without re-issuing tokens (within the permission-cache window).
"""

from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.errors import Unauthenticated
from crm_backend.core.security import create_access_token, verify_password
from crm_backend.models.user import User
from crm_backend.services import user_service


def _build_access_payload(user: User) -> dict:
    return {
        "sub": str(user.id),
        "email": user.email,
    }


async def authenticate_user(
    email: str,
    password: str,
    db: AsyncSession,
) -> dict:
    """Validate credentials and return an access token."""
    user = await user_service.get_user_by_email(email, db)

    if user is None or not verify_password(password, user.password_hash or ""):
        raise Unauthenticated("Invalid email or password")

    if not user.is_active:
        raise Unauthenticated("Account is disabled")

    return {
        "access_token": create_access_token(_build_access_payload(user)),
        "token_type": "bearer",
        "user_id": str(user.id),
        "roles": sorted(role.name for role in user.roles),
    }
