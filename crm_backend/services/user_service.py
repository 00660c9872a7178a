"""
User service — CRUD & query helpers.

Role / permission assignment lives in `permission_service`; this module
only deals with the user record itself.  Disabling a user changes what
the RBAC guards will let through, so callers must invalidate the
permission cache for that user after committing.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.database import store_errors
from crm_backend.core.errors import InvalidAssignment, UserNotFound
from crm_backend.core.security import hash_password
from crm_backend.models.user import User, UserStatus


async def get_user_by_id(
    user_id: uuid.UUID,
    db: AsyncSession,
) -> User:
    with store_errors("user lookup"):
        user = await db.get(User, user_id)
    if user is None:
        raise UserNotFound()
    return user


async def get_user_by_email(email: str, db: AsyncSession) -> User | None:
    with store_errors("user lookup"):
        result = await db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()


async def list_users(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 50,
) -> list[User]:
    stmt = select(User).order_by(User.full_name).offset(skip).limit(limit)
    with store_errors("user listing"):
        result = await db.execute(stmt)
        return list(result.scalars().all())


async def create_user(
    *,
    email: str,
    full_name: str,
    db: AsyncSession,
    password: str | None = None,
    department: str | None = None,
) -> User:
    if await get_user_by_email(email, db) is not None:
        raise InvalidAssignment("A user with this email already exists")

    user = User(
        id=uuid.uuid4(),
        email=email.lower(),
        full_name=full_name,
        department=department,
        password_hash=hash_password(password) if password else None,
        status=UserStatus.ACTIVE,
        user_roles=[],
        user_permissions=[],
    )
    with store_errors("user creation"):
        db.add(user)
        await db.flush()
    return user


async def disable_user(
    target_user_id: uuid.UUID,
    db: AsyncSession,
) -> User:
    """Admin action — disable a user account."""
    user = await get_user_by_id(target_user_id, db)
    user.status = UserStatus.DISABLED
    with store_errors("user update"):
        await db.flush()
    return user
