"""Test helpers shared across modules (fixtures live in conftest)."""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crm_backend.core.security import create_access_token
from crm_backend.services import permission_service, user_service


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}


async def make_user(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    email: str | None = None,
    password: str = "correct-horse-battery",
    roles: Iterable[str] = (),
    overrides: dict[str, bool] | None = None,
) -> uuid.UUID:
    """Create a user with the given role names and direct overrides."""
    async with session_factory() as session:
        user = await user_service.create_user(
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            full_name="Test User",
            password=password,
            db=session,
        )
        for role_name in roles:
            role = await permission_service.get_role_by_name(role_name, session)
            assert role is not None, f"role {role_name} missing, seed first"
            await permission_service.assign_role(user.id, role.id, session)
        for key, granted in (overrides or {}).items():
            await permission_service.set_direct_permission(user.id, key, granted, session)
        await session.commit()
        return user.id
