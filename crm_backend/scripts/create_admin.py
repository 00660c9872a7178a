"""
One-time bootstrap script — creates the first Administrator user.

Usage:
    uv run python -m crm_backend.scripts.create_admin

You only need this ONCE.  The script seeds permissions & roles first
(idempotent), so it also works against a freshly migrated database.
After the first admin exists, everything else goes through the admin API.
"""

import asyncio
import getpass

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from crm_backend.core.config import settings
from crm_backend.core.errors import InvalidAssignment
from crm_backend.rbac.permission_seed import seed
from crm_backend.services import permission_service, user_service

ADMIN_ROLE_NAME = "Administrator"


async def create_admin() -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with session_factory() as session:
        # ── Collect input ────────────────────────────────────────────
        print("\n🔧  CRM Backend — First Admin Setup\n")
        email = input("  Admin email: ").strip()
        full_name = input("  Full name:   ").strip()
        password = getpass.getpass("  Password:    ")
        confirm = getpass.getpass("  Confirm:     ")

        if password != confirm:
            print("\n❌  Passwords do not match.")
            await engine.dispose()
            return

        if not email or not full_name or not password:
            print("\n❌  All fields are required.")
            await engine.dispose()
            return

        # ── Make sure the catalog & system roles exist ───────────────
        await seed(session)

        admin_role = await permission_service.get_role_by_name(ADMIN_ROLE_NAME, session)
        if admin_role is None:
            print(f"\n❌  {ADMIN_ROLE_NAME} role not found after seeding.")
            await engine.dispose()
            return

        # ── Create the admin user ────────────────────────────────────
        try:
            admin_user = await user_service.create_user(
                email=email,
                full_name=full_name,
                password=password,
                db=session,
            )
        except InvalidAssignment:
            print(f"\n❌  User with email '{email}' already exists.")
            await engine.dispose()
            return

        await permission_service.assign_role(admin_user.id, admin_role.id, session)
        await session.commit()

        print("\n✅  Admin user created successfully!")
        print(f"    ID:    {admin_user.id}")
        print(f"    Email: {admin_user.email}")
        print(f"    Role:  {ADMIN_ROLE_NAME}")
        print("\n   You can now log in via POST /api/auth/login\n")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_admin())
