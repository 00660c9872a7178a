"""
Permission & Role seeding script.

Run this against a live database to populate the default permissions
and roles.  It is IDEMPOTENT and safe to re-run:

    • Permissions are upserted by key (existing rows are left alone).
    • Roles are upserted by name.
    • System roles get any missing role → permission links on every
      run, so new catalog keys reach them after a deploy.
    • Non-system default roles only receive their links when first
      created; after that they belong to the admins.

Usage:
    python -m crm_backend.rbac.permission_seed
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm_backend.core.config import settings
from crm_backend.core.database import store_errors
from crm_backend.models.base import Base
from crm_backend.models.permission import Permission
from crm_backend.models.role import Role
from crm_backend.rbac.catalog import DEFAULT_ROLES, PERMISSIONS

logger = logging.getLogger("rbac")


@dataclass
class SeedReport:
    permissions_created: int = 0
    roles_created: int = 0
    links_created: int = 0


async def seed(session: AsyncSession) -> SeedReport:
    """Create permissions & roles if they don't already exist."""
    report = SeedReport()

    with store_errors("permission seed"):
        # ── Permissions ──────────────────────────────────────────────
        existing_perms = (await session.execute(select(Permission))).scalars().all()
        key_to_perm: dict[str, Permission] = {p.key: p for p in existing_perms}

        for definition in PERMISSIONS:
            if definition.key in key_to_perm:
                continue
            perm = Permission(
                key=definition.key,
                name=definition.name,
                module=definition.module,
                description=definition.description,
            )
            session.add(perm)
            key_to_perm[definition.key] = perm
            report.permissions_created += 1

        await session.flush()  # ensure IDs are available

        # ── Roles ────────────────────────────────────────────────────
        existing_roles = (await session.execute(select(Role))).scalars().all()
        name_to_role: dict[str, Role] = {r.name: r for r in existing_roles}

        for definition in DEFAULT_ROLES:
            role = name_to_role.get(definition.name)
            if role is None:
                role = Role(
                    name=definition.name,
                    description=definition.description,
                    color=definition.color,
                    is_system=definition.is_system,
                    permissions=[],
                )
                session.add(role)
                report.roles_created += 1
            elif not role.is_system:
                continue

            linked = role.permission_keys
            for key in definition.permissions:
                if key not in linked:
                    role.permissions.append(key_to_perm[key])
                    report.links_created += 1

        await session.commit()

    logger.info(
        "Permission seed: %d permission(s), %d role(s), %d link(s) created",
        report.permissions_created,
        report.roles_created,
        report.links_created,
    )
    return report


# ────────────────────────────────────────────────────────────────────
# CLI entrypoint:  python -m crm_backend.rbac.permission_seed
# ────────────────────────────────────────────────────────────────────
async def main() -> None:
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async_session = async_sessionmaker(engine, expire_on_commit=False)
    async with async_session() as session:
        report = await seed(session)
    await engine.dispose()
    print(
        f"✔  Seed complete — {report.permissions_created} permission(s), "
        f"{report.roles_created} role(s), {report.links_created} link(s) created."
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
