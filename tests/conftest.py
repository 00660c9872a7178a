"""Shared pytest fixtures: in-memory database, fake clock, app & client."""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SEED_ON_STARTUP", "false")

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fastapi import APIRouter, Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from crm_backend.core.database import get_db
from crm_backend.main import create_app
from crm_backend.models import Base
from crm_backend.rbac.cache import PermissionCache
from crm_backend.rbac.context import AuthContext
from crm_backend.rbac.dependencies import (
    ensure_admin,
    require_all_permissions,
    require_implantacao_access,
    require_any_permission,
    require_permission,
    require_role,
)
from crm_backend.rbac.permission_seed import seed
from tests.helpers import FakeClock


@pytest_asyncio.fixture()
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with session_factory() as session:
        await seed(session)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> PermissionCache:
    return PermissionCache(ttl_seconds=300, clock=clock)


def _guarded_router() -> APIRouter:
    router = APIRouter(prefix="/guarded")

    def _echo(ctx: AuthContext) -> dict:
        return {
            "user_id": str(ctx.user_id),
            "permissions": ctx.permissions.sorted(),
            "roles": sorted(ctx.role_names),
        }

    @router.get("/leads-edit")
    async def leads_edit(ctx: AuthContext = Depends(require_permission("leads_edit"))):
        return _echo(ctx)

    @router.get("/leads-or-reports")
    async def leads_or_reports(
        ctx: AuthContext = Depends(require_any_permission("leads_view", "reports_view")),
    ):
        return _echo(ctx)

    @router.get("/leads-and-edit")
    async def leads_and_edit(
        ctx: AuthContext = Depends(require_all_permissions("leads_view", "leads_edit")),
    ):
        return _echo(ctx)

    @router.get("/implantacao")
    async def implantacao(ctx: AuthContext = Depends(require_implantacao_access)):
        return _echo(ctx)

    @router.get("/admin-only")
    async def admin_only(ctx: AuthContext = Depends(ensure_admin)):
        return _echo(ctx)

    @router.get("/managers")
    async def managers(ctx: AuthContext = Depends(require_role("Manager"))):
        return _echo(ctx)

    return router


@pytest.fixture()
def app(session_factory: async_sessionmaker[AsyncSession], cache: PermissionCache) -> FastAPI:
    app = create_app(permission_cache=cache, seed_on_startup=False)
    app.include_router(_guarded_router())

    async def _get_test_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    return app


@pytest_asyncio.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

