"""
FastAPI application factory.

Assembles the app, registers all routers and error handlers, owns the
process-wide permission cache, and wires up lifecycle events.
Database schema is managed by Alembic, NOT create_all.
"""

import logging

from fastapi import FastAPI

from crm_backend.controllers.admin_controller import router as admin_router
from crm_backend.controllers.auth_controller import router as auth_router
from crm_backend.controllers.permission_controller import router as permission_router
from crm_backend.core.config import settings
from crm_backend.core.database import SessionLocal, engine
from crm_backend.core.errors import register_exception_handlers
from crm_backend.models import Base  # noqa: F401 ensures all models are registered
from crm_backend.rbac.cache import PermissionCache

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(*, permission_cache: PermissionCache | None = None, seed_on_startup: bool | None = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # One cache per process; guards reach it through app.state.
    # PermissionCache defines __len__, so an empty one is falsy: compare to None.
    if permission_cache is None:
        permission_cache = PermissionCache(ttl_seconds=settings.PERMISSION_CACHE_TTL_SECONDS)
    app.state.permission_cache = permission_cache

    register_exception_handlers(app)

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(permission_router)

    run_seed = settings.SEED_ON_STARTUP if seed_on_startup is None else seed_on_startup

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Seed permissions & roles on startup.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        if not run_seed:
            return
        from crm_backend.rbac.permission_seed import seed

        async with SessionLocal() as session:
            await seed(session)
        logger.info("Permission seed complete.")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await engine.dispose()
        logger.info("Database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
