import asyncio
import uuid

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_backend.core.config import settings
from crm_backend.main import create_app
from crm_backend.rbac import store
from crm_backend.rbac.cache import PermissionCache
from crm_backend.rbac.dependencies import require_all_permissions, require_permission
from crm_backend.services import permission_service, user_service
from tests.helpers import auth_headers, make_user

pytestmark = pytest.mark.usefixtures("seeded")


# ── Construction ─────────────────────────────────────────────────────


def test_guard_rejects_unknown_key_at_declaration():
    with pytest.raises(ValueError, match="Unknown permission"):
        require_permission("leads_teleport")


def test_guard_rejects_malformed_key():
    with pytest.raises(ValueError):
        require_permission("Leads View", strict=False)


def test_non_strict_guard_accepts_runtime_keys():
    guard = require_permission("custom_widget_view", strict=False)
    assert guard.required == ("custom_widget_view",)


def test_all_guard_needs_keys_and_dedupes():
    with pytest.raises(ValueError):
        require_all_permissions()
    guard = require_all_permissions("leads_view", "leads_edit", "leads_view")
    assert guard.required == ("leads_view", "leads_edit")


# ── Authentication ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_token_is_401(client):
    resp = await client.get("/guarded/leads-edit")
    assert resp.status_code == 401
    assert resp.json()["type"] == "unauthenticated"
    assert resp.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_garbage_token_is_401(client):
    resp = await client.get("/guarded/leads-edit", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_token_for_unknown_user_is_401(client):
    resp = await client.get("/guarded/leads-edit", headers=auth_headers(uuid.uuid4()))
    assert resp.status_code == 401
    assert resp.json()["error"] == "User not found"


@pytest.mark.asyncio
async def test_disabled_user_is_401(client, session_factory):
    user_id = await make_user(session_factory, roles=["Administrator"])
    async with session_factory() as session:
        await user_service.disable_user(user_id, session)
        await session.commit()

    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))
    assert resp.status_code == 401
    assert resp.json()["error"] == "Account disabled"


# ── Single permission ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_manager_passes_leads_edit(client, session_factory):
    user_id = await make_user(session_factory, roles=["Manager"])
    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))
    assert resp.status_code == 200
    body = resp.json()
    assert body["user_id"] == str(user_id)
    assert "leads_edit" in body["permissions"]


@pytest.mark.asyncio
async def test_missing_permission_is_403_without_granted_list(client, session_factory):
    user_id = await make_user(session_factory, roles=["Implementation"])
    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))

    assert resp.status_code == 403
    body = resp.json()
    assert body == {
        "error": "Access denied. Required permission: leads_edit",
        "type": "forbidden",
        "required": ["leads_edit"],
        "missing": ["leads_edit"],
    }


@pytest.mark.asyncio
async def test_granted_list_only_when_enabled(client, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "RBAC_EXPOSE_GRANTED_PERMISSIONS", True)
    user_id = await make_user(session_factory, overrides={"chat_access": True})

    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))

    assert resp.status_code == 403
    assert resp.json()["granted"] == ["chat_access"]


@pytest.mark.asyncio
async def test_direct_deny_blocks_role_grant(client, session_factory):
    user_id = await make_user(
        session_factory, roles=["Manager"], overrides={"leads_edit": False}
    )
    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))
    assert resp.status_code == 403


# ── Composition ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_any_guard(client, session_factory):
    reporter = await make_user(session_factory, overrides={"reports_view": True})
    nobody = await make_user(session_factory)

    assert (await client.get("/guarded/leads-or-reports", headers=auth_headers(reporter))).status_code == 200

    resp = await client.get("/guarded/leads-or-reports", headers=auth_headers(nobody))
    assert resp.status_code == 403
    assert resp.json()["required"] == ["leads_view", "reports_view"]
    assert "missing" not in resp.json()


@pytest.mark.asyncio
async def test_all_guard_reports_missing_keys(client, session_factory):
    viewer = await make_user(session_factory, overrides={"leads_view": True})
    resp = await client.get("/guarded/leads-and-edit", headers=auth_headers(viewer))

    assert resp.status_code == 403
    body = resp.json()
    assert body["missing"] == ["leads_edit"]
    assert body["error"] == "Access denied. Missing permissions: leads_edit"


@pytest.mark.asyncio
async def test_all_guard_passes_with_every_key(client, session_factory):
    user_id = await make_user(session_factory, roles=["Salesperson"])
    resp = await client.get("/guarded/leads-and-edit", headers=auth_headers(user_id))
    assert resp.status_code == 200


# ── Ready-made guards ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_implantacao_access_admits_module_users_and_admins(client, session_factory):
    implementer = await make_user(session_factory, roles=["Implementation"])
    admin_only = await make_user(session_factory, overrides={"admin_access": True})
    seller = await make_user(session_factory, roles=["Salesperson"])

    assert (await client.get("/guarded/implantacao", headers=auth_headers(implementer))).status_code == 200
    assert (await client.get("/guarded/implantacao", headers=auth_headers(admin_only))).status_code == 200

    resp = await client.get("/guarded/implantacao", headers=auth_headers(seller))
    assert resp.status_code == 403
    assert resp.json()["required"] == ["implantacao_access", "admin_access"]


@pytest.mark.asyncio
async def test_ensure_admin_requires_admin_access(client, session_factory):
    director = await make_user(session_factory, roles=["Director"])
    manager = await make_user(session_factory, roles=["Manager"])

    assert (await client.get("/guarded/admin-only", headers=auth_headers(director))).status_code == 200

    resp = await client.get("/guarded/admin-only", headers=auth_headers(manager))
    assert resp.status_code == 403
    assert resp.json()["missing"] == ["admin_access"]


# ── Role guard ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_role_guard_checks_assignment_not_permissions(client, session_factory):
    # Holds every Manager permission, but not the Manager role.
    admin = await make_user(session_factory, roles=["Administrator"])
    manager = await make_user(session_factory, roles=["Manager"])

    denied = await client.get("/guarded/managers", headers=auth_headers(admin))
    assert denied.status_code == 403
    assert denied.json()["required"] == ["Manager"]

    allowed = await client.get("/guarded/managers", headers=auth_headers(manager))
    assert allowed.status_code == 200
    assert allowed.json()["roles"] == ["Manager"]


# ── Caching ──────────────────────────────────────────────────────────


def test_app_uses_the_injected_cache(app, cache):
    assert len(cache) == 0
    assert app.state.permission_cache is cache


def test_app_builds_its_own_cache_when_none_given():
    app = create_app(seed_on_startup=False)
    assert isinstance(app.state.permission_cache, PermissionCache)
    assert app.state.permission_cache.ttl_seconds == settings.PERMISSION_CACHE_TTL_SECONDS


@pytest.mark.asyncio
async def test_change_is_invisible_until_invalidated(client, session_factory, cache):
    user_id = await make_user(session_factory, roles=["Manager"])
    headers = auth_headers(user_id)
    assert (await client.get("/guarded/leads-edit", headers=headers)).status_code == 200

    # Mutate behind the cache's back.
    async with session_factory() as session:
        await permission_service.set_direct_permission(user_id, "leads_edit", False, session)
        await session.commit()

    assert (await client.get("/guarded/leads-edit", headers=headers)).status_code == 200

    cache.invalidate(user_id)
    assert (await client.get("/guarded/leads-edit", headers=headers)).status_code == 403


@pytest.mark.asyncio
async def test_cached_set_expires_after_ttl(client, session_factory, clock):
    user_id = await make_user(session_factory, roles=["Manager"])
    headers = auth_headers(user_id)
    assert (await client.get("/guarded/leads-edit", headers=headers)).status_code == 200

    async with session_factory() as session:
        await permission_service.set_direct_permission(user_id, "leads_edit", False, session)
        await session.commit()

    clock.advance(299)
    assert (await client.get("/guarded/leads-edit", headers=headers)).status_code == 200
    clock.advance(1)
    assert (await client.get("/guarded/leads-edit", headers=headers)).status_code == 403


# ── Fail closed ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_store_failure_is_500_and_handler_never_runs(client, session_factory, monkeypatch):
    user_id = await make_user(session_factory, roles=["Administrator"])

    async def broken_execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(AsyncSession, "execute", broken_execute)

    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "type": "internal_error"}


@pytest.mark.asyncio
async def test_slow_lookup_times_out_as_store_error(client, monkeypatch):
    monkeypatch.setattr(settings, "PERMISSION_LOOKUP_TIMEOUT_SECONDS", 0.01)

    async def hang(*args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(store, "get_user_status", hang)

    resp = await client.get("/guarded/leads-edit", headers=auth_headers(uuid.uuid4()))
    assert resp.status_code == 500
    assert resp.json()["type"] == "internal_error"


@pytest.mark.asyncio
async def test_missing_cache_fails_closed(app, client, session_factory):
    user_id = await make_user(session_factory, roles=["Administrator"])
    del app.state.permission_cache

    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_connection_failure_is_structured_500(client, session_factory, monkeypatch):
    user_id = await make_user(session_factory, roles=["Administrator"])

    async def refused(self, *args, **kwargs):
        raise ConnectionRefusedError(111, "Connection refused")

    monkeypatch.setattr(AsyncSession, "execute", refused)

    resp = await client.get("/guarded/leads-edit", headers=auth_headers(user_id))
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error", "type": "internal_error"}
