import uuid

import pytest

from crm_backend.services import permission_service, user_service
from tests.helpers import auth_headers, make_user

pytestmark = pytest.mark.usefixtures("seeded")


async def _role_id(session_factory, name: str) -> uuid.UUID:
    async with session_factory() as session:
        return (await permission_service.get_role_by_name(name, session)).id


# ── Auth ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_login_and_me(client, session_factory):
    await make_user(session_factory, email="maria@example.com", password="s3cret-pass", roles=["Manager"])

    resp = await client.post(
        "/api/auth/login", json={"email": "maria@example.com", "password": "s3cret-pass"}
    )
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert resp.json()["roles"] == ["Manager"]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "maria@example.com"
    assert "leads_edit" in me.json()["permissions"]


@pytest.mark.asyncio
async def test_login_with_wrong_password(client, session_factory):
    await make_user(session_factory, email="maria@example.com", password="s3cret-pass")
    resp = await client.post(
        "/api/auth/login", json={"email": "maria@example.com", "password": "wrong"}
    )
    assert resp.status_code == 401


# ── RBAC admin API ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rbac_admin_requires_admin_permission(client, session_factory):
    manager = await make_user(session_factory, roles=["Manager"])
    resp = await client.get("/api/rbac/roles", headers=auth_headers(manager))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_catalog_is_grouped(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    resp = await client.get("/api/rbac/permissions", headers=auth_headers(admin))

    assert resp.status_code == 200
    body = resp.json()
    assert len(body["permissions"]) == 29
    assert len(body["grouped_permissions"]["Reports"]) == 2


@pytest.mark.asyncio
async def test_deny_via_api_takes_effect_immediately(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    manager = await make_user(session_factory, roles=["Manager"])
    assert (await client.get("/guarded/leads-edit", headers=auth_headers(manager))).status_code == 200

    resp = await client.put(
        f"/api/rbac/users/{manager}/permissions/leads_edit",
        json={"granted": False},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json() == {"permission_key": "leads_edit", "granted": False, "assigned_by": str(admin)}

    assert (await client.get("/guarded/leads-edit", headers=auth_headers(manager))).status_code == 403

    resp = await client.delete(
        f"/api/rbac/users/{manager}/permissions/leads_edit", headers=auth_headers(admin)
    )
    assert resp.status_code == 200
    assert (await client.get("/guarded/leads-edit", headers=auth_headers(manager))).status_code == 200


@pytest.mark.asyncio
async def test_role_assignment_via_api(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    user_id = await make_user(session_factory)
    manager_role = await _role_id(session_factory, "Manager")
    assert (await client.get("/guarded/leads-edit", headers=auth_headers(user_id))).status_code == 403

    resp = await client.post(
        f"/api/rbac/users/{user_id}/roles",
        json={"role_id": str(manager_role)},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 201
    assert resp.json()["assigned_by"] == str(admin)
    assert (await client.get("/guarded/leads-edit", headers=auth_headers(user_id))).status_code == 200

    again = await client.post(
        f"/api/rbac/users/{user_id}/roles",
        json={"role_id": str(manager_role)},
        headers=auth_headers(admin),
    )
    assert again.status_code == 400
    assert again.json()["type"] == "invalid_assignment"

    removed = await client.delete(
        f"/api/rbac/users/{user_id}/roles/{manager_role}", headers=auth_headers(admin)
    )
    assert removed.status_code == 200
    assert (await client.get("/guarded/leads-edit", headers=auth_headers(user_id))).status_code == 403


@pytest.mark.asyncio
async def test_editing_custom_role_invalidates_its_members(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    seller = await make_user(session_factory, roles=["Salesperson"])
    sales_role = await _role_id(session_factory, "Salesperson")
    assert (await client.get("/guarded/leads-edit", headers=auth_headers(seller))).status_code == 200

    resp = await client.put(
        f"/api/rbac/roles/{sales_role}",
        json={"permission_keys": ["leads_view"]},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["permissions"] == ["leads_view"]

    assert (await client.get("/guarded/leads-edit", headers=auth_headers(seller))).status_code == 403


@pytest.mark.asyncio
async def test_system_role_edit_is_rejected(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    director = await _role_id(session_factory, "Director")
    headers = auth_headers(admin)
    before = (await client.get(f"/api/rbac/roles/{director}", headers=headers)).json()

    resp = await client.put(
        f"/api/rbac/roles/{director}",
        json={"name": "Boss", "description": "x", "permission_keys": []},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Cannot edit a system role"

    resp = await client.delete(f"/api/rbac/roles/{director}", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Cannot delete a system role"

    after = await client.get(f"/api/rbac/roles/{director}", headers=headers)
    assert after.status_code == 200
    assert after.json() == before


@pytest.mark.asyncio
async def test_unknown_user_summary_is_404(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    resp = await client.get(f"/api/rbac/users/{uuid.uuid4()}/permissions", headers=auth_headers(admin))
    assert resp.status_code == 404
    assert resp.json()["type"] == "not_found"


@pytest.mark.asyncio
async def test_live_check_endpoint(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    manager = await make_user(session_factory, roles=["Manager"])
    resp = await client.get(
        f"/api/rbac/users/{manager}/check/leads_delete", headers=auth_headers(admin)
    )
    assert resp.status_code == 200
    assert resp.json()["has_permission"] is False


@pytest.mark.asyncio
async def test_bulk_check_endpoint(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    seller = await make_user(session_factory, roles=["Salesperson"], overrides={"leads_edit": False})

    resp = await client.post(
        f"/api/rbac/users/{seller}/check",
        json={"permission_keys": ["leads_view", "leads_edit", "reports_view"]},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "user_id": str(seller),
        "permissions": {"leads_view": True, "leads_edit": False, "reports_view": False},
    }


@pytest.mark.asyncio
async def test_initialize_is_idempotent(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    resp = await client.post("/api/rbac/initialize", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json() == {"permissions_created": 0, "roles_created": 0, "links_created": 0}


@pytest.mark.asyncio
async def test_cache_clear_endpoint(client, session_factory, cache):
    admin = await make_user(session_factory, roles=["Administrator"])
    await client.get("/api/rbac/stats", headers=auth_headers(admin))
    assert len(cache) == 1

    resp = await client.post(f"/api/rbac/cache/clear?user_id={admin}", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert len(cache) == 0


# ── User admin ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_director_can_list_but_not_create_users(client, session_factory):
    director = await make_user(session_factory, roles=["Director"])

    listed = await client.get("/api/admin/users", headers=auth_headers(director))
    assert listed.status_code == 200

    created = await client.post(
        "/api/admin/users",
        json={"email": "new@example.com", "full_name": "New", "password": "long-enough"},
        headers=auth_headers(director),
    )
    assert created.status_code == 403
    assert created.json()["missing"] == ["admin_users_manage"]


@pytest.mark.asyncio
async def test_disabling_user_locks_them_out(client, session_factory):
    admin = await make_user(session_factory, roles=["Administrator"])
    manager = await make_user(session_factory, roles=["Manager"])
    assert (await client.get("/guarded/leads-edit", headers=auth_headers(manager))).status_code == 200

    resp = await client.post(f"/api/admin/users/{manager}/disable", headers=auth_headers(admin))
    assert resp.status_code == 200

    assert (await client.get("/guarded/leads-edit", headers=auth_headers(manager))).status_code == 401


@pytest.mark.asyncio
async def test_disabled_user_cannot_log_in(client, session_factory):
    user_id = await make_user(session_factory, email="gone@example.com", password="s3cret-pass")
    async with session_factory() as session:
        await user_service.disable_user(user_id, session)
        await session.commit()

    resp = await client.post(
        "/api/auth/login", json={"email": "gone@example.com", "password": "s3cret-pass"}
    )
    assert resp.status_code == 401
    assert resp.json()["error"] == "Account is disabled"
