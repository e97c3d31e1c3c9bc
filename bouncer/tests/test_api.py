"""
Admin API contract tests.

Covers the bearer-token guard, user record CRUD, the migrate endpoint's
status mapping and the private no-store cache headers.
"""

from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

from bouncer.admission import credentials
from bouncer.admission.domain import Identity, Member
from bouncer.admission.migration import MigrationReconciler
from bouncer.admission.registration import register
from bouncer.admission.resolver import CandidateResolver
from bouncer.admission.roles import RoleCache
from bouncer.admission.errors import ExternalUnavailable
from bouncer.records.stores import InMemoryRecordStore
from bouncer.tests.fakes import GUILD_ID, FakeDiscord
from bouncer.web.main import create_app

pytestmark = pytest.mark.anyio("asyncio")

TOKEN = "test-admin-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


def _app(members=None, *, with_bot: bool = True, admin_token: str = TOKEN):
    store = InMemoryRecordStore()
    client = FakeDiscord(members=members or [])
    cache = RoleCache(client, GUILD_ID)
    reconciler = MigrationReconciler(CandidateResolver(store), store, cache, client) if with_bot else None
    app = create_app(store, reconciler=reconciler, cache=cache if with_bot else None, admin_token=admin_token)
    return app, store, client


def _http(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _sealed_payload(name: str = "Ada", **extra) -> tuple[dict, str]:
    ciphertext, secret = credentials.encrypt(name)
    body = {"name": ciphertext, "name_key_hash": credentials.lookup_hash(secret), **extra}
    return body, secret


@pytest.mark.anyio
async def test_requests_without_or_with_wrong_token_are_401():
    app, _, _ = _app()
    async with _http(app) as c:
        r1 = await c.get("/api/users")
        r2 = await c.get("/api/users", headers={"Authorization": "Bearer nope"})
    assert r1.status_code == 401 and r2.status_code == 401
    assert "no-store" in r1.headers.get("Cache-Control", "")


@pytest.mark.anyio
async def test_admin_routes_are_503_without_configured_token():
    app, _, _ = _app(admin_token="")
    async with _http(app) as c:
        r = await c.get("/api/users", headers=AUTH)
    assert r.status_code == 503


@pytest.mark.anyio
async def test_create_get_update_delete_user():
    app, store, _ = _app()
    body, secret = _sealed_payload(cohort="2022", ta=True)
    async with _http(app) as c:
        created = await c.post("/api/users", json=body, headers=AUTH)
        assert created.status_code == 201
        user_id = created.json()["id"]

        got = await c.get(f"/api/users/{user_id}", headers=AUTH)
        assert got.status_code == 200
        assert got.json()["cohort"] == "2022" and got.json()["ta"] is True
        assert "private" in got.headers["Cache-Control"]

        updated = await c.put(f"/api/users/{user_id}", json={**body, "cohort": "2023"}, headers=AUTH)
        assert updated.status_code == 200 and updated.json()["cohort"] == "2023"

        deleted = await c.delete(f"/api/users/{user_id}", headers=AUTH)
        assert deleted.status_code == 204

        missing = await c.get(f"/api/users/{user_id}", headers=AUTH)
        assert missing.status_code == 404
    assert store.list_records() == []


@pytest.mark.anyio
async def test_list_users_filters_by_key_hash():
    app, store, _ = _app()
    register(store, Identity(name="One"))
    _, secret = register(store, Identity(name="Two"))
    async with _http(app) as c:
        all_users = await c.get("/api/users", headers=AUTH)
        one = await c.get("/api/users", params={"keyHash": credentials.lookup_hash(secret)}, headers=AUTH)
    assert len(all_users.json()) == 2
    assert [u["id"] for u in one.json()] == [2]


@pytest.mark.anyio
async def test_create_user_validation():
    app, _, _ = _app()
    body, _ = _sealed_payload()
    async with _http(app) as c:
        bad_cohort = await c.post("/api/users", json={**body, "cohort": "someday"}, headers=AUTH)
        bad_hex = await c.post("/api/users", json={**body, "name": "not hex!"}, headers=AUTH)
    assert bad_cohort.status_code == 400
    assert bad_cohort.json()["detail"] == "invalid_cohort"
    assert bad_hex.status_code == 422


@pytest.mark.anyio
async def test_update_and_delete_unknown_user_are_404():
    app, _, _ = _app()
    body, _ = _sealed_payload()
    async with _http(app) as c:
        r1 = await c.put("/api/users/99", json=body, headers=AUTH)
        r2 = await c.delete("/api/users/99", headers=AUTH)
    assert r1.status_code == 404 and r2.status_code == 404


@pytest.mark.anyio
@pytest.mark.parametrize(
    "members,payload,status",
    [
        ([Member("u1", "ada")], {"name": "ada", "role": "2022"}, 200),
        ([Member("u1", "ada")], {"name": "ada", "role": "2031"}, 400),
        ([], {"name": "ada", "role": "2022"}, 404),
        ([Member("u1", "ada"), Member("u2", "x", "ada")], {"name": "ada", "role": "2022"}, 409),
    ],
)
async def test_migrate_status_mapping(members, payload, status):
    app, _, client = _app(members)
    async with _http(app) as c:
        r = await c.post("/api/discord/migrate", json=payload, headers=AUTH)
    assert r.status_code == status
    if status == 200:
        assert r.json() == {"id": "u1", "cohort": "2022"}
        assert client.granted == [("u1", "d")]


@pytest.mark.anyio
async def test_migrate_platform_failure_is_502():
    app, _, client = _app([Member("u1", "ada")])
    client.fail["grant_role"] = ExternalUnavailable("HTTP 500", status_code=500)
    async with _http(app) as c:
        r = await c.post("/api/discord/migrate", json={"name": "ada", "role": "2022"}, headers=AUTH)
    assert r.status_code == 502
    assert "500" not in r.text


@pytest.mark.anyio
async def test_migrate_without_bot_is_503():
    app, _, _ = _app(with_bot=False)
    async with _http(app) as c:
        r = await c.post("/api/discord/migrate", json={"name": "ada", "role": "2022"}, headers=AUTH)
    assert r.status_code == 503


@pytest.mark.anyio
async def test_healthz_is_public_and_reports_bot_state():
    app, _, _ = _app()
    async with _http(app) as c:
        r = await c.get("/healthz")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok" and body["bot"] is True and body["rolesInitialized"] is False
