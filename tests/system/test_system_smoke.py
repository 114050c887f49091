"""
System smoke test: full API flow in-process with SQLite.
Verifies health, login, node creation and moves, scope denials, the audit
trail and its queries. The app shares the session-wide temp file DB.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from orgdir.main import app

pytestmark = pytest.mark.system

API = "/api/v1"


@pytest_asyncio.fixture
async def client(tree):
    """Async client over the app; the sample tree is already committed."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def _login(client: AsyncClient, name: str, secret: str) -> dict:
    r = await client.post(f"{API}/auth/login", json={"username": name, "password": secret})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    """Health endpoint responds."""
    r = await client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["database"] == "connected"
    assert "X-Request-ID" in r.headers


@pytest.mark.asyncio
async def test_login_and_me(client: AsyncClient, principal_secrets, tree):
    headers = await _login(client, "sales_admin", principal_secrets["sales_admin"])

    r = await client.get(f"{API}/auth/me", headers=headers)
    assert r.status_code == 200
    data = r.json()
    assert data["role"] == "OU_ADMIN"
    assert data["administers_node_id"] == tree.ids["sales"]
    assert data["path"] == tree.paths["sales_admin"]


@pytest.mark.asyncio
async def test_bad_login(client: AsyncClient):
    r = await client.post(f"{API}/auth/login", json={"username": "alice", "password": "nope"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_anonymous_requests(client: AsyncClient, tree):
    r = await client.get(f"{API}/auth/me")
    assert r.status_code == 401

    r = await client.get(f"{API}/directory/{tree.ids['root']}")
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_REQUIRED"
    assert r.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_full_flow(client: AsyncClient, principal_secrets, tree):
    """Create -> move -> denied create -> audit trail."""
    headers = await _login(client, "sales_admin", principal_secrets["sales_admin"])

    # Create a unit inside the administered subtree
    r = await client.post(
        f"{API}/directory",
        json={"name": "nordics", "kind": "UNIT", "parent_id": tree.ids["emea"]},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    nordics = r.json()
    assert nordics["path"] == f"{tree.paths['emea']}{nordics['id']}."

    # Move alice under the new unit; her path follows
    r = await client.post(
        f"{API}/directory/move",
        json={"node_id": tree.ids["alice"], "new_parent_id": nordics["id"]},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["path"] == f"{nordics['path']}{tree.ids['alice']}."

    r = await client.get(f"{API}/directory/{tree.ids['alice']}/ancestors", headers=headers)
    assert [n["name"] for n in r.json()] == ["root", "sales", "emea", "nordics"]

    # Outside the subtree
    r = await client.post(
        f"{API}/directory",
        json={"name": "rogue", "kind": "UNIT", "parent_id": tree.ids["ops"]},
        headers=headers,
    )
    assert r.status_code == 403
    assert r.json()["code"] == "SCOPE_VIOLATION"

    # Audit trail of the caller
    r = await client.get(f"{API}/audit/actor/{tree.ids['sales_admin']}", headers=headers)
    assert r.status_code == 200, r.text
    records = r.json()
    assert [(rec["action"], rec["status"]) for rec in records][:3] == [
        ("CREATE", "DENIED"),
        ("READ", "SUCCESS"),
        ("MOVE", "SUCCESS"),
    ]
    move = records[2]
    assert move["target_id"] == tree.ids["alice"]
    assert move["scope"] == tree.paths["sales"]
    assert move["metadata"]["old_path"] == tree.paths["alice"]

    r = await client.get(f"{API}/audit/stats/{tree.ids['sales_admin']}", headers=headers)
    assert r.json() == {"CREATE": 2, "MOVE": 1, "READ": 1}


@pytest.mark.asyncio
async def test_tree_and_search_are_scoped(client: AsyncClient, principal_secrets, tree):
    headers = await _login(client, "sales_admin", principal_secrets["sales_admin"])

    r = await client.get(f"{API}/directory/tree", headers=headers)
    assert r.status_code == 200
    forest = r.json()
    assert [n["name"] for n in forest] == ["sales"]
    assert {c["name"] for c in forest[0]["children"]} == {"emea", "sales_admin"}

    r = await client.get(f"{API}/directory/search/flat", params={"q": "o"}, headers=headers)
    assert r.status_code == 200
    assert all(n["path"].startswith(tree.paths["sales"]) for n in r.json())

    r = await client.get(
        f"{API}/directory/scope/{tree.ids['sales']}", params={"q": "MARTIN"}, headers=headers
    )
    assert [n["name"] for n in r.json()] == ["alice"]


@pytest.mark.asyncio
async def test_user_access(client: AsyncClient, principal_secrets, tree):
    headers = await _login(client, "alice", principal_secrets["alice"])

    r = await client.get(f"{API}/directory/{tree.ids['alice']}", headers=headers)
    assert r.status_code == 200
    assert "credential_secret" not in r.json()

    r = await client.patch(
        f"{API}/directory/{tree.ids['alice']}", json={"name": "alicia"}, headers=headers
    )
    assert r.status_code == 403
    assert r.json()["code"] == "ROLE_INSUFFICIENT"

    r = await client.get(f"{API}/audit/actor/{tree.ids['alice']}", headers=headers)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_super_admin_operations(client: AsyncClient, principal_secrets, tree):
    headers = await _login(client, "admin", principal_secrets["admin"])

    r = await client.get(f"{API}/directory/integrity", headers=headers)
    assert r.status_code == 200
    assert r.json() == []

    r = await client.delete(f"{API}/directory/{tree.ids['emea']}", headers=headers)
    assert r.status_code == 501
    assert r.json()["code"] == "NOT_IMPLEMENTED"

    r = await client.post(
        f"{API}/directory",
        json={"name": "emea", "kind": "UNIT", "parent_id": tree.ids["sales"]},
        headers=headers,
    )
    assert r.status_code == 409

    r = await client.get(f"{API}/audit/action/DELETE", headers=headers)
    assert [rec["status"] for rec in r.json()] == ["FAILED"]

    r = await client.get(f"{API}/audit/scope", params={"prefix": tree.paths["admin"]}, headers=headers)
    assert r.status_code == 200
    assert len(r.json()) >= 3


@pytest.mark.asyncio
async def test_validation_error(client: AsyncClient, principal_secrets):
    headers = await _login(client, "admin", principal_secrets["admin"])
    r = await client.post(f"{API}/directory", json={"kind": "UNIT"}, headers=headers)
    assert r.status_code == 422
    assert r.json()["errors"][0]["field"] == "body.name"
