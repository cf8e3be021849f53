"""Authentication dependency tests.

Exercises get_current_user and require_admin with real JWTs against the
seeded SQLite users.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.api.deps import get_current_user, get_db, get_tenant, require_admin
from src.leadsync.core.security import create_access_token, verify_token
from src.leadsync.core.tenant import TenantContext


def _token(user, **overrides) -> str:
    claims = {"sub": str(user.id), "tenant_id": user.tenant_id, "role": user.role}
    claims.update(overrides)
    return create_access_token(claims)


@pytest_asyncio.fixture
async def client(engine, seeded):
    app = FastAPI()

    @app.get("/me")
    async def me(user=Depends(get_current_user)):
        return {"id": user.id, "name": user.name}

    @app.get("/admin-only")
    async def admin_only(user=Depends(require_admin)):
        return {"ok": True}

    async def _get_db():
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    tenant = seeded["tenant"]
    app.dependency_overrides[get_tenant] = lambda: TenantContext(
        tenant_id=tenant.id, subdomain=tenant.subdomain, name=tenant.name
    )
    app.dependency_overrides[get_db] = _get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ── Token Round Trip ─────────────────────────────────────────────────────────


def test_access_token_claims():
    payload = verify_token(create_access_token({"sub": "1", "tenant_id": 3}))
    assert payload["sub"] == "1"
    assert payload["tenant_id"] == 3
    assert payload["type"] == "access"


# ── get_current_user ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_valid_token(client, seeded):
    response = await client.get("/me", headers=_bearer(_token(seeded["malina"])))
    assert response.status_code == 200
    assert response.json()["name"] == "Malina Fontaine"


@pytest.mark.asyncio
async def test_missing_token_returns_401(client):
    response = await client.get("/me")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_expired_token_returns_401(client, seeded):
    token = create_access_token(
        {"sub": str(seeded["malina"].id), "tenant_id": seeded["malina"].tenant_id},
        expires_delta=timedelta(seconds=-1),
    )
    response = await client.get("/me", headers=_bearer(token))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_tenant_mismatch_returns_403(client, seeded):
    token = _token(seeded["malina"], tenant_id=seeded["other_tenant"].id)
    response = await client.get("/me", headers=_bearer(token))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_user_from_other_tenant_returns_401(client, seeded):
    """A globex user id never resolves inside the acme tenant."""
    outsider_token = create_access_token(
        {"sub": str(seeded["outsider"].id), "tenant_id": seeded["tenant"].id}
    )
    response = await client.get("/me", headers=_bearer(outsider_token))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_non_numeric_subject_returns_401(client, seeded):
    token = _token(seeded["malina"], sub="not-a-number")
    response = await client.get("/me", headers=_bearer(token))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_missing_subject_returns_401(client, seeded):
    token = create_access_token({"tenant_id": seeded["tenant"].id})
    response = await client.get("/me", headers=_bearer(token))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_non_numeric_tenant_claim_returns_401(client, seeded):
    token = _token(seeded["malina"], tenant_id="acme")
    response = await client.get("/me", headers=_bearer(token))
    assert response.status_code == 401


# ── require_admin ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_admin_route_allows_admin(client, seeded):
    response = await client.get("/admin-only", headers=_bearer(_token(seeded["admin"])))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_admin_route_rejects_rep(client, seeded):
    response = await client.get("/admin-only", headers=_bearer(_token(seeded["patrick"])))
    assert response.status_code == 403
