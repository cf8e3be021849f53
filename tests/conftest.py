"""Shared test fixtures.

Provides:
- An in-memory SQLite engine (aiosqlite, StaticPool) with all tables created
- A session and a session_factory matching the repository pattern
- A seeded tenant with reps, a tradeshow and both CRM connections
- crm_server: a stateful fake of both CRM APIs for reconciliation tests
- no_retry_wait: tenacity retries without the backoff sleeps
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncGenerator, Callable
from datetime import date

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from tenacity import wait_none

import src.leadsync.models  # noqa: F401 -- register tables on Base.metadata
from src.leadsync.core.database import Base
from src.leadsync.crm.adapter import CRMAdapter
from src.leadsync.models import (
    Tenant,
    TenantCRMConnection,
    Tradeshow,
    TradeshowCredentials,
    User,
)

AC_URL = "https://acme.api-us1.com"
D365_URL = "https://acme.crm.dynamics.com"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSession(engine, expire_on_commit=False) as s:
        yield s


@pytest_asyncio.fixture
async def session_factory(engine) -> Callable[[], AsyncGenerator[AsyncSession, None]]:
    """Async generator factory, the shape LeadRepository expects."""

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as s:
            yield s

    return factory


@pytest_asyncio.fixture
async def seeded(session) -> dict:
    """Tenant "acme" with two reps, an admin, one tradeshow and both CRM connections."""
    tenant = Tenant(subdomain="acme", name="Acme Safety", default_country="Canada")
    other = Tenant(subdomain="globex", name="Globex")
    session.add_all([tenant, other])
    await session.flush()

    malina = User(
        tenant_id=tenant.id,
        email="malina@acme.test",
        name="Malina Fontaine",
        role="rep",
        rep_code="MF01",
        dynamics_user_id="aaaaaaaa-0000-0000-0000-000000000001",
    )
    patrick = User(
        tenant_id=tenant.id,
        email="patrick@acme.test",
        name="Patrick Poetsch",
        role="rep",
        rep_code="PP02",
        dynamics_user_id="aaaaaaaa-0000-0000-0000-000000000002",
    )
    admin = User(tenant_id=tenant.id, email="admin@acme.test", name="Ada Admin", role="admin")
    outsider = User(
        tenant_id=other.id,
        email="malina@globex.test",
        name="Malina Other",
        role="rep",
        rep_code="MF01",
        dynamics_user_id="bbbbbbbb-0000-0000-0000-000000000001",
    )
    session.add_all([malina, patrick, admin, outsider])

    tradeshow = Tradeshow(
        tenant_id=tenant.id,
        name="Safety Expo 2025",
        slug="safety-expo-2025",
        ac_tag_id="42",
        start_date=date(2025, 5, 1),
    )
    session.add(tradeshow)
    await session.flush()

    session.add_all([
        TenantCRMConnection(
            tenant_id=tenant.id,
            crm_type="activecampaign",
            api_url=AC_URL,
            api_key="ac-key",
            field_mappings={"rep_field_id": "16", "rep_aliases": {"Mal": "Malina Fontaine"}},
        ),
        TenantCRMConnection(
            tenant_id=tenant.id,
            crm_type="dynamics365",
            client_id="client-id",
            client_secret="client-secret",
            tenant_id_crm="azure-tenant",
            instance_url=D365_URL,
            field_mappings={"lead_topic_format": "{tenant_name} Lead - {full_name}"},
        ),
        TradeshowCredentials(
            tradeshow_id=tradeshow.id,
            ac_api_url=AC_URL,
            ac_api_key="show-ac-key",
            d365_tenant_id="azure-tenant",
            d365_client_id="show-client",
            d365_client_secret="show-secret",
            d365_instance_url=D365_URL,
        ),
    ])
    await session.commit()
    return {
        "tenant": tenant,
        "other_tenant": other,
        "malina": malina,
        "patrick": patrick,
        "admin": admin,
        "outsider": outsider,
        "tradeshow": tradeshow,
    }


class FakeCRMs:
    """In-memory ActiveCampaign + Dynamics 365 served through httpx.MockTransport.

    contacts: contact id -> {"email", "firstName", "lastName", "fields": {field id: value}}
    leads: email -> Dynamics lead attributes (must include "leadid")
    Every PATCH is recorded in ``writes`` and applied to the stored lead.
    """

    def __init__(self) -> None:
        self.contacts: dict[str, dict] = {}
        self.leads: dict[str, dict] = {}
        self.writes: list[tuple[str, dict]] = []
        self.token_status = 200
        self.failing_contacts: set[str] = set()

    def add_contact(self, contact_id: str, email: str, name: str = "", **fields: str) -> None:
        first, _, last = name.partition(" ")
        self.contacts[contact_id] = {
            "email": email,
            "firstName": first,
            "lastName": last,
            "fields": dict(fields),
        }

    def add_lead(self, email: str, leadid: str, **attributes) -> None:
        self.leads[email] = {"leadid": leadid, **attributes}

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "login.microsoftonline.com":
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="invalid_client")
            return httpx.Response(200, json={"access_token": "token", "expires_in": 3600})
        if host == httpx.URL(AC_URL).host:
            return self._activecampaign(request)
        if host == httpx.URL(D365_URL).host:
            return self._dynamics(request)
        return httpx.Response(404, text=f"unexpected host {host}")

    def _activecampaign(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/3/fieldValues":
            field_id = request.url.params["filters[fieldid]"]
            offset = int(request.url.params["offset"])
            limit = int(request.url.params["limit"])
            rows = [
                {"contact": cid, "field": field_id, "value": c["fields"].get(field_id, "")}
                for cid, c in self.contacts.items()
            ]
            return httpx.Response(200, json={"fieldValues": rows[offset:offset + limit]})
        if path.startswith("/api/3/contacts/"):
            cid = path.rsplit("/", 1)[1]
            if cid in self.failing_contacts:
                return httpx.Response(500, text="internal error")
            contact = self.contacts.get(cid)
            if contact is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(
                200,
                json={
                    "contact": {
                        "id": cid,
                        "email": contact["email"],
                        "firstName": contact["firstName"],
                        "lastName": contact["lastName"],
                    },
                    "fieldValues": [
                        {"field": fid, "value": value} for fid, value in contact["fields"].items()
                    ],
                },
            )
        return httpx.Response(404, text=f"unexpected path {path}")

    def _dynamics(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path == "/api/data/v9.2/leads":
            email = request.url.params["$filter"].split("'", 1)[1][:-1].replace("''", "'")
            lead = self.leads.get(email)
            return httpx.Response(200, json={"value": [dict(lead)] if lead else []})
        match = re.fullmatch(r"/api/data/v9\.2/leads\(([^)]+)\)", path)
        if request.method == "PATCH" and match:
            leadid = match.group(1)
            body = json.loads(request.content)
            self.writes.append((leadid, body))
            for lead in self.leads.values():
                if lead["leadid"] == leadid:
                    for key, value in body.items():
                        if key == "ownerid@odata.bind":
                            lead["_ownerid_value"] = value[len("/systemusers("):-1]
                        else:
                            lead[key] = value
            return httpx.Response(204)
        return httpx.Response(404, text=f"unexpected path {path}")


@pytest.fixture
def crm_server() -> FakeCRMs:
    return FakeCRMs()


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Keep tenacity's attempts but drop the backoff sleeps."""
    monkeypatch.setattr(CRMAdapter._send.retry, "wait", wait_none())
