"""Tests for the reconciliation command-line driver.

run_job() is driven with a session scope over the seeded SQLite engine and
the crm_server fake as its HTTP client; output is captured via echo.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.crm.credentials import get_tenant_connection
from src.leadsync.crm.runner import build_job, format_summary, run_job
from src.leadsync.crm.schemas import (
    ActiveCampaignCredentials,
    CredentialBundle,
    DynamicsCredentials,
    SyncCounters,
)

MALINA_GUID = "aaaaaaaa-0000-0000-0000-000000000001"


@pytest.fixture
def scope(engine):
    @asynccontextmanager
    async def _scope():
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return _scope


def bundle() -> CredentialBundle:
    return CredentialBundle(
        source="tenant",
        tenant_name="Acme Safety",
        activecampaign=ActiveCampaignCredentials(api_url="https://a.test", api_key="k"),
        dynamics=DynamicsCredentials(
            tenant_id="t", client_id="c", client_secret="s", instance_url="https://d.test"
        ),
    )


# ── run_job ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_owner_sync_by_tenant(scope, seeded, crm_server):
    """--tenant acme: reps come from the tenant, summary printed, exit 0."""
    crm_server.add_contact("1", "m@example.com", **{"16": "Mal"})
    crm_server.add_contact("2", "x@example.com", **{"16": "Nobody Known"})
    crm_server.add_lead("m@example.com", "lead-m", _ownerid_value=None)
    crm_server.add_lead("x@example.com", "lead-x", _ownerid_value=None)
    lines: list[str] = []

    code = await run_job(
        "lead_owners",
        tenant="acme",
        session_factory=scope,
        http_client=crm_server.http_client(),
        echo=lines.append,
    )

    assert code == 0
    assert crm_server.writes == [("lead-m", {"ownerid@odata.bind": f"/systemusers({MALINA_GUID})"})]
    output = "\n".join(lines)
    assert "Lead owner sync using tenant credentials for Acme Safety" in output
    assert "Updated:          1" in output
    assert "  - Nobody Known (1 contacts)" in output


@pytest.mark.asyncio
async def test_source_update_by_tradeshow(scope, seeded, crm_server):
    crm_server.add_contact("1", "a@example.com", **{"16": "Patrick"})
    crm_server.add_lead("a@example.com", "lead-a", leadsourcecode=3)
    lines: list[str] = []

    code = await run_job(
        "lead_source",
        "safety-expo-2025",
        session_factory=scope,
        http_client=crm_server.http_client(),
        echo=lines.append,
    )

    assert code == 0
    assert crm_server.writes == [("lead-a", {"leadsourcecode": 7})]
    assert "Lead source update complete (Safety Expo 2025)" in lines


@pytest.mark.asyncio
async def test_unknown_tenant_exits_1(scope, seeded, crm_server):
    lines: list[str] = []
    code = await run_job(
        "lead_details",
        tenant="initech",
        session_factory=scope,
        http_client=crm_server.http_client(),
        echo=lines.append,
    )
    assert code == 1
    assert lines[0].startswith("ERROR: No active tenant found")


@pytest.mark.asyncio
async def test_incomplete_credentials_exit_1(scope, seeded, crm_server):
    lines: list[str] = []
    code = await run_job(
        "lead_details",
        tenant="globex",
        session_factory=scope,
        http_client=crm_server.http_client(),
        echo=lines.append,
    )
    assert code == 1
    assert "ActiveCampaign API URL" in lines[0]


@pytest.mark.asyncio
async def test_auth_failure_exits_1(scope, seeded, crm_server):
    crm_server.token_status = 401
    lines: list[str] = []
    code = await run_job(
        "lead_source",
        tenant="acme",
        session_factory=scope,
        http_client=crm_server.http_client(),
        echo=lines.append,
    )
    assert code == 1
    assert lines[-1].startswith("ERROR: Lead source update failed")


@pytest.mark.asyncio
async def test_malformed_lead_source_code_exits_1(scope, session, seeded, crm_server):
    conn = await get_tenant_connection(session, seeded["tenant"].id, "dynamics365")
    conn.field_mappings = {**conn.field_mappings, "lead_source_code": "trade show"}
    await session.commit()
    lines: list[str] = []

    code = await run_job(
        "lead_source",
        tenant="acme",
        session_factory=scope,
        http_client=crm_server.http_client(),
        echo=lines.append,
    )

    assert code == 1
    assert lines == ["ERROR: field_mappings.lead_source_code must be an integer, got 'trade show'"]
    assert crm_server.writes == []


# ── Helpers ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_build_job_rejects_unknown_name(session, crm_server):
    with pytest.raises(ValueError):
        await build_job("lead_colour", session, bundle(), crm_server.http_client())


def test_format_summary_counts_repeated_names():
    counters = SyncCounters(updated=2, skipped=3, unmatched=["Zed", "Amy", "Zed"])
    lines = format_summary("Lead owner sync", bundle(), counters)

    assert "Lead owner sync complete (Acme Safety)" in lines
    assert "  Total processed:  5" in lines
    assert lines[-2:] == ["  - Amy (1 contacts)", "  - Zed (2 contacts)"]


def test_format_summary_without_unmatched():
    lines = format_summary("Lead details sync", bundle(), SyncCounters(already_correct=4))
    assert "Unmatched rep names:" not in lines
