"""Tests for CRM credential resolution.

Uses the seeded SQLite database from conftest: tenant "acme" with both CRM
connections and tradeshow "safety-expo-2025" with legacy credentials.
"""

from __future__ import annotations

import pytest

from src.leadsync.config import Settings
from src.leadsync.crm.credentials import (
    AC_API_KEY,
    AC_API_URL,
    D365_CLIENT_ID,
    D365_CLIENT_SECRET,
    D365_INSTANCE_URL,
    D365_TENANT_ID,
    get_tenant_connection,
    get_tradeshow_credentials,
    list_tradeshows_with_credentials,
    load_activecampaign_credentials,
    load_dynamics_credentials,
    migrate_environment_credentials,
    parse_identifier,
    resolve_environment_credentials,
    resolve_tenant_credentials,
    resolve_tradeshow_credentials,
    upsert_tradeshow_credentials,
)
from src.leadsync.crm.errors import MissingCredentialsError, NotFoundError
from src.leadsync.models import TenantCRMConnection, Tradeshow

ENV_VALUES = dict(
    ACTIVECAMPAIGN_API_URL="https://env.api-us1.com",
    ACTIVECAMPAIGN_API_KEY="env-key",
    DYNAMICS_TENANT_ID="env-tenant",
    DYNAMICS_CLIENT_ID="env-client",
    DYNAMICS_CLIENT_SECRET="env-secret",
    DYNAMICS_INSTANCE_URL="https://env.crm.dynamics.com",
)


def env_settings(**overrides) -> Settings:
    values = {**ENV_VALUES, **overrides}
    return Settings(_env_file=None, **values)


# ── Identifiers ────────────────────────────────────────────────────────────


class TestParseIdentifier:
    @pytest.mark.parametrize(
        "raw, expected",
        [(5, 5), ("12", 12), (" 7 ", 7), ("Safety-Expo", "safety-expo"), ("acme", "acme")],
    )
    def test_parse(self, raw, expected):
        assert parse_identifier(raw) == expected


# ── Tenant Connections ─────────────────────────────────────────────────────


class TestTenantCredentials:
    @pytest.mark.asyncio
    async def test_by_subdomain(self, session, seeded):
        bundle = await resolve_tenant_credentials(session, "acme")

        assert bundle.source == "tenant"
        assert bundle.tenant_id == seeded["tenant"].id
        assert bundle.tenant_name == "Acme Safety"
        assert bundle.default_country == "Canada"
        assert bundle.activecampaign.api_key == "ac-key"
        assert bundle.dynamics.client_secret == "client-secret"
        assert bundle.field_ids.rep == "16"
        assert bundle.rep_aliases == {"mal": "Malina Fontaine"}
        assert bundle.lead_source_code == 7
        assert bundle.lead_topic("Jane Doe") == "Acme Safety Lead - Jane Doe"

    @pytest.mark.asyncio
    async def test_by_numeric_id(self, session, seeded):
        bundle = await resolve_tenant_credentials(session, str(seeded["tenant"].id))
        assert bundle.tenant_name == "Acme Safety"

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, session, seeded):
        with pytest.raises(NotFoundError):
            await resolve_tenant_credentials(session, "nobody")

    @pytest.mark.asyncio
    async def test_inactive_tenant_is_not_found(self, session, seeded):
        seeded["tenant"].is_active = False
        await session.commit()
        with pytest.raises(NotFoundError):
            await resolve_tenant_credentials(session, "acme")

    @pytest.mark.asyncio
    async def test_tenant_without_connections_lists_all_fields(self, session, seeded):
        """Every absent field is reported, not only the first."""
        with pytest.raises(MissingCredentialsError) as exc_info:
            await resolve_tenant_credentials(session, "globex")
        assert exc_info.value.missing_fields == [
            AC_API_URL,
            AC_API_KEY,
            D365_TENANT_ID,
            D365_CLIENT_ID,
            D365_CLIENT_SECRET,
            D365_INSTANCE_URL,
        ]

    @pytest.mark.asyncio
    async def test_partial_connection(self, session, seeded):
        session.add(
            TenantCRMConnection(
                tenant_id=seeded["other_tenant"].id,
                crm_type="activecampaign",
                api_url="https://globex.api-us1.com",
                api_key="",
            )
        )
        await session.commit()

        with pytest.raises(MissingCredentialsError) as exc_info:
            await resolve_tenant_credentials(session, "globex")
        assert AC_API_URL not in exc_info.value.missing_fields
        assert exc_info.value.missing_fields[0] == AC_API_KEY
        assert len(exc_info.value.missing_fields) == 5

    @pytest.mark.asyncio
    async def test_inactive_connection_ignored(self, session, seeded):
        conn = await get_tenant_connection(session, seeded["tenant"].id, "activecampaign")
        conn.is_active = False
        await session.commit()
        with pytest.raises(MissingCredentialsError):
            await resolve_tenant_credentials(session, "acme")

    @pytest.mark.asyncio
    async def test_field_mapping_overrides(self, session, seeded):
        conn = await get_tenant_connection(session, seeded["tenant"].id, "dynamics365")
        conn.field_mappings = {"lead_source_code": "100000002", "country_field_id": "31"}
        await session.commit()

        bundle = await resolve_tenant_credentials(session, "acme")
        assert bundle.lead_source_code == 100000002
        assert bundle.field_ids.country == "31"
        assert bundle.field_ids.company == "8"


class TestSingleConnectionLoaders:
    @pytest.mark.asyncio
    async def test_load_activecampaign(self, session, seeded):
        creds, mappings = await load_activecampaign_credentials(session, seeded["tenant"].id)
        assert creds.base_url == "https://acme.api-us1.com"
        assert mappings["rep_field_id"] == "16"

    @pytest.mark.asyncio
    async def test_load_dynamics(self, session, seeded):
        creds, _ = await load_dynamics_credentials(session, seeded["tenant"].id)
        assert creds.tenant_id == "azure-tenant"

    @pytest.mark.asyncio
    async def test_load_missing_connection(self, session, seeded):
        with pytest.raises(NotFoundError):
            await load_dynamics_credentials(session, seeded["other_tenant"].id)


# ── Legacy Tradeshow Credentials ───────────────────────────────────────────


class TestTradeshowCredentials:
    @pytest.mark.asyncio
    async def test_by_slug(self, session, seeded):
        bundle = await resolve_tradeshow_credentials(session, "Safety-Expo-2025")

        assert bundle.source == "tradeshow"
        assert bundle.tradeshow_name == "Safety Expo 2025"
        assert bundle.tenant_name == "Acme Safety"
        assert bundle.activecampaign.api_key == "show-ac-key"
        assert bundle.dynamics.client_id == "show-client"
        assert bundle.tag_id == "42"
        assert bundle.rep_aliases == {"mal": "Malina Fontaine"}
        assert bundle.lead_topic("Jane Doe") == "Safety Expo 2025"

    @pytest.mark.asyncio
    async def test_by_id(self, session, seeded):
        bundle = await resolve_tradeshow_credentials(session, seeded["tradeshow"].id)
        assert bundle.tradeshow_id == seeded["tradeshow"].id

    @pytest.mark.asyncio
    async def test_unknown_tradeshow(self, session, seeded):
        with pytest.raises(NotFoundError):
            await resolve_tradeshow_credentials(session, "no-such-show")

    @pytest.mark.asyncio
    async def test_column_overrides_field_ids(self, session, seeded):
        await upsert_tradeshow_credentials(
            session, seeded["tradeshow"].id, {"ac_rep_field_id": "44"}
        )
        bundle = await resolve_tradeshow_credentials(session, "safety-expo-2025")
        assert bundle.field_ids.rep == "44"

    @pytest.mark.asyncio
    async def test_incomplete_row(self, session, seeded):
        show = Tradeshow(tenant_id=seeded["tenant"].id, name="Bare Show", slug="bare-show")
        session.add(show)
        await session.commit()
        await upsert_tradeshow_credentials(session, show.id, {"ac_api_url": "https://x.test"})

        with pytest.raises(MissingCredentialsError) as exc_info:
            await resolve_tradeshow_credentials(session, "bare-show")
        assert exc_info.value.missing_fields == [
            AC_API_KEY,
            D365_TENANT_ID,
            D365_CLIENT_ID,
            D365_CLIENT_SECRET,
            D365_INSTANCE_URL,
        ]
        assert "Bare Show" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_tradeshow_credentials(self, session, seeded):
        tradeshow, creds = await get_tradeshow_credentials(session, "safety-expo-2025")
        assert tradeshow.id == seeded["tradeshow"].id
        assert creds.ac_api_key == "show-ac-key"

    @pytest.mark.asyncio
    async def test_list_tradeshows(self, session, seeded):
        session.add(Tradeshow(tenant_id=seeded["tenant"].id, name="No Creds", slug="no-creds"))
        await session.commit()

        shows = {s["slug"]: s for s in await list_tradeshows_with_credentials(session)}
        assert shows["safety-expo-2025"]["has_ac_credentials"] is True
        assert shows["safety-expo-2025"]["has_d365_credentials"] is True
        assert shows["no-creds"]["has_credentials"] is False


class TestUpsert:
    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, session, seeded):
        creds = await upsert_tradeshow_credentials(
            session,
            seeded["tradeshow"].id,
            {"ac_api_key": "rotated", "d365_client_secret": None},
        )
        assert creds.ac_api_key == "rotated"
        assert creds.d365_client_secret == "show-secret"
        assert creds.ac_api_url == "https://acme.api-us1.com"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, session, seeded):
        with pytest.raises(ValueError, match="bogus"):
            await upsert_tradeshow_credentials(session, seeded["tradeshow"].id, {"bogus": "x"})

    @pytest.mark.asyncio
    async def test_unknown_tradeshow(self, session, seeded):
        with pytest.raises(NotFoundError):
            await upsert_tradeshow_credentials(session, 9999, {"ac_api_key": "x"})


# ── Environment ────────────────────────────────────────────────────────────


class TestEnvironmentCredentials:
    def test_complete(self):
        bundle = resolve_environment_credentials(env_settings())
        assert bundle.source == "environment"
        assert bundle.activecampaign.api_url == "https://env.api-us1.com"
        assert bundle.dynamics.instance_url == "https://env.crm.dynamics.com"
        assert bundle.owner_name == "environment"

    def test_missing_named_by_variable(self):
        settings = env_settings(ACTIVECAMPAIGN_API_KEY="", DYNAMICS_CLIENT_SECRET="  ")
        with pytest.raises(MissingCredentialsError) as exc_info:
            resolve_environment_credentials(settings)
        assert exc_info.value.missing_fields == [
            "ACTIVECAMPAIGN_API_KEY",
            "DYNAMICS_CLIENT_SECRET",
        ]

    @pytest.mark.asyncio
    async def test_migrate_to_tradeshow(self, session, seeded):
        show = Tradeshow(tenant_id=seeded["tenant"].id, name="Env Show", slug="env-show")
        session.add(show)
        await session.commit()

        creds = await migrate_environment_credentials(session, "env-show", env_settings())
        assert creds.tradeshow_id == show.id
        assert creds.ac_api_key == "env-key"
        assert creds.lead_topic_format == "Tradeshow Lead - {full_name}"

        bundle = await resolve_tradeshow_credentials(session, "env-show")
        assert bundle.dynamics.client_id == "env-client"

    @pytest.mark.asyncio
    async def test_migrate_requires_complete_environment(self, session, seeded):
        with pytest.raises(MissingCredentialsError):
            await migrate_environment_credentials(
                session, "safety-expo-2025", env_settings(DYNAMICS_TENANT_ID="")
            )

    @pytest.mark.asyncio
    async def test_migrate_unknown_tradeshow(self, session, seeded):
        with pytest.raises(NotFoundError):
            await migrate_environment_credentials(session, "missing", env_settings())
