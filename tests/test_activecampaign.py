"""Tests for the ActiveCampaign client.

All HTTP goes through httpx.MockTransport; handlers assert on the request
shape and return canned API responses.
"""

from __future__ import annotations

import json

import httpx
import pytest

from src.leadsync.crm.activecampaign import ActiveCampaignClient
from src.leadsync.crm.errors import AuthFailedError, NotFoundError
from src.leadsync.crm.schemas import (
    ActiveCampaignCredentials,
    ConnectionStatus,
    ContactFields,
    CRMErrorKind,
)

API_URL = "https://acme.api-us1.com"
CREDS = ActiveCampaignCredentials(api_url=API_URL + "/", api_key="secret-key")


def make_client(handler, credentials=CREDS, page_size=100) -> ActiveCampaignClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ActiveCampaignClient(credentials, http_client=http, timeout=5, page_size=page_size)


# ── Contact Sync ───────────────────────────────────────────────────────────


class TestCreateOrUpdateContact:
    @pytest.mark.asyncio
    async def test_returns_contact_id(self):
        """contact/sync response id comes back as a string remote_id."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["token"] = request.headers["Api-Token"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"contact": {"id": 987}})

        client = make_client(handler)
        result = await client.create_or_update_contact(
            ContactFields(
                email="jane@example.com",
                first_name="Jane",
                last_name="Doe",
                field_values={"1": "Canada", "16": "Malina Fontaine"},
            )
        )

        assert result.success is True
        assert result.remote_id == "987"
        assert seen["url"] == f"{API_URL}/api/3/contact/sync"
        assert seen["token"] == "secret-key"
        contact = seen["body"]["contact"]
        assert contact["email"] == "jane@example.com"
        assert {"field": "16", "value": "Malina Fontaine"} in contact["fieldValues"]

    @pytest.mark.asyncio
    async def test_auth_failure_is_a_result_not_an_exception(self):
        client = make_client(lambda request: httpx.Response(403, text="forbidden"))
        result = await client.create_or_update_contact(ContactFields(email="a@b.test"))
        assert result.success is False
        assert result.error_kind == CRMErrorKind.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_http_error_includes_body(self):
        client = make_client(lambda request: httpx.Response(422, text="email invalid"))
        result = await client.create_or_update_contact(ContactFields(email="bad"))
        assert result.error_kind == CRMErrorKind.HTTP_ERROR
        assert "email invalid" in result.error

    @pytest.mark.asyncio
    async def test_missing_credentials_makes_no_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler, credentials=ActiveCampaignCredentials(api_url="", api_key=""))
        result = await client.create_or_update_contact(ContactFields(email="a@b.test"))
        assert result.error_kind == CRMErrorKind.MISSING_CREDENTIALS
        assert "ActiveCampaign API URL" in result.error
        assert "ActiveCampaign API Key" in result.error
        assert calls == []


# ── Notes & Tags ───────────────────────────────────────────────────────────


class TestNotesAndTags:
    @pytest.mark.asyncio
    async def test_add_note_body(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"note": {"id": 1}})

        client = make_client(handler)
        assert await client.add_note("55", "hello") is True
        assert seen["path"] == "/api/3/notes"
        assert seen["body"] == {"note": {"note": "hello", "relid": "55", "reltype": "Subscriber"}}

    @pytest.mark.asyncio
    async def test_add_tag_failure_returns_false(self):
        client = make_client(lambda request: httpx.Response(400, text="nope"))
        assert await client.add_tag("55", "42") is False


class TestCreateTag:
    @pytest.mark.asyncio
    async def test_returns_tag_id(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"tag": {"id": 77, "tag": "Safety Expo 2025"}})

        result = await make_client(handler).create_tag("Safety Expo 2025", "Booth leads")

        assert result.success is True
        assert result.remote_id == "77"
        assert seen["path"] == "/api/3/tags"
        assert seen["body"] == {
            "tag": {"tag": "Safety Expo 2025", "tagType": "contact", "description": "Booth leads"}
        }

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        result = await make_client(lambda r: httpx.Response(401, text="bad key")).create_tag("X")
        assert result.success is False
        assert result.error_kind == CRMErrorKind.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_http_error_includes_body(self):
        result = await make_client(lambda r: httpx.Response(422, text="duplicate tag")).create_tag("X")
        assert result.error_kind == CRMErrorKind.HTTP_ERROR
        assert "duplicate tag" in result.error

    @pytest.mark.asyncio
    async def test_missing_credentials_sends_nothing(self):
        calls = []
        client = make_client(
            lambda r: calls.append(r) or httpx.Response(201),
            credentials=ActiveCampaignCredentials(api_url="", api_key="k"),
        )
        result = await client.create_tag("X")
        assert result.error_kind == CRMErrorKind.MISSING_CREDENTIALS
        assert calls == []


# ── Field Values ───────────────────────────────────────────────────────────


class TestFieldValues:
    @pytest.mark.asyncio
    async def test_paginates_until_short_page(self):
        """Offsets advance by the page size; a short page ends the scan."""
        pages = {
            0: [{"contact": "1", "value": "Malina"}, {"contact": "2", "value": ""}],
            2: [{"contact": "3", "value": "Patrick"}, {"contact": "1", "value": "Malina"}],
            4: [{"contact": "4", "value": "  "}],
        }
        offsets = []

        def handler(request):
            assert request.url.params["filters[fieldid]"] == "16"
            assert request.url.params["limit"] == "2"
            offset = int(request.url.params["offset"])
            offsets.append(offset)
            return httpx.Response(200, json={"fieldValues": pages[offset]})

        client = make_client(handler, page_size=2)
        rows = [row async for row in client.iter_field_values("16")]
        assert offsets == [0, 2, 4]
        assert len(rows) == 5

    @pytest.mark.asyncio
    async def test_collect_contact_ids_dedupes_and_drops_blank(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "fieldValues": [
                        {"contact": "1", "value": "Malina"},
                        {"contact": "2", "value": ""},
                        {"contact": "3", "value": "Patrick"},
                        {"contact": "1", "value": "Malina"},
                    ]
                },
            )

        client = make_client(handler)
        assert await client.collect_contact_ids("16") == ["1", "3"]


# ── Get Contact ────────────────────────────────────────────────────────────


class TestGetContact:
    @pytest.mark.asyncio
    async def test_parses_field_values(self):
        def handler(request):
            assert request.url.path == "/api/3/contacts/7"
            assert request.url.params["include"] == "fieldValues"
            return httpx.Response(
                200,
                json={
                    "contact": {
                        "id": "7",
                        "email": "jane@example.com",
                        "firstName": "Jane",
                        "lastName": "Doe",
                    },
                    "fieldValues": [
                        {"field": "1", "value": "Canada"},
                        {"field": 16, "value": " Malina "},
                        {"field": "8", "value": None},
                    ],
                },
            )

        contact = await make_client(handler).get_contact("7")
        assert contact.id == "7"
        assert contact.full_name == "Jane Doe"
        assert contact.value("16") == "Malina"
        assert contact.value("8") == ""
        assert contact.value("999") == ""

    @pytest.mark.asyncio
    async def test_404_raises_not_found(self):
        client = make_client(lambda request: httpx.Response(404, text="missing"))
        with pytest.raises(NotFoundError):
            await client.get_contact("404")

    @pytest.mark.asyncio
    async def test_401_raises_auth_failed(self):
        client = make_client(lambda request: httpx.Response(401, text="bad key"))
        with pytest.raises(AuthFailedError):
            await client.get_contact("1")


# ── Connection Test ────────────────────────────────────────────────────────


class TestConnection:
    @pytest.mark.asyncio
    async def test_success(self):
        def handler(request):
            assert request.url.path == "/api/3/contacts"
            assert request.url.params["limit"] == "1"
            return httpx.Response(200, json={"contacts": []})

        result = await make_client(handler).test_connection()
        assert result.success is True
        assert result.status == ConnectionStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        result = await make_client(lambda r: httpx.Response(403)).test_connection()
        assert result.success is False
        assert result.status == ConnectionStatus.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = make_client(
            lambda r: httpx.Response(200),
            credentials=ActiveCampaignCredentials(api_url=API_URL, api_key=" "),
        )
        result = await client.test_connection()
        assert result.status == ConnectionStatus.MISSING_CREDENTIALS
        assert "ActiveCampaign API Key" in result.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 500])
    async def test_non_auth_status_is_http_error(self, status_code):
        result = await make_client(lambda r: httpx.Response(status_code)).test_connection()
        assert result.success is False
        assert result.status == ConnectionStatus.HTTP_ERROR
        assert f"HTTP {status_code}" in result.message

    @pytest.mark.asyncio
    async def test_unauthorized_is_auth_failed(self):
        result = await make_client(lambda r: httpx.Response(401)).test_connection()
        assert result.status == ConnectionStatus.AUTH_FAILED
