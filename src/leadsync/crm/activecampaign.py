"""Async client for the ActiveCampaign v3 REST API.

Write operations used during lead submission never raise:
- create_or_update_contact() returns a CRMResult with a typed failure kind.
- add_note() / add_tag() return False and log on failure.

Read operations used by reconciliation jobs (iter_field_values, get_contact)
raise CRMError subclasses so the job can count per-contact errors.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from src.leadsync.config import get_settings
from src.leadsync.core.monitoring import track_crm_call
from src.leadsync.crm.adapter import CRMAdapter
from src.leadsync.crm.errors import AuthFailedError, CRMError, NotFoundError
from src.leadsync.crm.field_mapping import from_activecampaign_contact, to_activecampaign_contact
from src.leadsync.crm.schemas import (
    ActiveCampaignContact,
    ActiveCampaignCredentials,
    ConnectionStatus,
    ConnectionTestResult,
    ContactFields,
    CRMErrorKind,
    CRMResult,
    CRMType,
)

logger = structlog.get_logger(__name__)

CRM = CRMType.ACTIVECAMPAIGN.value


class ActiveCampaignClient(CRMAdapter):
    """ActiveCampaign contacts, notes, tags and custom field values.

    Args:
        credentials: API URL and key; empty values surface as missing-credentials.
        http_client: Optional shared httpx.AsyncClient.
        timeout: Per-request timeout in seconds.
        page_size: Page size for fieldValues pagination.
    """

    crm_type = CRMType.ACTIVECAMPAIGN

    def __init__(
        self,
        credentials: ActiveCampaignCredentials,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._credentials = credentials
        self._page_size = page_size or get_settings().CRM_PAGE_SIZE

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Api-Token": self._credentials.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self._credentials.base_url}/api/3/{path}"

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self._credentials.api_url.strip():
            missing.append("ActiveCampaign API URL")
        if not self._credentials.api_key.strip():
            missing.append("ActiveCampaign API Key")
        return missing

    # ── Lead submission writes ──────────────────────────────────────────

    async def create_or_update_contact(self, fields: ContactFields) -> CRMResult:
        """Upsert a contact keyed by email, returning the contact ID.

        POST /api/3/contact/sync creates the contact or updates the one that
        already has this email, including custom field values.
        """
        missing = self.missing_credentials()
        if missing:
            return CRMResult.fail(
                CRMErrorKind.MISSING_CREDENTIALS,
                f"Missing ActiveCampaign credentials: {', '.join(missing)}",
            )

        async with track_crm_call(CRM, "create_or_update_contact") as tracker:
            try:
                response = await self._send(
                    "POST",
                    self._url("contact/sync"),
                    headers=self._headers,
                    json=to_activecampaign_contact(fields),
                )
                self._check(response, "ActiveCampaign contact sync")
                contact_id = str(response.json()["contact"]["id"])
            except AuthFailedError as exc:
                tracker["status"] = "failure"
                logger.warning("activecampaign.contact_auth_failed", email=fields.email, error=str(exc))
                return CRMResult.fail(CRMErrorKind.AUTH_FAILED, str(exc))
            except (CRMError, httpx.HTTPError, KeyError, ValueError) as exc:
                tracker["status"] = "failure"
                logger.error("activecampaign.contact_sync_failed", email=fields.email, error=str(exc))
                return CRMResult.fail(CRMErrorKind.HTTP_ERROR, str(exc))

        logger.info("activecampaign.contact_synced", email=fields.email, contact_id=contact_id)
        return CRMResult.ok(contact_id)

    async def add_note(self, contact_id: str, note_text: str) -> bool:
        """Attach a note to a contact. Best effort: logs and returns False on failure."""
        body = {"note": {"note": note_text, "relid": contact_id, "reltype": "Subscriber"}}
        return await self._best_effort_post("add_note", "notes", body, contact_id=contact_id)

    async def add_tag(self, contact_id: str, tag_id: str) -> bool:
        """Tag a contact. Best effort: logs and returns False on failure."""
        body = {"contactTag": {"contact": contact_id, "tag": str(tag_id)}}
        return await self._best_effort_post(
            "add_tag", "contactTags", body, contact_id=contact_id, tag_id=tag_id
        )

    async def _best_effort_post(
        self, operation: str, path: str, body: dict[str, Any], **log_context: Any
    ) -> bool:
        if self.missing_credentials():
            logger.warning(f"activecampaign.{operation}_skipped", reason="missing-credentials", **log_context)
            return False
        async with track_crm_call(CRM, operation) as tracker:
            try:
                response = await self._send("POST", self._url(path), headers=self._headers, json=body)
                self._check(response, f"ActiveCampaign {operation}")
            except (CRMError, httpx.HTTPError) as exc:
                tracker["status"] = "failure"
                logger.warning(f"activecampaign.{operation}_failed", error=str(exc), **log_context)
                return False
        logger.debug(f"activecampaign.{operation}_ok", **log_context)
        return True

    async def create_tag(self, name: str, description: str = "") -> CRMResult:
        """Create a contact tag, returning its ID."""
        if self.missing_credentials():
            return CRMResult.fail(CRMErrorKind.MISSING_CREDENTIALS, "Missing ActiveCampaign credentials")
        body = {"tag": {"tag": name, "tagType": "contact", "description": description}}
        async with track_crm_call(CRM, "create_tag") as tracker:
            try:
                response = await self._send("POST", self._url("tags"), headers=self._headers, json=body)
                self._check(response, "ActiveCampaign tag creation")
                tag_id = str(response.json()["tag"]["id"])
            except AuthFailedError as exc:
                tracker["status"] = "failure"
                return CRMResult.fail(CRMErrorKind.AUTH_FAILED, str(exc))
            except (CRMError, httpx.HTTPError, KeyError, ValueError) as exc:
                tracker["status"] = "failure"
                logger.error("activecampaign.tag_create_failed", tag=name, error=str(exc))
                return CRMResult.fail(CRMErrorKind.HTTP_ERROR, str(exc))
        logger.info("activecampaign.tag_created", tag=name, tag_id=tag_id)
        return CRMResult.ok(tag_id)

    # ── Reconciliation reads ────────────────────────────────────────────

    async def iter_field_values(
        self, field_id: str, limit: int | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every fieldValue row for a custom field.

        Offset/limit pagination; stops when a page returns fewer rows than
        the limit.
        """
        page_size = limit or self._page_size
        offset = 0
        while True:
            async with track_crm_call(CRM, "list_field_values"):
                response = await self._send(
                    "GET",
                    self._url("fieldValues"),
                    headers=self._headers,
                    params={
                        "filters[fieldid]": str(field_id),
                        "limit": page_size,
                        "offset": offset,
                    },
                )
                self._check(response, "ActiveCampaign fieldValues")
                rows = response.json().get("fieldValues") or []
            for row in rows:
                yield row
            if len(rows) < page_size:
                break
            offset += page_size
            logger.debug("activecampaign.field_values_page", field_id=field_id, offset=offset)

    async def collect_contact_ids(self, field_id: str, limit: int | None = None) -> list[str]:
        """Contact IDs with a non-blank value in ``field_id``, first-seen order."""
        seen: dict[str, None] = {}
        async for row in self.iter_field_values(field_id, limit=limit):
            value = row.get("value")
            contact = row.get("contact")
            if contact is None or not (value and str(value).strip()):
                continue
            seen.setdefault(str(contact), None)
        return list(seen)

    async def get_contact(
        self, contact_id: str, include_field_values: bool = True
    ) -> ActiveCampaignContact:
        """Fetch one contact, optionally with its custom field values.

        Raises:
            NotFoundError: Contact does not exist.
            AuthFailedError / CRMHTTPError: Any other failure.
        """
        params = {"include": "fieldValues"} if include_field_values else None
        async with track_crm_call(CRM, "get_contact"):
            response = await self._send(
                "GET",
                self._url(f"contacts/{contact_id}"),
                headers=self._headers,
                params=params,
            )
            if response.status_code == 404:
                raise NotFoundError(f"ActiveCampaign contact {contact_id} not found")
            self._check(response, f"ActiveCampaign contact {contact_id}")
            return from_activecampaign_contact(response.json())

    # ── Connection test ─────────────────────────────────────────────────

    async def test_connection(self) -> ConnectionTestResult:
        """GET contacts?limit=1 and classify the outcome."""
        missing = self.missing_credentials()
        if missing:
            return ConnectionTestResult(
                success=False,
                status=ConnectionStatus.MISSING_CREDENTIALS,
                message=f"Missing credentials: {', '.join(missing)}",
            )
        try:
            response = await self._send(
                "GET", self._url("contacts"), headers=self._headers, params={"limit": 1}
            )
        except (CRMError, httpx.HTTPError) as exc:
            logger.warning("activecampaign.connection_test_error", error=str(exc))
            return ConnectionTestResult(
                success=False, status=ConnectionStatus.HTTP_ERROR, message=str(exc)
            )
        if response.is_success:
            return ConnectionTestResult(
                success=True, status=ConnectionStatus.SUCCESS, message="Connection successful"
            )
        if response.status_code in (401, 403):
            return ConnectionTestResult(
                success=False, status=ConnectionStatus.AUTH_FAILED, message="Authentication failed"
            )
        logger.warning("activecampaign.connection_test_http_error", status_code=response.status_code)
        return ConnectionTestResult(
            success=False,
            status=ConnectionStatus.HTTP_ERROR,
            message=f"ActiveCampaign returned HTTP {response.status_code}; check the API URL",
        )
