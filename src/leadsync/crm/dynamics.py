"""Async client for the Dynamics 365 Web API (v9.2).

Authentication uses the OAuth2 client-credentials flow against Azure AD.
Tokens are held in a TokenCache keyed by (tenant, client id, instance URL)
until shortly before expiry. The cache belongs to whoever constructs the
client (a batch job run, or one request), never to the process.

create_lead() never raises; update_lead_fields() and set_lead_owner() raise
CRMError subclasses so reconciliation jobs can count failures.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from src.leadsync.core.monitoring import track_crm_call
from src.leadsync.crm.adapter import CRMAdapter
from src.leadsync.crm.errors import AuthFailedError, CRMError, MissingCredentialsError
from src.leadsync.crm.field_mapping import to_dynamics_lead
from src.leadsync.crm.schemas import (
    ConnectionStatus,
    ConnectionTestResult,
    CRMErrorKind,
    CRMResult,
    CRMType,
    DynamicsCredentials,
    DynamicsUser,
    LeadFields,
)

logger = structlog.get_logger(__name__)

CRM = CRMType.DYNAMICS365.value

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
API_PATH = "api/data/v9.2"

LEAD_LOOKUP_SELECT = ("leadid", "fullname", "_ownerid_value")

_ENTITY_ID_RE = re.compile(r"\(([^)]+)\)")


# ── Token cache ─────────────────────────────────────────────────────────────


@dataclass
class _CachedToken:
    access_token: str
    expires_at: float


class TokenCache:
    """Access tokens keyed by credential set, dropped ``skew_seconds`` before expiry.

    Args:
        skew_seconds: Safety margin subtracted from the token lifetime.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(self, skew_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._skew = skew_seconds
        self._clock = clock
        self._tokens: dict[tuple[str, str, str], _CachedToken] = {}

    @staticmethod
    def key_for(credentials: DynamicsCredentials) -> tuple[str, str, str]:
        return (credentials.tenant_id, credentials.client_id, credentials.base_url)

    def get(self, key: tuple[str, str, str]) -> str | None:
        cached = self._tokens.get(key)
        if cached is None:
            return None
        if self._clock() >= cached.expires_at:
            del self._tokens[key]
            return None
        return cached.access_token

    def set(self, key: tuple[str, str, str], access_token: str, expires_in: float) -> None:
        self._tokens[key] = _CachedToken(
            access_token=access_token,
            expires_at=self._clock() + max(float(expires_in) - self._skew, 0.0),
        )

    def invalidate(self, key: tuple[str, str, str]) -> None:
        self._tokens.pop(key, None)

    def __len__(self) -> int:
        return len(self._tokens)


# ── Client ──────────────────────────────────────────────────────────────────


class DynamicsClient(CRMAdapter):
    """Dynamics 365 leads and system users.

    Args:
        credentials: Azure AD app registration and instance URL.
        http_client: Optional shared httpx.AsyncClient.
        token_cache: Optional TokenCache; a private one is created otherwise.
        timeout: Per-request timeout in seconds.
    """

    crm_type = CRMType.DYNAMICS365

    def __init__(
        self,
        credentials: DynamicsCredentials,
        http_client: httpx.AsyncClient | None = None,
        token_cache: TokenCache | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._credentials = credentials
        self._tokens = token_cache if token_cache is not None else TokenCache()
        self._cache_key = TokenCache.key_for(credentials)

    def _url(self, path: str) -> str:
        return f"{self._credentials.base_url}/{API_PATH}/{path}"

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }

    def missing_credentials(self) -> list[str]:
        pairs = [
            ("Dynamics 365 Tenant ID", self._credentials.tenant_id),
            ("Dynamics 365 Client ID", self._credentials.client_id),
            ("Dynamics 365 Client Secret", self._credentials.client_secret),
            ("Dynamics 365 Instance URL", self._credentials.instance_url),
        ]
        return [label for label, value in pairs if not value.strip()]

    def _check(self, response: httpx.Response, operation: str) -> httpx.Response:
        if response.status_code == 401:
            self._tokens.invalidate(self._cache_key)
        return super()._check(response, operation)

    # ── Authentication ──────────────────────────────────────────────────

    async def get_access_token(self) -> str:
        """Return a cached token or fetch a new one.

        Raises:
            MissingCredentialsError: Any credential field is empty.
            AuthFailedError: Azure AD rejected the client credentials.
        """
        missing = self.missing_credentials()
        if missing:
            raise MissingCredentialsError(missing, context="Dynamics 365")

        cached = self._tokens.get(self._cache_key)
        if cached:
            return cached

        creds = self._credentials
        async with track_crm_call(CRM, "get_access_token"):
            response = await self._send(
                "POST",
                TOKEN_URL.format(tenant=creds.tenant_id),
                data={
                    "grant_type": "client_credentials",
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                    "scope": f"{creds.base_url}/.default",
                },
            )
            if not response.is_success:
                logger.error(
                    "dynamics.token_request_failed",
                    status_code=response.status_code,
                    body=response.text,
                )
                raise AuthFailedError(
                    f"Token request failed with HTTP {response.status_code}: {response.text}"
                )
            payload = response.json()

        token = payload.get("access_token")
        if not token:
            raise AuthFailedError("Token response did not include an access_token")
        self._tokens.set(self._cache_key, token, payload.get("expires_in", 3600))
        logger.debug("dynamics.token_acquired", instance=creds.base_url)
        return token

    # ── Leads ───────────────────────────────────────────────────────────

    async def create_lead(
        self,
        fields: LeadFields,
        owner_dynamics_user_id: str | None = None,
    ) -> CRMResult:
        """Create a lead; the new GUID is read from the OData-EntityId header.

        Never raises: failures are logged and returned as a CRMResult.
        """
        async with track_crm_call(CRM, "create_lead") as tracker:
            try:
                token = await self.get_access_token()
                response = await self._send(
                    "POST",
                    self._url("leads"),
                    headers=self._headers(token),
                    json=to_dynamics_lead(fields, owner_dynamics_user_id),
                )
                self._check(response, "Dynamics lead creation")
            except MissingCredentialsError as exc:
                tracker["status"] = "failure"
                logger.warning("dynamics.lead_skipped", email=fields.email, error=str(exc))
                return CRMResult.fail(CRMErrorKind.MISSING_CREDENTIALS, str(exc))
            except AuthFailedError as exc:
                tracker["status"] = "failure"
                logger.error("dynamics.lead_auth_failed", email=fields.email, error=str(exc))
                return CRMResult.fail(CRMErrorKind.AUTH_FAILED, str(exc))
            except (CRMError, httpx.HTTPError, ValueError) as exc:
                tracker["status"] = "failure"
                logger.error("dynamics.lead_create_failed", email=fields.email, error=str(exc))
                return CRMResult.fail(CRMErrorKind.HTTP_ERROR, str(exc))

        entity_id = response.headers.get("OData-EntityId", "")
        match = _ENTITY_ID_RE.search(entity_id)
        lead_id = match.group(1) if match else None
        logger.info(
            "dynamics.lead_created",
            email=fields.email,
            lead_id=lead_id,
            owner=owner_dynamics_user_id,
        )
        return CRMResult.ok(lead_id)

    async def find_lead_by_email(
        self,
        email: str,
        select: Iterable[str] = LEAD_LOOKUP_SELECT,
    ) -> dict[str, Any] | None:
        """First lead whose emailaddress1 equals ``email``, or None."""
        token = await self.get_access_token()
        escaped = email.replace("'", "''")
        async with track_crm_call(CRM, "find_lead"):
            response = await self._send(
                "GET",
                self._url("leads"),
                headers=self._headers(token),
                params={
                    "$filter": f"emailaddress1 eq '{escaped}'",
                    "$select": ",".join(select),
                },
            )
            self._check(response, f"Dynamics lead lookup for {email}")
            leads = response.json().get("value") or []
        return leads[0] if leads else None

    async def update_lead_fields(
        self,
        lead_id: str,
        desired: dict[str, Any],
        current: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """PATCH only attributes whose remote value differs from ``desired``.

        Args:
            lead_id: Dynamics lead GUID.
            desired: Attribute -> wanted value.
            current: Attribute -> remote value as last read; None sends everything.

        Returns:
            The applied diff. Empty means no request was made.
        """
        if current is None:
            diff = dict(desired)
        else:
            diff = {k: v for k, v in desired.items() if current.get(k) != v}
        if not diff:
            return {}

        token = await self.get_access_token()
        async with track_crm_call(CRM, "update_lead"):
            response = await self._send(
                "PATCH",
                self._url(f"leads({lead_id})"),
                headers=self._headers(token),
                json=diff,
            )
            self._check(response, f"Dynamics lead update {lead_id}")
        logger.info("dynamics.lead_updated", lead_id=lead_id, fields=sorted(diff))
        return diff

    async def set_lead_owner(self, lead_id: str, dynamics_user_id: str) -> None:
        """Bind the lead's owner to a system user."""
        token = await self.get_access_token()
        async with track_crm_call(CRM, "set_lead_owner"):
            response = await self._send(
                "PATCH",
                self._url(f"leads({lead_id})"),
                headers=self._headers(token),
                json={"ownerid@odata.bind": f"/systemusers({dynamics_user_id})"},
            )
            self._check(response, f"Dynamics owner update {lead_id}")
        logger.info("dynamics.lead_owner_set", lead_id=lead_id, owner=dynamics_user_id)

    # ── Users ───────────────────────────────────────────────────────────

    async def list_system_users(self) -> list[DynamicsUser]:
        """Enabled system users, for mapping reps to Dynamics owners."""
        token = await self.get_access_token()
        async with track_crm_call(CRM, "list_system_users"):
            response = await self._send(
                "GET",
                self._url("systemusers"),
                headers=self._headers(token),
                params={
                    "$select": "systemuserid,fullname,internalemailaddress",
                    "$filter": "isdisabled eq false",
                },
            )
            self._check(response, "Dynamics system user listing")
            rows = response.json().get("value") or []
        return [
            DynamicsUser(
                id=row["systemuserid"],
                name=row.get("fullname"),
                email=row.get("internalemailaddress"),
            )
            for row in rows
        ]

    # ── Connection test ─────────────────────────────────────────────────

    async def test_connection(self) -> ConnectionTestResult:
        """Success iff an access token can be obtained."""
        try:
            await self.get_access_token()
        except MissingCredentialsError as exc:
            return ConnectionTestResult(
                success=False,
                status=ConnectionStatus.MISSING_CREDENTIALS,
                message=f"Missing credentials: {', '.join(exc.missing_fields)}",
            )
        except AuthFailedError as exc:
            logger.warning("dynamics.connection_test_failed", error=str(exc))
            return ConnectionTestResult(
                success=False, status=ConnectionStatus.AUTH_FAILED, message="Authentication failed"
            )
        except (CRMError, httpx.HTTPError) as exc:
            logger.warning("dynamics.connection_test_error", error=str(exc))
            return ConnectionTestResult(
                success=False, status=ConnectionStatus.HTTP_ERROR, message=str(exc)
            )
        return ConnectionTestResult(
            success=True, status=ConnectionStatus.SUCCESS, message="Connection successful"
        )
