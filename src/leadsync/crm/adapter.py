"""CRM adapter abstract base class -- shared HTTP plumbing for every CRM client.

Each concrete adapter (ActiveCampaign, Dynamics 365) implements this ABC. The
base class owns:
- The httpx client lifecycle: an injected AsyncClient is reused (and owned by
  the caller), otherwise a short-lived client is opened per request.
- Retry of transient failures via tenacity (3 attempts, exponential backoff
  1-10s) on connect/timeout errors and 429/502/503/504 responses.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.leadsync.config import get_settings
from src.leadsync.crm.errors import (
    TRANSIENT_STATUS_CODES,
    AuthFailedError,
    CRMHTTPError,
    TransientHTTPError,
    UnsupportedCRMTypeError,
)
from src.leadsync.crm.schemas import ConnectionTestResult, CRMType

logger = structlog.get_logger(__name__)

_crm_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TransientHTTPError, httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class CRMAdapter(ABC):
    """Abstract interface for an external CRM client.

    Args:
        http_client: Optional shared httpx.AsyncClient. When given, the caller
            owns its lifecycle; batch jobs pass one scoped to the run.
        timeout: Per-request timeout in seconds. Defaults to CRM_HTTP_TIMEOUT.
    """

    crm_type: CRMType

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._http = http_client
        self._timeout = timeout if timeout is not None else get_settings().CRM_HTTP_TIMEOUT

    @abstractmethod
    def missing_credentials(self) -> list[str]:
        """Display names of required credential fields that are empty."""
        ...

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Probe the remote API and classify the outcome."""
        ...

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    @_crm_retry
    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one request; transient statuses raise so tenacity retries them."""
        async with self._client() as client:
            response = await client.request(method, url, **kwargs)
        if response.status_code in TRANSIENT_STATUS_CODES:
            logger.warning(
                "crm.transient_response",
                crm=self.crm_type.value,
                method=method,
                status_code=response.status_code,
            )
            raise TransientHTTPError(response.status_code, response.text, operation=method)
        return response

    def _check(self, response: httpx.Response, operation: str) -> httpx.Response:
        """Raise typed errors for auth rejections and other non-2xx responses."""
        if response.status_code in (401, 403):
            raise AuthFailedError(
                f"{operation} rejected with HTTP {response.status_code}: {response.text}"
            )
        if not response.is_success:
            raise CRMHTTPError(response.status_code, response.text, operation=operation)
        return response


def adapter_for_connection(
    crm_type: str,
    connection: Any,
    http_client: httpx.AsyncClient | None = None,
) -> CRMAdapter:
    """Build the adapter for a stored TenantCRMConnection row.

    Raises:
        UnsupportedCRMTypeError: crm_type is not a known integration.
    """
    from src.leadsync.crm.activecampaign import ActiveCampaignClient
    from src.leadsync.crm.dynamics import DynamicsClient
    from src.leadsync.crm.schemas import ActiveCampaignCredentials, DynamicsCredentials

    if crm_type == CRMType.ACTIVECAMPAIGN.value:
        return ActiveCampaignClient(
            ActiveCampaignCredentials(
                api_url=connection.api_url or "",
                api_key=connection.api_key or "",
            ),
            http_client=http_client,
        )
    if crm_type == CRMType.DYNAMICS365.value:
        return DynamicsClient(
            DynamicsCredentials(
                tenant_id=connection.tenant_id_crm or "",
                client_id=connection.client_id or "",
                client_secret=connection.client_secret or "",
                instance_url=connection.instance_url or "",
            ),
            http_client=http_client,
        )
    raise UnsupportedCRMTypeError(crm_type)
