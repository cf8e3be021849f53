"""Dynamics 365 lookups used when mapping reps to CRM owners."""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.api.deps import get_db, get_tenant, require_admin
from src.leadsync.core.tenant import TenantContext
from src.leadsync.crm.credentials import load_dynamics_credentials
from src.leadsync.crm.dynamics import DynamicsClient
from src.leadsync.crm.errors import CRMError, MissingCredentialsError, NotFoundError
from src.leadsync.crm.schemas import DynamicsUser
from src.leadsync.models import User

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/dynamics", tags=["dynamics"])


@router.get("/users", response_model=list[DynamicsUser])
async def list_dynamics_users(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Enabled Dynamics system users for the tenant's connection."""
    try:
        credentials, _ = await load_dynamics_credentials(db, tenant.tenant_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except MissingCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    client = DynamicsClient(
        credentials,
        http_client=getattr(request.app.state, "crm_http_client", None),
        token_cache=getattr(request.app.state, "token_cache", None),
    )
    try:
        return await client.list_system_users()
    except (CRMError, httpx.HTTPError) as exc:
        logger.error("dynamics.list_users_failed", tenant_id=tenant.tenant_id, error=str(exc))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
