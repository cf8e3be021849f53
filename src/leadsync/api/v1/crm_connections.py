"""Tenant CRM connection management.

One connection per (tenant, CRM type). Secrets are write-only: responses
report whether a key or client secret is stored, never its value. Every
change is recorded in audit_logs. DELETE deactivates the row so its field
mappings survive a reconnect.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.api.deps import get_current_user, get_db, get_tenant, require_admin
from src.leadsync.core.tenant import TenantContext
from src.leadsync.crm.adapter import adapter_for_connection
from src.leadsync.crm.credentials import get_tenant_connection, list_tenant_connections
from src.leadsync.crm.errors import UnsupportedCRMTypeError
from src.leadsync.crm.schemas import ConnectionStatus, ConnectionTestResult, CRMType
from src.leadsync.models import AuditLog, TenantCRMConnection, User

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/crm-connections", tags=["crm-connections"])

REQUIRED_FIELDS: dict[CRMType, tuple[str, ...]] = {
    CRMType.ACTIVECAMPAIGN: ("api_url", "api_key"),
    CRMType.DYNAMICS365: ("client_id", "client_secret", "tenant_id_crm", "instance_url"),
}

# Changing any of these invalidates a previous successful connection test
CREDENTIAL_FIELDS = ("api_url", "api_key", "client_id", "client_secret", "tenant_id_crm", "instance_url")


# ── Schemas ──────────────────────────────────────────────────────────────────


class ConnectionResponse(BaseModel):
    """A stored connection without its secrets."""

    id: int
    crm_type: str
    api_url: str | None = None
    has_api_key: bool = False
    client_id: str | None = None
    has_client_secret: bool = False
    tenant_id_crm: str | None = None
    instance_url: str | None = None
    field_mappings: dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    is_connected: bool
    sync_enabled: bool
    sync_status: str | None = None
    last_sync_at: datetime | None = None


class CreateConnectionRequest(BaseModel):
    crm_type: CRMType
    api_url: str | None = None
    api_key: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    tenant_id_crm: str | None = None
    instance_url: str | None = None
    field_mappings: dict[str, Any] = Field(default_factory=dict)
    sync_enabled: bool = True


class UpdateConnectionRequest(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    api_url: str | None = None
    api_key: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    tenant_id_crm: str | None = None
    instance_url: str | None = None
    field_mappings: dict[str, Any] | None = None
    sync_enabled: bool | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _to_response(conn: TenantCRMConnection) -> ConnectionResponse:
    return ConnectionResponse(
        id=conn.id,
        crm_type=conn.crm_type,
        api_url=conn.api_url,
        has_api_key=bool(conn.api_key),
        client_id=conn.client_id,
        has_client_secret=bool(conn.client_secret),
        tenant_id_crm=conn.tenant_id_crm,
        instance_url=conn.instance_url,
        field_mappings=conn.field_mappings or {},
        is_active=conn.is_active,
        is_connected=conn.is_connected,
        sync_enabled=conn.sync_enabled,
        sync_status=conn.sync_status,
        last_sync_at=conn.last_sync_at,
    )


def _parse_crm_type(crm_type: str) -> CRMType:
    try:
        return CRMType(crm_type)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported CRM type: {crm_type}",
        )


def _audit(
    db: AsyncSession,
    tenant_id: int,
    user: User,
    action: str,
    conn: TenantCRMConnection,
    changed: list[str],
) -> None:
    db.add(
        AuditLog(
            tenant_id=tenant_id,
            user_id=user.id,
            action=action,
            entity_type="crm_connection",
            entity_id=conn.id,
            changes={"crm_type": conn.crm_type, "fields": sorted(changed)},
        )
    )


async def _get_or_404(db: AsyncSession, tenant_id: int, crm_type: CRMType) -> TenantCRMConnection:
    conn = await get_tenant_connection(db, tenant_id, crm_type.value)
    if conn is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active {crm_type.value} connection",
        )
    return conn


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[ConnectionResponse])
async def list_connections(
    tenant: TenantContext = Depends(get_tenant),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the tenant's active CRM connections."""
    connections = await list_tenant_connections(db, tenant.tenant_id)
    return [_to_response(c) for c in connections]


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
    body: CreateConnectionRequest,
    tenant: TenantContext = Depends(get_tenant),
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a connection; 409 when an active one of this type exists."""
    missing = [f for f in REQUIRED_FIELDS[body.crm_type] if not (getattr(body, f) or "").strip()]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Missing required fields", "missing": missing},
        )

    values = body.model_dump(exclude={"crm_type"})
    existing = await get_tenant_connection(db, tenant.tenant_id, body.crm_type.value, include_inactive=True)
    if existing is not None and existing.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {body.crm_type.value} connection already exists",
        )

    if existing is not None:
        # Reactivate the soft-deleted row in place; (tenant, crm_type) is unique
        conn = existing
        for field, value in values.items():
            setattr(conn, field, value)
        conn.is_active = True
        conn.is_connected = False
        action = "crm_connection.reactivated"
    else:
        conn = TenantCRMConnection(tenant_id=tenant.tenant_id, crm_type=body.crm_type.value, **values)
        db.add(conn)
        action = "crm_connection.created"

    await db.flush()
    _audit(db, tenant.tenant_id, user, action, conn, [k for k, v in values.items() if v])
    await db.commit()
    await db.refresh(conn)
    logger.info(action, tenant_id=tenant.tenant_id, crm_type=conn.crm_type, user_id=user.id)
    return _to_response(conn)


@router.put("/{crm_type}", response_model=ConnectionResponse)
async def update_connection(
    crm_type: str,
    body: UpdateConnectionRequest,
    tenant: TenantContext = Depends(get_tenant),
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update stored credentials or field mappings."""
    conn = await _get_or_404(db, tenant.tenant_id, _parse_crm_type(crm_type))

    changes = body.model_dump(exclude_none=True)
    for field, value in changes.items():
        setattr(conn, field, value)
    if any(field in CREDENTIAL_FIELDS for field in changes):
        conn.is_connected = False

    _audit(db, tenant.tenant_id, user, "crm_connection.updated", conn, list(changes))
    await db.commit()
    await db.refresh(conn)
    logger.info(
        "crm_connection.updated",
        tenant_id=tenant.tenant_id,
        crm_type=conn.crm_type,
        fields=sorted(changes),
    )
    return _to_response(conn)


@router.delete("/{crm_type}")
async def delete_connection(
    crm_type: str,
    tenant: TenantContext = Depends(get_tenant),
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate a connection (soft delete)."""
    conn = await _get_or_404(db, tenant.tenant_id, _parse_crm_type(crm_type))
    conn.is_active = False
    conn.is_connected = False
    _audit(db, tenant.tenant_id, user, "crm_connection.deleted", conn, [])
    await db.commit()
    logger.info("crm_connection.deleted", tenant_id=tenant.tenant_id, crm_type=conn.crm_type)
    return {"success": True, "message": f"{conn.crm_type} connection removed"}


@router.post("/{crm_type}/test", response_model=ConnectionTestResult)
async def test_connection(
    crm_type: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Probe the stored credentials and record whether they work."""
    conn = await get_tenant_connection(db, tenant.tenant_id, crm_type)
    if conn is None:
        try:
            CRMType(crm_type)
        except ValueError:
            return ConnectionTestResult(
                success=False,
                status=ConnectionStatus.UNSUPPORTED_TYPE,
                message=f"Unsupported CRM type: {crm_type}",
            )
        return ConnectionTestResult(
            success=False,
            status=ConnectionStatus.NOT_FOUND,
            message=f"No active {crm_type} connection",
        )

    try:
        adapter = adapter_for_connection(
            crm_type,
            conn,
            http_client=getattr(request.app.state, "crm_http_client", None),
        )
    except UnsupportedCRMTypeError as exc:
        return ConnectionTestResult(
            success=False, status=ConnectionStatus.UNSUPPORTED_TYPE, message=str(exc)
        )

    result = await adapter.test_connection()
    conn.is_connected = result.success
    await db.commit()
    logger.info(
        "crm_connection.tested",
        tenant_id=tenant.tenant_id,
        crm_type=crm_type,
        status=result.status.value,
    )
    return result
