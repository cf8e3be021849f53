"""Persisted CRM credentials.

TenantCRMConnection is the current model: one row per (tenant, CRM type).
TradeshowCredentials is the legacy per-tradeshow shape still read by the
reconciliation scripts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.leadsync.core.database import Base


class TenantCRMConnection(Base):
    """Credential set binding a tenant to one external CRM."""

    __tablename__ = "tenant_crm_connections"
    __table_args__ = (
        UniqueConstraint("tenant_id", "crm_type", name="uq_crm_connections_tenant_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    crm_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # ActiveCampaign
    api_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    api_key: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Dynamics 365
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_secret: Mapped[str | None] = mapped_column(String(500), nullable=True)
    tenant_id_crm: Mapped[str | None] = mapped_column(String(255), nullable=True)
    instance_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    field_mappings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    is_connected: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    sync_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class TradeshowCredentials(Base):
    """Legacy credentials scoped to a single trade show."""

    __tablename__ = "tradeshow_credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tradeshow_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tradeshows.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    ac_api_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ac_api_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ac_rep_field_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ac_country_field_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ac_company_field_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ac_comments_field_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    d365_tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    d365_client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    d365_client_secret: Mapped[str | None] = mapped_column(String(500), nullable=True)
    d365_instance_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lead_topic_format: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
