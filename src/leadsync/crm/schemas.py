"""Pydantic schemas for the CRM integration layer.

Defines:
- Enums: CRMType, CRMErrorKind, ConnectionStatus
- Credentials: ActiveCampaignCredentials, DynamicsCredentials, FieldIds, CredentialBundle
- Payloads: ContactFields, LeadFields, ActiveCampaignContact, DynamicsUser
- Results: CRMResult, ConnectionTestResult, SyncCounters
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class CRMType(str, Enum):
    """External CRMs a tenant can connect."""

    ACTIVECAMPAIGN = "activecampaign"
    DYNAMICS365 = "dynamics365"


class CRMErrorKind(str, Enum):
    """Failure classification shared by results and exceptions."""

    MISSING_CREDENTIALS = "missing-credentials"
    AUTH_FAILED = "auth-failed"
    HTTP_ERROR = "http-error"
    NOT_FOUND = "not-found"
    NO_REP_MATCH = "no-rep-match"
    UNSUPPORTED_TYPE = "unsupported-type"


class ConnectionStatus(str, Enum):
    """Outcome of a connection test."""

    SUCCESS = "success"
    MISSING_CREDENTIALS = "missing-credentials"
    AUTH_FAILED = "auth-failed"
    HTTP_ERROR = "http-error"
    UNSUPPORTED_TYPE = "unsupported-type"
    NOT_FOUND = "not-found"


# ── Credentials ─────────────────────────────────────────────────────────────


class ActiveCampaignCredentials(BaseModel):
    """API URL and key for one ActiveCampaign account."""

    model_config = ConfigDict(frozen=True)

    api_url: str
    api_key: str

    @property
    def base_url(self) -> str:
        return self.api_url.rstrip("/")


class DynamicsCredentials(BaseModel):
    """Azure AD app registration used for the client-credentials flow."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    client_id: str
    client_secret: str
    instance_url: str

    @property
    def base_url(self) -> str:
        return self.instance_url.rstrip("/")


class FieldIds(BaseModel):
    """Numeric ActiveCampaign custom field IDs (as strings, the API's format)."""

    rep: str = "16"
    country: str = "1"
    company: str = "8"
    comments: str = "9"
    current_respirator: str = "11"
    work_environment: str = "12"
    number_of_staff: str = "13"


class CredentialBundle(BaseModel):
    """Everything a sync run needs for both CRMs, resolved in one place."""

    source: str
    tenant_id: int | None = None
    tenant_name: str | None = None
    tradeshow_id: int | None = None
    tradeshow_name: str | None = None
    default_country: str | None = None
    activecampaign: ActiveCampaignCredentials
    dynamics: DynamicsCredentials
    field_ids: FieldIds = Field(default_factory=FieldIds)
    tag_id: str | None = None
    rep_aliases: dict[str, str] = Field(default_factory=dict)
    lead_source_code: int = 7
    lead_topic_format: str = "{tradeshow_name}"

    @property
    def owner_name(self) -> str:
        """Name of the tenant or trade show the credentials belong to."""
        return self.tradeshow_name or self.tenant_name or "environment"

    def lead_topic(self, full_name: str = "") -> str:
        """Render the Dynamics lead subject for a contact."""
        from src.leadsync.crm.field_mapping import render_lead_topic

        return render_lead_topic(
            self.lead_topic_format,
            full_name=full_name,
            tenant_name=self.tenant_name or "",
            tradeshow_name=self.tradeshow_name or "",
        )


# ── Payloads ────────────────────────────────────────────────────────────────


class ContactFields(BaseModel):
    """Contact data pushed to ActiveCampaign. field_values is keyed by field ID."""

    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    field_values: dict[str, str] = Field(default_factory=dict)


class LeadFields(BaseModel):
    """Subset of Dynamics lead attributes this service writes."""

    email: str
    first_name: str | None = None
    last_name: str | None = None
    subject: str | None = None
    company: str | None = None
    country: str | None = None
    description: str | None = None
    job_title: str | None = None
    phone: str | None = None
    lead_source_code: int | None = None


class ActiveCampaignContact(BaseModel):
    """Contact as read back from ActiveCampaign."""

    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    field_values: dict[str, str] = Field(default_factory=dict)

    def value(self, field_id: str) -> str:
        """Trimmed custom field value, empty string when unset."""
        return (self.field_values.get(str(field_id)) or "").strip()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DynamicsUser(BaseModel):
    """Enabled Dynamics system user, offered for rep mapping."""

    id: str
    name: str | None = None
    email: str | None = None


# ── Results ─────────────────────────────────────────────────────────────────


class CRMResult(BaseModel):
    """Outcome of a CRM write that must never raise to its caller."""

    success: bool
    remote_id: str | None = None
    error_kind: CRMErrorKind | None = None
    error: str | None = None

    @classmethod
    def ok(cls, remote_id: str | None) -> CRMResult:
        return cls(success=True, remote_id=remote_id)

    @classmethod
    def fail(cls, kind: CRMErrorKind, message: str) -> CRMResult:
        return cls(success=False, error_kind=kind, error=message)


class ConnectionTestResult(BaseModel):
    """Result of probing a CRM connection."""

    success: bool
    status: ConnectionStatus
    message: str


class SyncCounters(BaseModel):
    """Per-run tallies of a reconciliation job."""

    updated: int = 0
    already_correct: int = 0
    skipped: int = 0
    errors: int = 0
    unmatched: list[str] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.updated + self.already_correct + self.skipped + self.errors

    def summary(self) -> dict[str, Any]:
        return {
            "updated": self.updated,
            "already_correct": self.already_correct,
            "skipped": self.skipped,
            "errors": self.errors,
            "unmatched": len(self.unmatched),
        }
