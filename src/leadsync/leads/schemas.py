"""Pydantic schemas for trade-show lead capture.

Defines the public form submission, the uploaded badge photo, read models
returned by LeadRepository, and the SubmissionResult reported to the caller.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

REQUIRED_SUBMISSION_FIELDS = ("email", "name", "country")


class LeadSubmission(BaseModel):
    """Fields posted by the public lead-capture form."""

    email: str | None = None
    name: str | None = None
    country: str | None = None
    company: str | None = None
    role: str | None = None
    comments: str | None = None
    rep_code: str | None = None
    current_respirator: str | None = None
    work_environment: str | None = None
    number_of_staff: str | None = None

    def missing_fields(self) -> dict[str, bool]:
        """Map of required field -> True when absent or blank."""
        return {
            field: not (getattr(self, field) or "").strip()
            for field in REQUIRED_SUBMISSION_FIELDS
        }

    @property
    def is_complete(self) -> bool:
        return not any(self.missing_fields().values())


class BadgePhotoUpload(BaseModel):
    """An uploaded badge photo held in memory until it is persisted."""

    filename: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class TenantRead(BaseModel):
    id: int
    subdomain: str
    name: str
    default_country: str | None = None


class TradeshowRead(BaseModel):
    id: int
    tenant_id: int
    name: str
    slug: str
    default_country: str | None = None
    ac_tag_id: str | None = None


class RepRead(BaseModel):
    id: int
    name: str
    rep_code: str | None = None
    dynamics_user_id: str | None = None


class LeadCaptureRead(BaseModel):
    id: int
    tenant_id: int
    tradeshow_id: int
    rep_id: int | None = None
    email: str
    name: str
    badge_photo_id: int | None = None
    ac_contact_id: str | None = None
    dynamics_lead_id: str | None = None
    created_at: datetime | None = None


class BadgePhotoRead(BaseModel):
    id: int
    filename: str
    mime_type: str
    file_size: int
    image_data: bytes


class SubmissionResult(BaseModel):
    """Returned once the local write succeeded, whatever the CRMs did."""

    success: bool = True
    message: str = "Form submitted successfully"
    lead_id: int
    contact_id: str | None = None
    dynamics_lead_id: str | None = None
    badge_photo_id: int | None = None
    crm_errors: list[str] = Field(default_factory=list)
