"""Public lead capture endpoints.

POST /api/v1/tradeshows/{slug}/leads accepts the multipart form posted by
the booth tablet; GET /api/v1/badge-photos/{id} serves stored badge photos
to whoever follows the link in the CRM note.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from src.leadsync.api.deps import get_tenant
from src.leadsync.core.tenant import TenantContext
from src.leadsync.leads.schemas import BadgePhotoUpload, LeadSubmission
from src.leadsync.leads.service import SubmissionValidationError, TradeshowNotFoundError

router = APIRouter(prefix="/api/v1", tags=["leads"])

BADGE_PHOTO_CACHE_CONTROL = "public, max-age=31536000, immutable"


# ── Response Schemas ─────────────────────────────────────────────────────────


class LeadSubmissionResponse(BaseModel):
    success: bool
    message: str
    lead_id: int
    contact_id: str | None = None


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_lead_service(request: Request) -> Any:
    """Retrieve LeadSubmissionService from app.state, 503 if not available."""
    service = getattr(request.app.state, "lead_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Lead capture not initialized",
        )
    return service


def _get_lead_repository(request: Request) -> Any:
    """Retrieve LeadRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "lead_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Lead capture not initialized",
        )
    return repo


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post(
    "/tradeshows/{slug}/leads",
    response_model=LeadSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_lead(
    slug: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    email: str | None = Form(None),
    name: str | None = Form(None),
    country: str | None = Form(None),
    company: str | None = Form(None),
    role: str | None = Form(None),
    comments: str | None = Form(None),
    rep_code: str | None = Form(None),
    current_respirator: str | None = Form(None),
    work_environment: str | None = Form(None),
    number_of_staff: str | None = Form(None),
    badge_photo: UploadFile | None = File(None),
):
    """Capture a lead, then sync it to ActiveCampaign and Dynamics 365."""
    service = _get_lead_service(request)

    submission = LeadSubmission(
        email=email,
        name=name,
        country=country,
        company=company,
        role=role,
        comments=comments,
        rep_code=rep_code,
        current_respirator=current_respirator,
        work_environment=work_environment,
        number_of_staff=number_of_staff,
    )

    upload: BadgePhotoUpload | None = None
    if badge_photo is not None and badge_photo.filename:
        upload = BadgePhotoUpload(
            filename=badge_photo.filename,
            mime_type=badge_photo.content_type or "application/octet-stream",
            data=await badge_photo.read(),
        )

    try:
        result = await service.submit(tenant.tenant_id, slug, submission, badge_photo=upload)
    except SubmissionValidationError as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required fields", "missing": exc.missing},
        )
    except TradeshowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    return LeadSubmissionResponse(
        success=result.success,
        message=result.message,
        lead_id=result.lead_id,
        contact_id=result.contact_id,
    )


@router.get("/badge-photos/{photo_id}")
async def get_badge_photo(photo_id: int, request: Request) -> Response:
    """Serve a stored badge photo with its original MIME type."""
    repo = _get_lead_repository(request)
    photo = await repo.get_badge_photo(photo_id)
    if photo is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Badge photo not found")

    # Header values must be latin-1; drop anything else from the stored name
    filename = photo.filename.encode("ascii", "ignore").decode().replace('"', "") or f"badge-{photo_id}"
    return Response(
        content=photo.image_data,
        media_type=photo.mime_type,
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "Cache-Control": BADGE_PHOTO_CACHE_CONTROL,
        },
    )
