"""Lead capture repository -- async persistence for submissions and badge photos.

LeadRepository follows the session_factory callable pattern: each method
opens its own session and closes it before returning, so the submission service never holds a transaction
open across CRM calls.

All lookups are scoped by tenant_id.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.core.database import open_session
from src.leadsync.crm.credentials import (
    load_activecampaign_credentials,
    load_dynamics_credentials,
)
from src.leadsync.crm.schemas import ActiveCampaignCredentials, DynamicsCredentials
from src.leadsync.leads.schemas import (
    BadgePhotoRead,
    BadgePhotoUpload,
    LeadCaptureRead,
    LeadSubmission,
    RepRead,
    TenantRead,
    TradeshowRead,
)
from src.leadsync.models import BadgePhoto, LeadCapture, Tenant, Tradeshow, User

logger = structlog.get_logger(__name__)

FORM_SOURCE = "tradeshow-lead"


def _model_to_capture(model: LeadCapture) -> LeadCaptureRead:
    return LeadCaptureRead(
        id=model.id,
        tenant_id=model.tenant_id,
        tradeshow_id=model.tradeshow_id,
        rep_id=model.rep_id,
        email=model.email,
        name=model.name,
        badge_photo_id=model.badge_photo_id,
        ac_contact_id=model.ac_contact_id,
        dynamics_lead_id=model.dynamics_lead_id,
        created_at=model.created_at,
    )


class LeadRepository:
    """Persistence for lead captures, badge photos and their lookups.

    Args:
        session_factory: Async generator yielding an AsyncSession.
    """

    def __init__(self, session_factory: Callable[[], AsyncGenerator[AsyncSession, None]]) -> None:
        self._session_factory = session_factory

    async def get_tenant(self, tenant_id: int) -> TenantRead | None:
        async with open_session(self._session_factory) as session:
            tenant = await session.get(Tenant, tenant_id)
            if tenant is None or not tenant.is_active:
                return None
            return TenantRead(
                id=tenant.id,
                subdomain=tenant.subdomain,
                name=tenant.name,
                default_country=tenant.default_country,
            )

    async def get_tradeshow_by_slug(self, tenant_id: int, slug: str) -> TradeshowRead | None:
        """Active tradeshow with this slug owned by the tenant."""
        async with open_session(self._session_factory) as session:
            result = await session.execute(
                select(Tradeshow).where(
                    Tradeshow.tenant_id == tenant_id,
                    Tradeshow.slug == slug,
                    Tradeshow.is_active.is_(True),
                )
            )
            tradeshow = result.scalar_one_or_none()
            if tradeshow is None:
                return None
            return TradeshowRead(
                id=tradeshow.id,
                tenant_id=tradeshow.tenant_id,
                name=tradeshow.name,
                slug=tradeshow.slug,
                default_country=tradeshow.default_country,
                ac_tag_id=tradeshow.ac_tag_id,
            )

    async def get_rep_by_code(self, tenant_id: int, rep_code: str) -> RepRead | None:
        """Active user with this rep code in the tenant."""
        async with open_session(self._session_factory) as session:
            result = await session.execute(
                select(User).where(
                    User.tenant_id == tenant_id,
                    User.rep_code == rep_code,
                    User.is_active.is_(True),
                )
            )
            user = result.scalar_one_or_none()
            if user is None:
                return None
            return RepRead(
                id=user.id,
                name=user.name,
                rep_code=user.rep_code,
                dynamics_user_id=user.dynamics_user_id,
            )

    async def save_capture(
        self,
        tenant_id: int,
        tradeshow_id: int,
        submission: LeadSubmission,
        rep_id: int | None = None,
        badge_photo: BadgePhotoUpload | None = None,
    ) -> LeadCaptureRead:
        """Persist the badge photo (if any) and the capture row in one commit."""
        async with open_session(self._session_factory) as session:
            photo_id: int | None = None
            if badge_photo is not None:
                photo = BadgePhoto(
                    tenant_id=tenant_id,
                    contact_email=submission.email,
                    contact_name=submission.name,
                    filename=badge_photo.filename,
                    mime_type=badge_photo.mime_type,
                    file_size=badge_photo.size,
                    image_data=badge_photo.data,
                    form_source=FORM_SOURCE,
                )
                session.add(photo)
                await session.flush()
                photo_id = photo.id

            capture = LeadCapture(
                tenant_id=tenant_id,
                tradeshow_id=tradeshow_id,
                rep_id=rep_id,
                email=submission.email,
                name=submission.name,
                company=submission.company,
                country=submission.country,
                comments=submission.comments,
                form_details=submission.model_dump(
                    include={"role", "current_respirator", "work_environment", "number_of_staff", "rep_code"},
                    exclude_none=True,
                ),
                badge_photo_id=photo_id,
            )
            session.add(capture)
            await session.commit()
            await session.refresh(capture)
            logger.info(
                "leads.capture_saved",
                tenant_id=tenant_id,
                capture_id=capture.id,
                badge_photo_id=photo_id,
            )
            return _model_to_capture(capture)

    async def record_remote_ids(
        self,
        tenant_id: int,
        capture_id: int,
        ac_contact_id: str | None = None,
        dynamics_lead_id: str | None = None,
    ) -> None:
        """Store CRM identifiers on the capture row."""
        async with open_session(self._session_factory) as session:
            capture = await session.get(LeadCapture, capture_id)
            if capture is None or capture.tenant_id != tenant_id:
                return
            if ac_contact_id:
                capture.ac_contact_id = ac_contact_id
            if dynamics_lead_id:
                capture.dynamics_lead_id = dynamics_lead_id
            await session.commit()

    async def get_badge_photo(self, photo_id: int, tenant_id: int | None = None) -> BadgePhotoRead | None:
        """Badge photo by id; scoped to tenant_id when one is given."""
        async with open_session(self._session_factory) as session:
            photo = await session.get(BadgePhoto, photo_id)
            if photo is None or (tenant_id is not None and photo.tenant_id != tenant_id):
                return None
            return BadgePhotoRead(
                id=photo.id,
                filename=photo.filename,
                mime_type=photo.mime_type,
                file_size=photo.file_size,
                image_data=photo.image_data,
            )

    async def load_activecampaign_credentials(
        self, tenant_id: int
    ) -> tuple[ActiveCampaignCredentials, dict[str, Any]]:
        async with open_session(self._session_factory) as session:
            return await load_activecampaign_credentials(session, tenant_id)

    async def load_dynamics_credentials(
        self, tenant_id: int
    ) -> tuple[DynamicsCredentials, dict[str, Any]]:
        async with open_session(self._session_factory) as session:
            return await load_dynamics_credentials(session, tenant_id)
