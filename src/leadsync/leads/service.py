"""Lead submission flow: local write first, then best-effort CRM sync.

Order of operations for one submission:
1. Validate required fields and the tradeshow; resolve the rep code.
2. Persist badge photo + lead_captures row (committed before any CRM call).
3. ActiveCampaign: upsert contact, then note, then tradeshow tag.
4. Dynamics 365: create the lead with owner, topic and lead source.
5. Save remote IDs back onto the capture row.

Steps 3-5 are each wrapped independently: a failure is logged and recorded
in SubmissionResult.crm_errors but never aborts the next step or the
response. Once step 2 succeeds the submission is reported as successful.
"""

from __future__ import annotations

from collections.abc import Callable

import httpx
import structlog

from src.leadsync.crm.activecampaign import ActiveCampaignClient
from src.leadsync.crm.dynamics import DynamicsClient, TokenCache
from src.leadsync.crm.field_mapping import (
    DEFAULT_TENANT_TOPIC,
    LEAD_SOURCE_TRADE_SHOW,
    build_contact_note,
    field_ids_from_mappings,
    render_lead_topic,
    split_full_name,
)
from src.leadsync.crm.schemas import ContactFields, CRMResult, LeadFields
from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.schemas import (
    BadgePhotoUpload,
    LeadCaptureRead,
    LeadSubmission,
    RepRead,
    SubmissionResult,
    TenantRead,
    TradeshowRead,
)

logger = structlog.get_logger(__name__)


class SubmissionValidationError(Exception):
    """Required form fields are missing."""

    def __init__(self, missing: dict[str, bool]) -> None:
        self.missing = missing
        names = [field for field, absent in missing.items() if absent]
        super().__init__(f"Missing required fields: {', '.join(names)}")


class TradeshowNotFoundError(Exception):
    """No active tradeshow with this slug for the tenant."""


class LeadSubmissionService:
    """Captures a trade-show lead and syncs it to both CRMs.

    Args:
        repository: LeadRepository (or a compatible test double).
        public_base_url: Origin used to build badge photo links in notes.
        http_client: Optional shared httpx.AsyncClient for CRM calls.
        activecampaign_factory: Builds the ActiveCampaign client.
        dynamics_factory: Builds the Dynamics client.
        token_cache: Dynamics token cache; one per service unless shared.
    """

    def __init__(
        self,
        repository: LeadRepository,
        public_base_url: str = "",
        http_client: httpx.AsyncClient | None = None,
        activecampaign_factory: Callable[..., ActiveCampaignClient] = ActiveCampaignClient,
        dynamics_factory: Callable[..., DynamicsClient] = DynamicsClient,
        token_cache: TokenCache | None = None,
    ) -> None:
        self._repo = repository
        self._base_url = public_base_url.rstrip("/")
        self._http = http_client
        self._ac_factory = activecampaign_factory
        self._d365_factory = dynamics_factory
        self._token_cache = token_cache if token_cache is not None else TokenCache()

    def badge_photo_url(self, photo_id: int) -> str:
        return f"{self._base_url}/api/v1/badge-photos/{photo_id}"

    async def submit(
        self,
        tenant_id: int,
        tradeshow_slug: str,
        submission: LeadSubmission,
        badge_photo: BadgePhotoUpload | None = None,
    ) -> SubmissionResult:
        """Run the full submission flow.

        Raises:
            SubmissionValidationError: email, name or country missing.
            TradeshowNotFoundError: Unknown or inactive tradeshow slug.
        """
        if not submission.is_complete:
            raise SubmissionValidationError(submission.missing_fields())

        tradeshow = await self._repo.get_tradeshow_by_slug(tenant_id, tradeshow_slug)
        if tradeshow is None:
            raise TradeshowNotFoundError(f"Tradeshow not found: {tradeshow_slug}")
        tenant = await self._repo.get_tenant(tenant_id)

        rep: RepRead | None = None
        if submission.rep_code:
            rep = await self._repo.get_rep_by_code(tenant_id, submission.rep_code)
            if rep is None:
                logger.warning(
                    "leads.unknown_rep_code",
                    tenant_id=tenant_id,
                    rep_code=submission.rep_code,
                )

        if badge_photo is not None and badge_photo.size == 0:
            badge_photo = None

        capture = await self._repo.save_capture(
            tenant_id,
            tradeshow.id,
            submission,
            rep_id=rep.id if rep else None,
            badge_photo=badge_photo,
        )
        result = SubmissionResult(lead_id=capture.id, badge_photo_id=capture.badge_photo_id)

        # ── 1. ActiveCampaign ────────────────────────────────────────────
        try:
            result.contact_id = await self._sync_activecampaign(
                tenant_id, tradeshow, submission, rep, capture, badge_photo, result
            )
        except Exception as exc:
            logger.error("leads.activecampaign_sync_error", tenant_id=tenant_id, error=str(exc))
            result.crm_errors.append(f"activecampaign: {exc}")

        # ── 2. Dynamics 365 ──────────────────────────────────────────────
        try:
            result.dynamics_lead_id = await self._sync_dynamics(
                tenant_id, tenant, tradeshow, submission, rep, result
            )
        except Exception as exc:
            logger.error("leads.dynamics_sync_error", tenant_id=tenant_id, error=str(exc))
            result.crm_errors.append(f"dynamics365: {exc}")

        # ── 3. Remote IDs ────────────────────────────────────────────────
        if result.contact_id or result.dynamics_lead_id:
            try:
                await self._repo.record_remote_ids(
                    tenant_id,
                    capture.id,
                    ac_contact_id=result.contact_id,
                    dynamics_lead_id=result.dynamics_lead_id,
                )
            except Exception as exc:
                logger.warning("leads.remote_ids_not_saved", capture_id=capture.id, error=str(exc))

        if result.crm_errors:
            result.message = "Form submitted (CRM sync pending)"
        logger.info(
            "leads.submitted",
            tenant_id=tenant_id,
            tradeshow=tradeshow.slug,
            capture_id=capture.id,
            contact_id=result.contact_id,
            dynamics_lead_id=result.dynamics_lead_id,
            crm_errors=len(result.crm_errors),
        )
        return result

    async def _sync_activecampaign(
        self,
        tenant_id: int,
        tradeshow: TradeshowRead,
        submission: LeadSubmission,
        rep: RepRead | None,
        capture: LeadCaptureRead,
        badge_photo: BadgePhotoUpload | None,
        result: SubmissionResult,
    ) -> str | None:
        credentials, mappings = await self._repo.load_activecampaign_credentials(tenant_id)
        client = self._ac_factory(credentials, http_client=self._http)
        field_ids = field_ids_from_mappings(mappings)

        first_name, last_name = split_full_name(submission.name or "")
        values = {
            field_ids.country: submission.country,
            field_ids.company: submission.company,
            field_ids.comments: submission.comments,
            field_ids.current_respirator: submission.current_respirator,
            field_ids.work_environment: submission.work_environment,
            field_ids.number_of_staff: submission.number_of_staff,
            field_ids.rep: rep.name if rep else None,
        }
        contact = ContactFields(
            email=submission.email,
            first_name=first_name,
            last_name=last_name,
            field_values={fid: value for fid, value in values.items() if value},
        )

        created: CRMResult = await client.create_or_update_contact(contact)
        if not created.success:
            result.crm_errors.append(f"activecampaign: {created.error_kind.value}: {created.error}")
            return None
        contact_id = created.remote_id

        photo_url = self.badge_photo_url(capture.badge_photo_id) if capture.badge_photo_id else None
        note = build_contact_note(
            heading=f"{tradeshow.name} Lead",
            country=submission.country,
            company=submission.company,
            role=submission.role,
            work_environment=submission.work_environment,
            number_of_staff=submission.number_of_staff,
            current_respirator=submission.current_respirator,
            rep_name=rep.name if rep else None,
            comments=submission.comments,
            photo_filename=badge_photo.filename if badge_photo else None,
            photo_size=badge_photo.size if badge_photo else None,
            photo_url=photo_url,
        )
        await client.add_note(contact_id, note)

        tag_id = tradeshow.ac_tag_id or mappings.get("tag_id")
        if tag_id:
            await client.add_tag(contact_id, str(tag_id))
        return contact_id

    async def _sync_dynamics(
        self,
        tenant_id: int,
        tenant: TenantRead | None,
        tradeshow: TradeshowRead,
        submission: LeadSubmission,
        rep: RepRead | None,
        result: SubmissionResult,
    ) -> str | None:
        credentials, mappings = await self._repo.load_dynamics_credentials(tenant_id)
        client = self._d365_factory(
            credentials, http_client=self._http, token_cache=self._token_cache
        )

        first_name, last_name = split_full_name(submission.name or "")
        topic = render_lead_topic(
            mappings.get("lead_topic_format") or DEFAULT_TENANT_TOPIC,
            full_name=submission.name or "",
            tenant_name=tenant.name if tenant else "",
            tradeshow_name=tradeshow.name,
        )
        lead_source = mappings.get("lead_source_code")
        fields = LeadFields(
            email=submission.email,
            first_name=first_name,
            last_name=last_name or None,
            subject=topic,
            company=submission.company,
            country=submission.country,
            description=submission.comments,
            job_title=submission.role,
            lead_source_code=int(lead_source) if lead_source not in (None, "") else LEAD_SOURCE_TRADE_SHOW,
        )

        created: CRMResult = await client.create_lead(
            fields, owner_dynamics_user_id=rep.dynamics_user_id if rep else None
        )
        if not created.success:
            result.crm_errors.append(f"dynamics365: {created.error_kind.value}: {created.error}")
            return None
        return created.remote_id
