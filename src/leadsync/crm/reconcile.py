"""Reconciliation jobs that repair drift between ActiveCampaign and Dynamics 365.

Every job walks the same states:
1. authenticate against Dynamics (fatal on failure)
2. page through ActiveCampaign contacts whose rep marker field is populated
3. per contact, decide the desired Dynamics state
4. find the Dynamics lead by email
5. PATCH only the attributes that differ
6. tally SyncCounters

Jobs are idempotent: a lead already in the desired state counts as
already_correct and causes no write. A failure on one contact is counted,
logged with its email, and the batch moves on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from typing import Any

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.crm.activecampaign import ActiveCampaignClient
from src.leadsync.crm.dynamics import DynamicsClient
from src.leadsync.crm.errors import CRMError
from src.leadsync.crm.field_mapping import DETAILS_FIELD_MAP
from src.leadsync.crm.matcher import Matched, RepRecord, match_rep
from src.leadsync.crm.schemas import ActiveCampaignContact, CredentialBundle, SyncCounters
from src.leadsync.models import User

logger = structlog.get_logger(__name__)


class Outcome(str, Enum):
    UPDATED = "updated"
    ALREADY_CORRECT = "already_correct"
    SKIPPED = "skipped"


async def load_reps(session: AsyncSession, tenant_id: int | None = None) -> list[RepRecord]:
    """Active reps and admins with a Dynamics user mapped, ordered by id.

    With no tenant_id (environment credentials) every tenant's reps are
    considered, matching the legacy single-tenant deployment.
    """
    stmt = (
        select(User.name, User.dynamics_user_id)
        .where(
            User.dynamics_user_id.is_not(None),
            User.dynamics_user_id != "",
            User.role.in_(("rep", "admin")),
            User.is_active.is_(True),
        )
        .order_by(User.id)
    )
    if tenant_id is not None:
        stmt = stmt.where(User.tenant_id == tenant_id)
    result = await session.execute(stmt)
    return [RepRecord(name=row.name, dynamics_user_id=row.dynamics_user_id) for row in result.all()]


class ReconcileJob(ABC):
    """Base class for a single reconciliation pass.

    Args:
        bundle: Resolved credentials and field configuration.
        activecampaign: Client for the source contacts.
        dynamics: Client for the target leads.
    """

    name: str = "reconcile"
    lead_select: tuple[str, ...] = ("leadid", "fullname")

    def __init__(
        self,
        bundle: CredentialBundle,
        activecampaign: ActiveCampaignClient,
        dynamics: DynamicsClient,
    ) -> None:
        self.bundle = bundle
        self.activecampaign = activecampaign
        self.dynamics = dynamics

    @property
    def marker_field_id(self) -> str:
        return self.bundle.field_ids.rep

    async def run(self) -> SyncCounters:
        """Run the job to completion and return its counters.

        Raises:
            CRMError / httpx.HTTPError: Authentication or contact paging failed.
        """
        counters = SyncCounters()
        await self.dynamics.get_access_token()
        logger.info("reconcile.authenticated", job=self.name, owner=self.bundle.owner_name)

        contact_ids = await self.activecampaign.collect_contact_ids(self.marker_field_id)
        logger.info("reconcile.contacts_found", job=self.name, count=len(contact_ids))

        for contact_id in contact_ids:
            email = f"contact {contact_id}"
            try:
                contact = await self.activecampaign.get_contact(contact_id)
                email = contact.email or email
                outcome = await self.process_contact(contact, counters)
            except (CRMError, httpx.HTTPError) as exc:
                counters.errors += 1
                logger.error("reconcile.contact_failed", job=self.name, email=email, error=str(exc))
                continue

            if outcome is Outcome.UPDATED:
                counters.updated += 1
            elif outcome is Outcome.ALREADY_CORRECT:
                counters.already_correct += 1
            else:
                counters.skipped += 1

        logger.info("reconcile.completed", job=self.name, **counters.summary())
        return counters

    async def _find_lead(self, contact: ActiveCampaignContact) -> dict[str, Any] | None:
        if not contact.email:
            logger.info("reconcile.skipped", job=self.name, contact_id=contact.id, reason="no email")
            return None
        lead = await self.dynamics.find_lead_by_email(contact.email, select=self.lead_select)
        if lead is None:
            logger.info("reconcile.skipped", job=self.name, email=contact.email, reason="lead not found")
        return lead

    async def _apply(self, contact: ActiveCampaignContact, lead: dict[str, Any], desired: dict[str, Any]) -> Outcome:
        applied = await self.dynamics.update_lead_fields(lead["leadid"], desired, current=lead)
        if not applied:
            logger.info("reconcile.already_correct", job=self.name, email=contact.email)
            return Outcome.ALREADY_CORRECT
        logger.info("reconcile.updated", job=self.name, email=contact.email, fields=sorted(applied))
        return Outcome.UPDATED

    @abstractmethod
    async def process_contact(self, contact: ActiveCampaignContact, counters: SyncCounters) -> Outcome:
        """Bring one contact's Dynamics lead to the desired state."""
        ...


class LeadOwnerJob(ReconcileJob):
    """Set each lead's owner to the Dynamics user of the rep named in ActiveCampaign."""

    name = "lead_owners"
    lead_select = ("leadid", "fullname", "_ownerid_value")

    def __init__(
        self,
        bundle: CredentialBundle,
        activecampaign: ActiveCampaignClient,
        dynamics: DynamicsClient,
        reps: Sequence[RepRecord],
    ) -> None:
        super().__init__(bundle, activecampaign, dynamics)
        self.reps = list(reps)

    async def process_contact(self, contact: ActiveCampaignContact, counters: SyncCounters) -> Outcome:
        raw_name = contact.value(self.bundle.field_ids.rep)
        if not raw_name:
            logger.info("reconcile.skipped", job=self.name, email=contact.email, reason="no rep assigned")
            return Outcome.SKIPPED

        result = match_rep(raw_name, self.reps, self.bundle.rep_aliases)
        if not isinstance(result, Matched):
            counters.unmatched.append(raw_name)
            logger.warning("reconcile.no_rep_match", job=self.name, email=contact.email, rep=raw_name)
            return Outcome.SKIPPED

        lead = await self._find_lead(contact)
        if lead is None:
            return Outcome.SKIPPED

        owner = result.rep.dynamics_user_id
        if (lead.get("_ownerid_value") or "").lower() == owner.lower():
            logger.info(
                "reconcile.already_correct",
                job=self.name,
                email=contact.email,
                rep=result.rep.name,
            )
            return Outcome.ALREADY_CORRECT

        await self.dynamics.set_lead_owner(lead["leadid"], owner)
        logger.info(
            "reconcile.updated",
            job=self.name,
            email=contact.email,
            rep=result.rep.name,
            raw_rep=raw_name,
            rule=result.rule,
        )
        return Outcome.UPDATED


class LeadDetailsJob(ReconcileJob):
    """Backfill country, company, description and subject from ActiveCampaign."""

    name = "lead_details"
    lead_select = ("leadid", "fullname", "companyname", "address1_country", "description", "subject")

    async def process_contact(self, contact: ActiveCampaignContact, counters: SyncCounters) -> Outcome:
        lead = await self._find_lead(contact)
        if lead is None:
            return Outcome.SKIPPED

        desired: dict[str, Any] = {}
        for attr, dynamics_name in DETAILS_FIELD_MAP.items():
            value = contact.value(getattr(self.bundle.field_ids, attr))
            # Blank ActiveCampaign values never clear Dynamics data
            if value:
                desired[dynamics_name] = value
        full_name = lead.get("fullname") or contact.full_name
        desired["subject"] = self.bundle.lead_topic(full_name)

        return await self._apply(contact, lead, desired)


class LeadSourceJob(ReconcileJob):
    """Set leadsourcecode to the configured code ("Trade Show", 7, by default)."""

    name = "lead_source"
    lead_select = ("leadid", "fullname", "leadsourcecode")

    async def process_contact(self, contact: ActiveCampaignContact, counters: SyncCounters) -> Outcome:
        lead = await self._find_lead(contact)
        if lead is None:
            return Outcome.SKIPPED
        return await self._apply(
            contact, lead, {"leadsourcecode": self.bundle.lead_source_code}
        )
