"""Command-line driver for the reconciliation jobs.

The scripts under scripts/ are thin argparse wrappers around run_job():

    python scripts/sync_lead_owners.py                 # environment credentials
    python scripts/sync_lead_owners.py expo-2025       # tradeshow slug or id
    python scripts/sync_lead_owners.py --tenant acme   # tenant id or subdomain

run_job() returns the process exit code: 0 when the job ran to completion
(even with per-contact errors), 1 when credentials could not be resolved or
the job failed before finishing.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.config import get_settings
from src.leadsync.core.database import session_scope
from src.leadsync.crm.activecampaign import ActiveCampaignClient
from src.leadsync.crm.credentials import (
    resolve_environment_credentials,
    resolve_tenant_credentials,
    resolve_tradeshow_credentials,
)
from src.leadsync.crm.dynamics import DynamicsClient
from src.leadsync.crm.errors import CRMError, MissingCredentialsError, NotFoundError
from src.leadsync.crm.reconcile import (
    LeadDetailsJob,
    LeadOwnerJob,
    LeadSourceJob,
    ReconcileJob,
    load_reps,
)
from src.leadsync.crm.schemas import CredentialBundle, SyncCounters

logger = structlog.get_logger(__name__)

JOB_TITLES = {
    LeadOwnerJob.name: "Lead owner sync",
    LeadDetailsJob.name: "Lead details sync",
    LeadSourceJob.name: "Lead source update",
}


async def resolve_bundle(
    session: AsyncSession,
    identifier: str | None = None,
    tenant: str | None = None,
) -> CredentialBundle:
    """Pick the credential source from the command-line arguments."""
    if tenant:
        return await resolve_tenant_credentials(session, tenant)
    if identifier:
        return await resolve_tradeshow_credentials(session, identifier)
    return resolve_environment_credentials()


async def build_job(
    job_name: str,
    session: AsyncSession,
    bundle: CredentialBundle,
    http_client: httpx.AsyncClient,
) -> ReconcileJob:
    settings = get_settings()
    activecampaign = ActiveCampaignClient(
        bundle.activecampaign,
        http_client=http_client,
        page_size=settings.CRM_PAGE_SIZE,
    )
    dynamics = DynamicsClient(bundle.dynamics, http_client=http_client)

    if job_name == LeadOwnerJob.name:
        reps = await load_reps(session, bundle.tenant_id)
        return LeadOwnerJob(bundle, activecampaign, dynamics, reps)
    if job_name == LeadDetailsJob.name:
        return LeadDetailsJob(bundle, activecampaign, dynamics)
    if job_name == LeadSourceJob.name:
        return LeadSourceJob(bundle, activecampaign, dynamics)
    raise ValueError(f"Unknown job: {job_name}")


def format_summary(title: str, bundle: CredentialBundle, counters: SyncCounters) -> list[str]:
    lines = [
        "",
        "=" * 60,
        f"{title} complete ({bundle.owner_name})",
        "=" * 60,
        f"  Updated:          {counters.updated}",
        f"  Already correct:  {counters.already_correct}",
        f"  Skipped:          {counters.skipped}",
        f"  Errors:           {counters.errors}",
        f"  Total processed:  {counters.processed}",
    ]
    if counters.unmatched:
        lines.append("")
        lines.append("Unmatched rep names:")
        for name in sorted(set(counters.unmatched)):
            lines.append(f"  - {name} ({counters.unmatched.count(name)} contacts)")
    return lines


async def run_job(
    job_name: str,
    identifier: str | None = None,
    tenant: str | None = None,
    *,
    session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]] = session_scope,
    http_client: httpx.AsyncClient | None = None,
    echo: Callable[[str], None] = print,
) -> int:
    """Resolve credentials, run one job and print its summary. Returns the exit code."""
    title = JOB_TITLES.get(job_name, job_name)
    settings = get_settings()

    async with session_factory() as session:
        try:
            bundle = await resolve_bundle(session, identifier, tenant)
        except MissingCredentialsError as exc:
            echo(f"ERROR: {exc}")
            echo("Configure the missing fields and re-run.")
            return 1
        except (NotFoundError, ValueError) as exc:
            echo(f"ERROR: {exc}")
            return 1

        echo(f"{title} using {bundle.source} credentials for {bundle.owner_name}")

        owns_client = http_client is None
        client = http_client or httpx.AsyncClient(timeout=settings.CRM_HTTP_TIMEOUT)
        try:
            job = await build_job(job_name, session, bundle, client)
            counters = await job.run()
        except (CRMError, httpx.HTTPError) as exc:
            logger.error("reconcile.fatal", job=job_name, error=str(exc))
            echo(f"ERROR: {title} failed: {exc}")
            return 1
        finally:
            if owns_client:
                await client.aclose()

    for line in format_summary(title, bundle, counters):
        echo(line)
    return 0
