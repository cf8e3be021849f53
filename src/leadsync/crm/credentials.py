"""Credential resolution for ActiveCampaign and Dynamics 365.

Three sources, newest first:
- Tenant connections (tenant_crm_connections, one row per CRM type).
- Legacy per-tradeshow credentials (tradeshow_credentials).
- Legacy single-tenant environment variables.

Each resolver returns a CredentialBundle covering both CRMs or raises:
- NotFoundError when the identifier matches no active row.
- MissingCredentialsError naming every absent field, never only the first.

All functions take an explicit AsyncSession; nothing here opens its own
connection. Only upsert_tradeshow_credentials writes; the environment
migration goes through it.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.config import Settings, get_settings
from src.leadsync.crm.errors import MissingCredentialsError, NotFoundError
from src.leadsync.crm.field_mapping import (
    DEFAULT_TENANT_TOPIC,
    DEFAULT_TRADESHOW_TOPIC,
    LEAD_SOURCE_TRADE_SHOW,
    field_ids_from_mappings,
    normalize_aliases,
)
from src.leadsync.crm.schemas import (
    ActiveCampaignCredentials,
    CredentialBundle,
    CRMType,
    DynamicsCredentials,
)
from src.leadsync.models import Tenant, TenantCRMConnection, Tradeshow, TradeshowCredentials

logger = structlog.get_logger(__name__)


# ── Display names for missing-field reporting ──────────────────────────────

AC_API_URL = "ActiveCampaign API URL"
AC_API_KEY = "ActiveCampaign API Key"
D365_TENANT_ID = "Dynamics 365 Tenant ID"
D365_CLIENT_ID = "Dynamics 365 Client ID"
D365_CLIENT_SECRET = "Dynamics 365 Client Secret"
D365_INSTANCE_URL = "Dynamics 365 Instance URL"

# Columns accepted by upsert_tradeshow_credentials
TRADESHOW_CREDENTIAL_COLUMNS = (
    "ac_api_url",
    "ac_api_key",
    "ac_rep_field_id",
    "ac_country_field_id",
    "ac_company_field_id",
    "ac_comments_field_id",
    "d365_tenant_id",
    "d365_client_id",
    "d365_client_secret",
    "d365_instance_url",
    "lead_topic_format",
)


# ── Helpers ─────────────────────────────────────────────────────────────────


def parse_identifier(identifier: int | str) -> int | str:
    """Numeric IDs (int or digit string) become int; anything else is a slug."""
    if isinstance(identifier, int):
        return identifier
    value = str(identifier).strip()
    if value.isdigit():
        return int(value)
    return value.lower()


def _missing(pairs: list[tuple[str, str | None]]) -> list[str]:
    return [label for label, value in pairs if not (value and str(value).strip())]


def _ac_missing(conn: TenantCRMConnection | None) -> list[str]:
    if conn is None:
        return [AC_API_URL, AC_API_KEY]
    return _missing([(AC_API_URL, conn.api_url), (AC_API_KEY, conn.api_key)])


def _d365_missing(conn: TenantCRMConnection | None) -> list[str]:
    if conn is None:
        return [D365_TENANT_ID, D365_CLIENT_ID, D365_CLIENT_SECRET, D365_INSTANCE_URL]
    return _missing([
        (D365_TENANT_ID, conn.tenant_id_crm),
        (D365_CLIENT_ID, conn.client_id),
        (D365_CLIENT_SECRET, conn.client_secret),
        (D365_INSTANCE_URL, conn.instance_url),
    ])


def _ac_from_connection(conn: TenantCRMConnection) -> ActiveCampaignCredentials:
    return ActiveCampaignCredentials(api_url=conn.api_url, api_key=conn.api_key)


def _d365_from_connection(conn: TenantCRMConnection) -> DynamicsCredentials:
    return DynamicsCredentials(
        tenant_id=conn.tenant_id_crm,
        client_id=conn.client_id,
        client_secret=conn.client_secret,
        instance_url=conn.instance_url,
    )


def _merged_mappings(connections: list[TenantCRMConnection]) -> dict[str, Any]:
    """Combine field_mappings across a tenant's connections.

    ActiveCampaign mappings are applied first so Dynamics-specific keys
    (lead_source_code, lead_topic_format) win on overlap. rep_aliases are
    unioned.
    """
    ordered = sorted(connections, key=lambda c: c.crm_type != CRMType.ACTIVECAMPAIGN.value)
    merged: dict[str, Any] = {}
    aliases: dict[str, str] = {}
    for conn in ordered:
        mappings = dict(conn.field_mappings or {})
        aliases.update(normalize_aliases(mappings.pop("rep_aliases", None)))
        merged.update({k: v for k, v in mappings.items() if v not in (None, "")})
    merged["rep_aliases"] = aliases
    return merged


def _lead_source_code(mappings: dict[str, Any]) -> int:
    raw = mappings.get("lead_source_code")
    if raw in (None, ""):
        return LEAD_SOURCE_TRADE_SHOW
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"field_mappings.lead_source_code must be an integer, got {raw!r}") from exc


def _optional_str(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value)


# ── Tenant connections ──────────────────────────────────────────────────────


async def get_tenant_connection(
    session: AsyncSession,
    tenant_id: int,
    crm_type: str,
    include_inactive: bool = False,
) -> TenantCRMConnection | None:
    """Fetch one tenant connection by CRM type (active only by default)."""
    stmt = select(TenantCRMConnection).where(
        TenantCRMConnection.tenant_id == tenant_id,
        TenantCRMConnection.crm_type == str(crm_type),
    )
    if not include_inactive:
        stmt = stmt.where(TenantCRMConnection.is_active.is_(True))
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def list_tenant_connections(
    session: AsyncSession,
    tenant_id: int,
) -> list[TenantCRMConnection]:
    """All active connections for a tenant, ordered by CRM type."""
    result = await session.execute(
        select(TenantCRMConnection)
        .where(
            TenantCRMConnection.tenant_id == tenant_id,
            TenantCRMConnection.is_active.is_(True),
        )
        .order_by(TenantCRMConnection.crm_type)
    )
    return list(result.scalars().all())


async def load_activecampaign_credentials(
    session: AsyncSession,
    tenant_id: int,
) -> tuple[ActiveCampaignCredentials, dict[str, Any]]:
    """ActiveCampaign credentials plus field_mappings for one tenant.

    Raises:
        NotFoundError: No active ActiveCampaign connection.
        MissingCredentialsError: Connection exists but is incomplete.
    """
    conn = await get_tenant_connection(session, tenant_id, CRMType.ACTIVECAMPAIGN.value)
    if conn is None:
        raise NotFoundError(f"No active ActiveCampaign connection for tenant {tenant_id}")
    missing = _ac_missing(conn)
    if missing:
        raise MissingCredentialsError(missing, context=f"tenant {tenant_id}")
    return _ac_from_connection(conn), dict(conn.field_mappings or {})


async def load_dynamics_credentials(
    session: AsyncSession,
    tenant_id: int,
) -> tuple[DynamicsCredentials, dict[str, Any]]:
    """Dynamics 365 credentials plus field_mappings for one tenant.

    Raises:
        NotFoundError: No active Dynamics 365 connection.
        MissingCredentialsError: Connection exists but is incomplete.
    """
    conn = await get_tenant_connection(session, tenant_id, CRMType.DYNAMICS365.value)
    if conn is None:
        raise NotFoundError(f"No active Dynamics 365 connection for tenant {tenant_id}")
    missing = _d365_missing(conn)
    if missing:
        raise MissingCredentialsError(missing, context=f"tenant {tenant_id}")
    return _d365_from_connection(conn), dict(conn.field_mappings or {})


async def resolve_tenant_credentials(
    session: AsyncSession,
    identifier: int | str,
) -> CredentialBundle:
    """Resolve both CRMs for a tenant given its numeric ID or subdomain."""
    key = parse_identifier(identifier)
    condition = Tenant.id == key if isinstance(key, int) else Tenant.subdomain == key

    result = await session.execute(
        select(Tenant, TenantCRMConnection)
        .outerjoin(
            TenantCRMConnection,
            and_(
                TenantCRMConnection.tenant_id == Tenant.id,
                TenantCRMConnection.is_active.is_(True),
            ),
        )
        .where(condition, Tenant.is_active.is_(True))
    )
    rows = result.all()
    if not rows:
        raise NotFoundError(f"No active tenant found: {identifier}")

    tenant: Tenant = rows[0][0]
    connections = [row[1] for row in rows if row[1] is not None]
    by_type = {conn.crm_type: conn for conn in connections}
    ac_conn = by_type.get(CRMType.ACTIVECAMPAIGN.value)
    d365_conn = by_type.get(CRMType.DYNAMICS365.value)

    missing = _ac_missing(ac_conn) + _d365_missing(d365_conn)
    if missing:
        raise MissingCredentialsError(missing, context=f'tenant "{tenant.name}"')

    mappings = _merged_mappings(connections)
    bundle = CredentialBundle(
        source="tenant",
        tenant_id=tenant.id,
        tenant_name=tenant.name,
        default_country=tenant.default_country,
        activecampaign=_ac_from_connection(ac_conn),
        dynamics=_d365_from_connection(d365_conn),
        field_ids=field_ids_from_mappings(mappings),
        tag_id=_optional_str(mappings.get("tag_id")),
        rep_aliases=mappings["rep_aliases"],
        lead_source_code=_lead_source_code(mappings),
        lead_topic_format=mappings.get("lead_topic_format") or DEFAULT_TENANT_TOPIC,
    )
    logger.info("credentials.resolved", source="tenant", tenant_id=tenant.id)
    return bundle


# ── Legacy tradeshow credentials ────────────────────────────────────────────


async def resolve_tradeshow_credentials(
    session: AsyncSession,
    identifier: int | str,
) -> CredentialBundle:
    """Resolve both CRMs from the legacy per-tradeshow credential row."""
    key = parse_identifier(identifier)
    condition = (
        TradeshowCredentials.tradeshow_id == key
        if isinstance(key, int)
        else Tradeshow.slug == key
    )

    result = await session.execute(
        select(TradeshowCredentials, Tradeshow, Tenant)
        .join(Tradeshow, TradeshowCredentials.tradeshow_id == Tradeshow.id)
        .outerjoin(Tenant, Tenant.id == Tradeshow.tenant_id)
        .where(condition, Tradeshow.is_active.is_(True))
    )
    row = result.first()
    if row is None:
        raise NotFoundError(f"No credentials found for tradeshow: {identifier}")
    creds, tradeshow, tenant = row

    missing = _missing([
        (AC_API_URL, creds.ac_api_url),
        (AC_API_KEY, creds.ac_api_key),
        (D365_TENANT_ID, creds.d365_tenant_id),
        (D365_CLIENT_ID, creds.d365_client_id),
        (D365_CLIENT_SECRET, creds.d365_client_secret),
        (D365_INSTANCE_URL, creds.d365_instance_url),
    ])
    if missing:
        raise MissingCredentialsError(missing, context=f'tradeshow "{tradeshow.name}"')

    # Aliases and lead source live on the tenant's connections, when present
    tenant_mappings: dict[str, Any] = {"rep_aliases": {}}
    if tenant is not None:
        tenant_mappings = _merged_mappings(await list_tenant_connections(session, tenant.id))

    bundle = CredentialBundle(
        source="tradeshow",
        tenant_id=tenant.id if tenant is not None else None,
        tenant_name=tenant.name if tenant is not None else None,
        tradeshow_id=tradeshow.id,
        tradeshow_name=tradeshow.name,
        default_country=tradeshow.default_country,
        activecampaign=ActiveCampaignCredentials(
            api_url=creds.ac_api_url, api_key=creds.ac_api_key
        ),
        dynamics=DynamicsCredentials(
            tenant_id=creds.d365_tenant_id,
            client_id=creds.d365_client_id,
            client_secret=creds.d365_client_secret,
            instance_url=creds.d365_instance_url,
        ),
        field_ids=field_ids_from_mappings(
            tenant_mappings,
            overrides={
                "rep": creds.ac_rep_field_id,
                "country": creds.ac_country_field_id,
                "company": creds.ac_company_field_id,
                "comments": creds.ac_comments_field_id,
            },
        ),
        tag_id=tradeshow.ac_tag_id,
        rep_aliases=tenant_mappings["rep_aliases"],
        lead_source_code=_lead_source_code(tenant_mappings),
        lead_topic_format=creds.lead_topic_format or DEFAULT_TRADESHOW_TOPIC,
    )
    logger.info("credentials.resolved", source="tradeshow", tradeshow_id=tradeshow.id)
    return bundle


async def get_tradeshow_credentials(
    session: AsyncSession,
    identifier: int | str,
) -> tuple[Tradeshow, TradeshowCredentials | None]:
    """Tradeshow by id or slug with its credential row, complete or not."""
    key = parse_identifier(identifier)
    condition = Tradeshow.id == key if isinstance(key, int) else Tradeshow.slug == key
    result = await session.execute(
        select(Tradeshow, TradeshowCredentials)
        .outerjoin(TradeshowCredentials, TradeshowCredentials.tradeshow_id == Tradeshow.id)
        .where(condition)
    )
    row = result.first()
    if row is None:
        raise NotFoundError(f"Tradeshow not found: {identifier}")
    return row[0], row[1]


async def list_tradeshows_with_credentials(session: AsyncSession) -> list[dict[str, Any]]:
    """Active tradeshows with flags for which credential sets are present."""
    result = await session.execute(
        select(Tradeshow, TradeshowCredentials)
        .outerjoin(TradeshowCredentials, TradeshowCredentials.tradeshow_id == Tradeshow.id)
        .where(Tradeshow.is_active.is_(True))
        .order_by(Tradeshow.start_date.desc().nulls_last(), Tradeshow.name)
    )
    tradeshows: list[dict[str, Any]] = []
    for tradeshow, creds in result.all():
        tradeshows.append({
            "id": tradeshow.id,
            "name": tradeshow.name,
            "slug": tradeshow.slug,
            "is_active": tradeshow.is_active,
            "has_credentials": creds is not None,
            "has_ac_credentials": bool(creds and creds.ac_api_url),
            "has_d365_credentials": bool(creds and creds.d365_tenant_id),
        })
    return tradeshows


async def upsert_tradeshow_credentials(
    session: AsyncSession,
    tradeshow_id: int,
    values: dict[str, Any],
    user_id: int | None = None,
) -> TradeshowCredentials:
    """Insert or partially update a tradeshow's credentials.

    Keys set to None keep the stored value, so callers can send only what
    changed.

    Raises:
        ValueError: A key is not a credential column.
        NotFoundError: The tradeshow does not exist.
    """
    unknown = set(values) - set(TRADESHOW_CREDENTIAL_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown credential fields: {', '.join(sorted(unknown))}")

    tradeshow = await session.get(Tradeshow, tradeshow_id)
    if tradeshow is None:
        raise NotFoundError(f"Tradeshow {tradeshow_id} not found")

    result = await session.execute(
        select(TradeshowCredentials).where(TradeshowCredentials.tradeshow_id == tradeshow_id)
    )
    creds = result.scalar_one_or_none()
    if creds is None:
        creds = TradeshowCredentials(tradeshow_id=tradeshow_id, created_by=user_id)
        session.add(creds)

    for column, value in values.items():
        if value is not None:
            setattr(creds, column, value)

    await session.commit()
    await session.refresh(creds)
    logger.info(
        "credentials.tradeshow_upserted",
        tradeshow_id=tradeshow_id,
        fields=sorted(k for k, v in values.items() if v is not None),
    )
    return creds


# ── Environment (single-tenant legacy) ──────────────────────────────────────

ENVIRONMENT_FIELDS = (
    "ACTIVECAMPAIGN_API_URL",
    "ACTIVECAMPAIGN_API_KEY",
    "DYNAMICS_TENANT_ID",
    "DYNAMICS_CLIENT_ID",
    "DYNAMICS_CLIENT_SECRET",
    "DYNAMICS_INSTANCE_URL",
)


def resolve_environment_credentials(settings: Settings | None = None) -> CredentialBundle:
    """Resolve both CRMs from environment variables.

    Missing fields are reported by environment variable name.
    """
    settings = settings or get_settings()
    missing = _missing([(name, getattr(settings, name)) for name in ENVIRONMENT_FIELDS])
    if missing:
        raise MissingCredentialsError(missing, context="environment")

    return CredentialBundle(
        source="environment",
        activecampaign=ActiveCampaignCredentials(
            api_url=settings.ACTIVECAMPAIGN_API_URL,
            api_key=settings.ACTIVECAMPAIGN_API_KEY,
        ),
        dynamics=DynamicsCredentials(
            tenant_id=settings.DYNAMICS_TENANT_ID,
            client_id=settings.DYNAMICS_CLIENT_ID,
            client_secret=settings.DYNAMICS_CLIENT_SECRET,
            instance_url=settings.DYNAMICS_INSTANCE_URL,
        ),
        lead_topic_format=settings.LEAD_TOPIC_FORMAT,
    )


async def migrate_environment_credentials(
    session: AsyncSession,
    identifier: int | str,
    settings: Settings | None = None,
) -> TradeshowCredentials:
    """Copy the environment credentials onto a tradeshow's credential row.

    Raises:
        MissingCredentialsError: An environment variable is unset.
        NotFoundError: The tradeshow does not exist.
    """
    bundle = resolve_environment_credentials(settings)
    tradeshow, _ = await get_tradeshow_credentials(session, identifier)
    return await upsert_tradeshow_credentials(
        session,
        tradeshow.id,
        {
            "ac_api_url": bundle.activecampaign.api_url,
            "ac_api_key": bundle.activecampaign.api_key,
            "d365_tenant_id": bundle.dynamics.tenant_id,
            "d365_client_id": bundle.dynamics.client_id,
            "d365_client_secret": bundle.dynamics.client_secret,
            "d365_instance_url": bundle.dynamics.instance_url,
            "lead_topic_format": bundle.lead_topic_format,
        },
    )
