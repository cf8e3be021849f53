"""Field mappings between captured leads, ActiveCampaign and Dynamics 365.

Defines:
- FIELD_MAPPING_KEYS: field_mappings JSON keys -> FieldIds attributes.
- DETAILS_FIELD_MAP: ActiveCampaign custom fields backfilled onto Dynamics leads.
- LEAD_SOURCE_TRADE_SHOW: Dynamics leadsourcecode option value for "Trade Show".
- to_activecampaign_contact() / to_dynamics_lead(): request payload builders.
- from_activecampaign_contact(): parse a contact read with its field values.
- build_contact_note(): note text attached to a new ActiveCampaign contact.
- render_lead_topic(): fill a lead topic template.
"""

from __future__ import annotations

from typing import Any

from src.leadsync.crm.schemas import (
    ActiveCampaignContact,
    ContactFields,
    FieldIds,
    LeadFields,
)


# ── Constants ──────────────────────────────────────────────────────────────

LEAD_SOURCE_TRADE_SHOW = 7

DEFAULT_TRADESHOW_TOPIC = "{tradeshow_name}"
DEFAULT_TENANT_TOPIC = "{tenant_name} Tradeshow Lead - {full_name}"

TOPIC_PLACEHOLDERS = ("tradeshow_name", "tenant_name", "full_name")

# field_mappings key -> FieldIds attribute
FIELD_MAPPING_KEYS: dict[str, str] = {
    "rep_field_id": "rep",
    "country_field_id": "country",
    "company_field_id": "company",
    "comments_field_id": "comments",
    "current_respirator_field_id": "current_respirator",
    "work_environment_field_id": "work_environment",
    "number_of_staff_field_id": "number_of_staff",
}

# FieldIds attribute -> Dynamics lead attribute
DETAILS_FIELD_MAP: dict[str, str] = {
    "country": "address1_country",
    "company": "companyname",
    "comments": "description",
}

# LeadFields attribute -> Dynamics lead attribute
DYNAMICS_LEAD_MAP: dict[str, str] = {
    "email": "emailaddress1",
    "first_name": "firstname",
    "last_name": "lastname",
    "subject": "subject",
    "company": "companyname",
    "country": "address1_country",
    "description": "description",
    "job_title": "jobtitle",
    "phone": "telephone1",
    "lead_source_code": "leadsourcecode",
}


# ── Conversion Functions ───────────────────────────────────────────────────


def field_ids_from_mappings(
    mappings: dict[str, Any] | None,
    overrides: dict[str, Any] | None = None,
) -> FieldIds:
    """Build FieldIds from a field_mappings dict, keeping defaults for gaps.

    ``overrides`` uses FieldIds attribute names and wins over ``mappings``;
    the legacy per-tradeshow columns arrive that way.
    """
    values: dict[str, str] = {}
    for key, attr in FIELD_MAPPING_KEYS.items():
        raw = (mappings or {}).get(key)
        if raw not in (None, ""):
            values[attr] = str(raw)
    for attr, raw in (overrides or {}).items():
        if raw not in (None, ""):
            values[attr] = str(raw)
    return FieldIds(**values)


def normalize_aliases(raw: dict[str, Any] | None) -> dict[str, str]:
    """Lower-case alias keys; drop entries without a canonical name."""
    return {
        str(alias).strip().lower(): str(canonical).strip()
        for alias, canonical in (raw or {}).items()
        if str(alias).strip() and canonical
    }


def split_full_name(name: str) -> tuple[str, str]:
    """Split "Ada King Lovelace" into ("Ada", "King Lovelace")."""
    parts = name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def render_lead_topic(
    template: str,
    *,
    full_name: str = "",
    tenant_name: str = "",
    tradeshow_name: str = "",
) -> str:
    """Substitute the known placeholders; unknown braces are left alone."""
    values = {
        "full_name": full_name,
        "tenant_name": tenant_name,
        "tradeshow_name": tradeshow_name,
    }
    rendered = template
    for key in TOPIC_PLACEHOLDERS:
        rendered = rendered.replace("{" + key + "}", values[key])
    return rendered.strip()


def to_activecampaign_contact(fields: ContactFields) -> dict[str, Any]:
    """Build the POST /api/3/contacts body."""
    return {
        "contact": {
            "email": fields.email,
            "firstName": fields.first_name,
            "lastName": fields.last_name,
            "phone": fields.phone,
            "fieldValues": [
                {"field": field_id, "value": value}
                for field_id, value in fields.field_values.items()
            ],
        }
    }


def from_activecampaign_contact(data: dict[str, Any]) -> ActiveCampaignContact:
    """Parse GET /api/3/contacts/{id}?include=fieldValues."""
    contact = data.get("contact") or {}
    field_values: dict[str, str] = {}
    for fv in data.get("fieldValues") or []:
        field_id = fv.get("field")
        if field_id is None:
            continue
        field_values[str(field_id)] = fv.get("value") or ""
    return ActiveCampaignContact(
        id=str(contact.get("id", "")),
        email=contact.get("email") or "",
        first_name=contact.get("firstName") or "",
        last_name=contact.get("lastName") or "",
        field_values=field_values,
    )


def to_dynamics_lead(
    fields: LeadFields,
    owner_dynamics_user_id: str | None = None,
) -> dict[str, Any]:
    """Build a Dynamics lead entity body, omitting unset attributes."""
    payload: dict[str, Any] = {}
    for attr, dynamics_name in DYNAMICS_LEAD_MAP.items():
        value = getattr(fields, attr)
        if value is None or value == "":
            continue
        payload[dynamics_name] = value
    if owner_dynamics_user_id:
        payload["ownerid@odata.bind"] = f"/systemusers({owner_dynamics_user_id})"
    return payload


def build_contact_note(
    *,
    heading: str,
    country: str | None = None,
    company: str | None = None,
    role: str | None = None,
    work_environment: str | None = None,
    number_of_staff: str | None = None,
    current_respirator: str | None = None,
    rep_name: str | None = None,
    comments: str | None = None,
    photo_filename: str | None = None,
    photo_size: int | None = None,
    photo_url: str | None = None,
) -> str:
    """Compose the ActiveCampaign note for a trade-show lead."""
    photo_info = ""
    if photo_url:
        size_kb = (photo_size or 0) / 1024
        photo_info = (
            f"Badge Photo: {photo_filename} ({size_kb:.2f} KB)\n\n"
            f"Badge Photo URL: {photo_url}\n\n"
        )

    note = (
        f"{heading} - {photo_info}Form Details:\n"
        f"Country: {country or 'N/A'}\n"
        f"Company: {company or 'N/A'}\n"
        f"Role: {role or 'N/A'}\n"
        f"Work Environment: {work_environment or 'N/A'}\n"
        f"Number of Staff: {number_of_staff or 'N/A'}\n"
        f"Current Respirator: {current_respirator or 'N/A'}"
    )
    if rep_name:
        note += f"\n\nRep: {rep_name}"
    if comments:
        note += f"\n\nDiscussion Comments:\n{comments}"
    return note
