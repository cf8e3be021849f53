#!/usr/bin/env python3
"""CLI script to inspect and migrate per-tradeshow CRM credentials.

Usage:
    python scripts/manage_credentials.py list
    python scripts/manage_credentials.py view <tradeshow-id-or-slug>
    python scripts/manage_credentials.py migrate-from-env <tradeshow-slug>

Connects directly to the database using DATABASE_URL from environment or .env file.
Secrets are masked in all output.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.leadsync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def mask(value: str | None) -> str:
    if not value:
        return "(not set)"
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


def show(value: str | None) -> str:
    return value or "(not set)"


async def list_tradeshows() -> int:
    from src.leadsync.core.database import session_scope
    from src.leadsync.crm.credentials import list_tradeshows_with_credentials

    async with session_scope() as session:
        tradeshows = await list_tradeshows_with_credentials(session)

    if not tradeshows:
        print("No active tradeshows.")
        return 0

    print(f"{'ID':>5}  {'Slug':<30} {'AC':<4} {'D365':<5} Name")
    for t in tradeshows:
        print(
            f"{t['id']:>5}  {t['slug']:<30} "
            f"{'yes' if t['has_ac_credentials'] else 'no':<4} "
            f"{'yes' if t['has_d365_credentials'] else 'no':<5} {t['name']}"
        )
    return 0


async def view(identifier: str) -> int:
    from src.leadsync.core.database import session_scope
    from src.leadsync.crm.credentials import get_tradeshow_credentials
    from src.leadsync.crm.errors import NotFoundError

    async with session_scope() as session:
        try:
            tradeshow, creds = await get_tradeshow_credentials(session, identifier)
        except NotFoundError as exc:
            print(f"ERROR: {exc}")
            return 1

    print(f"Tradeshow: {tradeshow.name} (id={tradeshow.id}, slug={tradeshow.slug})")
    if creds is None:
        print("  No credentials configured.")
        return 0

    print("ActiveCampaign:")
    print(f"  API URL:         {show(creds.ac_api_url)}")
    print(f"  API Key:         {mask(creds.ac_api_key)}")
    print(f"  Rep field:       {show(creds.ac_rep_field_id)}")
    print(f"  Country field:   {show(creds.ac_country_field_id)}")
    print(f"  Company field:   {show(creds.ac_company_field_id)}")
    print(f"  Comments field:  {show(creds.ac_comments_field_id)}")
    print("Dynamics 365:")
    print(f"  Tenant ID:       {show(creds.d365_tenant_id)}")
    print(f"  Client ID:       {show(creds.d365_client_id)}")
    print(f"  Client Secret:   {mask(creds.d365_client_secret)}")
    print(f"  Instance URL:    {show(creds.d365_instance_url)}")
    print(f"Lead topic format: {show(creds.lead_topic_format)}")
    return 0


async def migrate_from_env(slug: str) -> int:
    from src.leadsync.core.database import session_scope
    from src.leadsync.crm.credentials import migrate_environment_credentials
    from src.leadsync.crm.errors import MissingCredentialsError, NotFoundError

    async with session_scope() as session:
        try:
            creds = await migrate_environment_credentials(session, slug)
        except (MissingCredentialsError, NotFoundError) as exc:
            print(f"ERROR: {exc}")
            return 1

    print(f"Copied environment credentials to tradeshow {creds.tradeshow_id}.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage per-tradeshow CRM credentials")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List active tradeshows and which credentials they have")
    view_parser = sub.add_parser("view", help="Show one tradeshow's credentials (masked)")
    view_parser.add_argument("identifier", help="Tradeshow id or slug")
    migrate_parser = sub.add_parser("migrate-from-env", help="Copy environment credentials to a tradeshow")
    migrate_parser.add_argument("slug", help="Tradeshow slug")
    args = parser.parse_args()

    if args.command == "list":
        code = asyncio.run(list_tradeshows())
    elif args.command == "view":
        code = asyncio.run(view(args.identifier))
    else:
        code = asyncio.run(migrate_from_env(args.slug))
    sys.exit(code)


if __name__ == "__main__":
    main()
