#!/usr/bin/env python3
"""Copy country, company and comments from ActiveCampaign onto Dynamics leads and reset the lead topic.

Usage:
    python scripts/sync_lead_details.py                      # environment credentials
    python scripts/sync_lead_details.py <tradeshow-slug-or-id>
    python scripts/sync_lead_details.py --tenant <id-or-subdomain>

Connects to the database using DATABASE_URL from environment or .env file.
Exits 1 when credentials are missing or the run fails.
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


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("identifier", nargs="?", default=None, help="Tradeshow slug or numeric id")
    parser.add_argument("--tenant", default=None, help="Tenant id or subdomain (uses tenant CRM connections)")
    args = parser.parse_args()

    if args.identifier and args.tenant:
        parser.error("pass either a tradeshow identifier or --tenant, not both")

    from src.leadsync.api.middleware.logging import configure_structlog
    from src.leadsync.crm.runner import run_job

    configure_structlog()
    sys.exit(asyncio.run(run_job("lead_details", args.identifier, args.tenant)))


if __name__ == "__main__":
    main()
