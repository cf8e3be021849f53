"""CRM integration layer -- credential resolution, CRM clients and reconciliation.

Provides:
- resolve_*_credentials: Build a CredentialBundle from tenant, tradeshow or env sources
- ActiveCampaignClient: Contacts, notes, tags and custom field values
- DynamicsClient: OAuth2 client-credentials auth, leads and system users
- match_rep: Ordered rule table resolving free-text rep names
- LeadOwnerJob / LeadDetailsJob / LeadSourceJob: Idempotent reconciliation passes

ActiveCampaign is the capture-side CRM; Dynamics 365 holds the sales leads.
Lead submission writes to both independently and best-effort.
"""

from src.leadsync.crm.activecampaign import ActiveCampaignClient
from src.leadsync.crm.adapter import CRMAdapter, adapter_for_connection
from src.leadsync.crm.credentials import (
    resolve_environment_credentials,
    resolve_tenant_credentials,
    resolve_tradeshow_credentials,
)
from src.leadsync.crm.dynamics import DynamicsClient, TokenCache
from src.leadsync.crm.matcher import Matched, NoMatch, RepRecord, match_rep
from src.leadsync.crm.reconcile import LeadDetailsJob, LeadOwnerJob, LeadSourceJob

__all__ = [
    "ActiveCampaignClient",
    "CRMAdapter",
    "DynamicsClient",
    "LeadDetailsJob",
    "LeadOwnerJob",
    "LeadSourceJob",
    "Matched",
    "NoMatch",
    "RepRecord",
    "TokenCache",
    "adapter_for_connection",
    "match_rep",
    "resolve_environment_credentials",
    "resolve_tenant_credentials",
    "resolve_tradeshow_credentials",
]
