"""ORM models. Importing this package registers every table on Base.metadata."""

from src.leadsync.models.crm import TenantCRMConnection, TradeshowCredentials
from src.leadsync.models.tenant import (
    AuditLog,
    BadgePhoto,
    LeadCapture,
    Tenant,
    Tradeshow,
    User,
)

__all__ = [
    "AuditLog",
    "BadgePhoto",
    "LeadCapture",
    "Tenant",
    "TenantCRMConnection",
    "Tradeshow",
    "TradeshowCredentials",
    "User",
]
