"""Trade-show lead capture: persistence and the submission flow.

Provides:
- LeadRepository: tenant-scoped storage for captures and badge photos
- LeadSubmissionService: local write first, then best-effort CRM sync
"""

from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.schemas import BadgePhotoUpload, LeadSubmission, SubmissionResult
from src.leadsync.leads.service import (
    LeadSubmissionService,
    SubmissionValidationError,
    TradeshowNotFoundError,
)

__all__ = [
    "BadgePhotoUpload",
    "LeadRepository",
    "LeadSubmission",
    "LeadSubmissionService",
    "SubmissionResult",
    "SubmissionValidationError",
    "TradeshowNotFoundError",
]
