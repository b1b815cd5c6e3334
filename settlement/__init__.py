"""
Settlement Engine for a Pay-per-View Clipping Marketplace

This package provides:
- Advertiser and clipper accounts with balances
- Campaigns with a reward rate (per 1,000 views) and a spending cap
- Submission lifecycle: pending → paid / rejected
- Atomic settlement of audit decisions with retry on concurrent conflicts
- Append-only ledger entries for history and reconciliation
"""

from .config import Settings
from .engine import SettlementEngine
from .errors import (
    BudgetExceededError,
    CampaignInactiveError,
    ConflictRetryExhaustedError,
    DuplicateSubmissionError,
    InsufficientFundsError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    UnauthorizedError,
)
from .models import (
    Account,
    ApproveDecision,
    Campaign,
    CampaignStatus,
    EntryCategory,
    LedgerEntry,
    RejectDecision,
    Role,
    Submission,
    SubmissionStatus,
)
from .service import MarketplaceService
from .store import InMemoryStorage

__all__ = [
    "Settings",
    "SettlementEngine",
    "MarketplaceService",
    "InMemoryStorage",
    "Account",
    "ApproveDecision",
    "Campaign",
    "CampaignStatus",
    "EntryCategory",
    "LedgerEntry",
    "RejectDecision",
    "Role",
    "Submission",
    "SubmissionStatus",
    "MarketplaceError",
    "NotFoundError",
    "UnauthorizedError",
    "InvalidTransitionError",
    "InsufficientFundsError",
    "BudgetExceededError",
    "DuplicateSubmissionError",
    "CampaignInactiveError",
    "ConflictRetryExhaustedError",
]
