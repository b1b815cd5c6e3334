from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


class Role(str, Enum):
    ADVERTISER = "advertiser"
    CLIPPER = "clipper"


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REJECTED = "rejected"


class EntryCategory(str, Enum):
    CREDIT_SETTLEMENT = "credit-settlement"
    DEBIT_SETTLEMENT = "debit-settlement"
    INITIAL_BONUS = "initial-bonus"


class RegisterAccountRequest(BaseModel):
    role: Role
    email: str
    display_name: Optional[str] = None
    pix_key: Optional[str] = None
    initial_bonus: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2, description="Defaults to the configured bonus for the role")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "role": "advertiser",
            "email": "brand@example.com",
            "display_name": "Brand Inc",
            "initial_bonus": 500.00,
        }
    })


class CreateCampaignRequest(BaseModel):
    title: str = Field(..., min_length=1)
    rpm: Decimal = Field(..., gt=0, decimal_places=2, description="Reward per 1,000 verified views")
    total_budget: Decimal = Field(..., gt=0, decimal_places=2)
    rules: str = ""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Summer launch clips",
            "rpm": 10.00,
            "total_budget": 1000.00,
            "rules": "Vertical video, at least 15 seconds, tag the brand",
        }
    })


class CampaignStatusRequest(BaseModel):
    status: CampaignStatus


class CreateSubmissionRequest(BaseModel):
    campaign_id: UUID
    video_link: str = Field(..., min_length=1)
    declared_views: int = Field(..., ge=0)


class ApproveDecision(BaseModel):
    action: Literal["approve"] = "approve"
    audited_views: int = Field(..., ge=0)


class RejectDecision(BaseModel):
    action: Literal["reject"] = "reject"
    reason: str = Field(..., min_length=1)


Decision = Annotated[Union[ApproveDecision, RejectDecision], Field(discriminator="action")]


class SettleRequest(BaseModel):
    decision: Decision


class Account(BaseModel):
    id: UUID
    role: Role
    email: str
    display_name: Optional[str] = None
    balance: Decimal
    pix_key: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Campaign(BaseModel):
    id: UUID
    advertiser_id: UUID
    title: str
    rpm: Decimal
    total_budget: Decimal
    spent: Decimal
    status: CampaignStatus
    rules: str = ""
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def remaining_budget(self) -> Decimal:
        return self.total_budget - self.spent

    def accepts_submissions(self) -> bool:
        return self.status == CampaignStatus.ACTIVE


class Submission(BaseModel):
    id: UUID
    campaign_id: UUID
    clipper_id: UUID
    advertiser_id: UUID
    video_link: str
    declared_views: int
    rpm_snapshot: Decimal
    audited_views: Optional[int] = None
    reward_amount: Decimal = Decimal("0.00")
    status: SubmissionStatus
    created_at: datetime
    decided_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def is_terminal(self) -> bool:
        return self.status != SubmissionStatus.PENDING


class LedgerEntry(BaseModel):
    id: UUID
    account_id: UUID
    amount: Decimal
    currency: str = "BRL"
    category: EntryCategory
    submission_id: Optional[UUID] = None
    balance_after: Decimal
    description: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SettlementResponse(BaseModel):
    submission: Submission
    campaign: Optional[Campaign] = None
    entries: list[LedgerEntry] = Field(default_factory=list)
    message: str


class LedgerHistoryResponse(BaseModel):
    account_id: UUID
    entries: list[LedgerEntry]
    total_count: int
    current_balance: Decimal


class ReconciliationReport(BaseModel):
    account_id: UUID
    balance: Decimal
    ledger_total: Decimal
    total_entries: int
    balanced: bool
