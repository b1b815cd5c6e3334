import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Union
from uuid import UUID, uuid4

from . import accounts, budget, journal
from .config import Settings
from .engine import SettlementEngine
from .errors import (
    CampaignInactiveError,
    DuplicateSubmissionError,
    NotFoundError,
    UnauthorizedError,
)
from .models import (
    Account,
    ApproveDecision,
    Campaign,
    CampaignStatus,
    CreateCampaignRequest,
    CreateSubmissionRequest,
    EntryCategory,
    LedgerHistoryResponse,
    ReconciliationReport,
    RegisterAccountRequest,
    RejectDecision,
    Role,
    SettlementResponse,
    Submission,
    SubmissionStatus,
    to_money,
)
from .store import (
    ACCOUNTS,
    CAMPAIGNS,
    SUBMISSIONS,
    InMemoryStorage,
    Subscription,
    UniqueConstraintError,
)

logger = logging.getLogger(__name__)


def _present(**filters) -> dict:
    return {field: value for field, value in filters.items() if value is not None}


class MarketplaceService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        if storage is None:
            unique = {SUBMISSIONS: ("campaign_id", "video_link")} if self.settings.unique_video_links else {}
            storage = InMemoryStorage(unique_fields=unique)
        self.storage = storage
        self.engine = SettlementEngine(self.storage, self.settings)

    def _run(self, fn):
        return self.storage.run_transaction(
            fn,
            max_attempts=self.settings.max_attempts,
            backoff_seconds=self.settings.retry_backoff_seconds,
        )

    def register_account(self, request: RegisterAccountRequest) -> Account:
        bonus = request.initial_bonus
        if bonus is None:
            bonus = self.settings.advertiser_bonus if request.role == Role.ADVERTISER else self.settings.clipper_bonus
        bonus = to_money(bonus)

        def work(txn):
            now = datetime.now(timezone.utc)
            account_data = {
                "id": uuid4(),
                "role": request.role,
                "email": request.email,
                "display_name": request.display_name,
                "balance": to_money(0),
                "pix_key": request.pix_key,
                "created_at": now,
            }
            txn.insert(ACCOUNTS, account_data)
            if bonus > 0:
                account_data = accounts.credit(txn, account_data["id"], bonus)
                journal.append(
                    txn, account_data, bonus, EntryCategory.INITIAL_BONUS,
                    "Initial bonus", now, self.settings.currency,
                )
            return Account(**account_data)

        account = self._run(work)
        logger.info(f"Registered {account.role.value} account {account.id} with balance {account.balance}")
        return account

    def create_campaign(self, advertiser_id: UUID, request: CreateCampaignRequest) -> Campaign:
        def work(txn):
            advertiser = accounts.load_account(txn, advertiser_id)
            if advertiser["role"] != Role.ADVERTISER:
                raise UnauthorizedError(f"Account {advertiser_id} is not an advertiser")
            campaign_data = {
                "id": uuid4(),
                "advertiser_id": advertiser_id,
                "title": request.title,
                "rpm": to_money(request.rpm),
                "total_budget": to_money(request.total_budget),
                "spent": to_money(0),
                "status": CampaignStatus.ACTIVE,
                "rules": request.rules,
                "created_at": datetime.now(timezone.utc),
            }
            txn.insert(CAMPAIGNS, campaign_data)
            return Campaign(**campaign_data)

        campaign = self._run(work)
        logger.info(f"Campaign {campaign.id} created by {advertiser_id} (rpm {campaign.rpm}, budget {campaign.total_budget})")
        return campaign

    def set_campaign_status(self, advertiser_id: UUID, campaign_id: UUID, status: CampaignStatus) -> Campaign:
        def work(txn):
            campaign = budget.load_campaign(txn, campaign_id)
            if campaign["advertiser_id"] != advertiser_id:
                raise UnauthorizedError(f"Account {advertiser_id} does not own campaign {campaign_id}")
            return Campaign(**txn.update(CAMPAIGNS, campaign_id, {"status": status}))

        return self._run(work)

    def create_submission(self, clipper_id: UUID, request: CreateSubmissionRequest) -> Submission:
        def work(txn):
            clipper = accounts.load_account(txn, clipper_id)
            if clipper["role"] != Role.CLIPPER:
                raise UnauthorizedError(f"Account {clipper_id} is not a clipper")
            campaign = budget.load_campaign(txn, request.campaign_id)
            if campaign["status"] != CampaignStatus.ACTIVE:
                raise CampaignInactiveError(f"Campaign {request.campaign_id} is not accepting submissions")
            submission_data = {
                "id": uuid4(),
                "campaign_id": campaign["id"],
                "clipper_id": clipper_id,
                "advertiser_id": campaign["advertiser_id"],
                "video_link": request.video_link,
                "declared_views": request.declared_views,
                "rpm_snapshot": campaign["rpm"],
                "audited_views": None,
                "reward_amount": to_money(0),
                "status": SubmissionStatus.PENDING,
                "created_at": datetime.now(timezone.utc),
                "decided_at": None,
                "rejection_reason": None,
            }
            txn.insert(SUBMISSIONS, submission_data)
            return Submission(**submission_data)

        try:
            submission = self._run(work)
        except UniqueConstraintError:
            raise DuplicateSubmissionError(
                f"{request.video_link} was already submitted to campaign {request.campaign_id}"
            )
        logger.info(f"Submission {submission.id} from {clipper_id} pending on campaign {submission.campaign_id}")
        return submission

    def settle(
        self,
        submission_id: UUID,
        decision: Union[ApproveDecision, RejectDecision],
        actor_id: UUID,
    ) -> SettlementResponse:
        return self.engine.settle(submission_id, decision, actor_id)

    def get_account(self, account_id: UUID) -> Account:
        account_data = self.storage.get(ACCOUNTS, account_id)
        if not account_data:
            raise NotFoundError(f"Account {account_id} not found")
        return Account(**account_data)

    def get_campaign(self, campaign_id: UUID) -> Campaign:
        campaign_data = self.storage.get(CAMPAIGNS, campaign_id)
        if not campaign_data:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return Campaign(**campaign_data)

    def get_submission(self, submission_id: UUID) -> Submission:
        submission_data = self.storage.get(SUBMISSIONS, submission_id)
        if not submission_data:
            raise NotFoundError(f"Submission {submission_id} not found")
        return Submission(**submission_data)

    def list_campaigns(
        self,
        advertiser_id: Optional[UUID] = None,
        status: Optional[CampaignStatus] = None,
    ) -> list[Campaign]:
        rows = self.storage.query(
            CAMPAIGNS, _present(advertiser_id=advertiser_id, status=status),
            order_by="created_at", descending=True,
        )
        return [Campaign(**r) for r in rows]

    def list_submissions(
        self,
        campaign_id: Optional[UUID] = None,
        clipper_id: Optional[UUID] = None,
        advertiser_id: Optional[UUID] = None,
        status: Optional[SubmissionStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Submission]:
        filters = _present(
            campaign_id=campaign_id, clipper_id=clipper_id,
            advertiser_id=advertiser_id, status=status,
        )
        rows = self.storage.query(
            SUBMISSIONS, filters, order_by="created_at", descending=True, limit=limit, offset=offset,
        )
        return [Submission(**r) for r in rows]

    def watch_submissions(
        self,
        callback: Callable[[list[Submission]], None],
        campaign_id: Optional[UUID] = None,
        clipper_id: Optional[UUID] = None,
        advertiser_id: Optional[UUID] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> Subscription:
        """Live version of list_submissions.

        callback receives the full matching list right away and again after
        every committed change to submissions. Call unsubscribe() on the
        returned handle to stop.
        """
        filters = _present(
            campaign_id=campaign_id, clipper_id=clipper_id,
            advertiser_id=advertiser_id, status=status,
        )
        return self.storage.subscribe(
            SUBMISSIONS,
            lambda rows: callback([Submission(**r) for r in rows]),
            filters=filters, order_by="created_at", descending=True,
        )

    def get_ledger_history(self, account_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        account = self.get_account(account_id)
        return journal.history(self.storage, account_id, account.balance, limit, offset)

    def reconcile_account(self, account_id: UUID) -> ReconciliationReport:
        account_data = self.storage.get(ACCOUNTS, account_id)
        if not account_data:
            raise NotFoundError(f"Account {account_id} not found")
        report = journal.reconcile(self.storage, account_data)
        if not report.balanced:
            logger.error(
                f"Account {account_id} balance {report.balance} does not match ledger total {report.ledger_total}"
            )
        return report
