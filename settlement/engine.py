"""
Settlement engine.

settle() applies an advertiser's audit decision to a pending submission.
Approval re-reads the submission, campaign and both accounts, reserves the
reward against the campaign budget, debits the advertiser, credits the
clipper, writes the two ledger entries and marks the submission paid, all
in one store transaction. Any failure along the way leaves every record as
it was.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union
from uuid import UUID

from . import accounts, budget, journal, state_machine
from .config import Settings
from .errors import ConflictRetryExhaustedError, MarketplaceError
from .models import (
    ApproveDecision,
    Campaign,
    RejectDecision,
    SettlementResponse,
    Submission,
    SubmissionStatus,
)
from .store import InMemoryStorage, Transaction

logger = logging.getLogger(__name__)


class SettlementEngine:
    def __init__(self, storage: InMemoryStorage, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or Settings()

    def settle(
        self,
        submission_id: UUID,
        decision: Union[ApproveDecision, RejectDecision],
        actor_id: UUID,
    ) -> SettlementResponse:
        apply = self._approve if isinstance(decision, ApproveDecision) else self._reject

        try:
            response = self.storage.run_transaction(
                lambda txn: apply(txn, submission_id, decision, actor_id),
                max_attempts=self.settings.max_attempts,
                backoff_seconds=self.settings.retry_backoff_seconds,
            )
        except ConflictRetryExhaustedError:
            raise
        except MarketplaceError as e:
            logger.warning(f"Settlement of submission {submission_id} refused ({type(e).__name__}): {e}")
            raise

        logger.info(
            f"Submission {submission_id} {response.submission.status.value} by {actor_id}"
            f" (reward {response.submission.reward_amount} {self.settings.currency})"
        )
        return response

    def _approve(
        self,
        txn: Transaction,
        submission_id: UUID,
        decision: ApproveDecision,
        actor_id: UUID,
    ) -> SettlementResponse:
        submission = state_machine.load_submission(txn, submission_id)
        state_machine.authorize(submission, actor_id)
        state_machine.ensure_transition(submission, SubmissionStatus.PAID)

        reward = state_machine.compute_reward(decision.audited_views, submission["rpm_snapshot"])
        now = datetime.now(timezone.utc)

        campaign = budget.reserve_spend(txn, submission["campaign_id"], reward)
        advertiser = accounts.debit(txn, submission["advertiser_id"], reward)
        clipper = accounts.credit(txn, submission["clipper_id"], reward)
        entries = journal.record_settlement(
            txn, submission, advertiser, clipper, reward, now, self.settings.currency
        )
        paid = state_machine.mark_paid(txn, submission, decision.audited_views, reward, now)

        return SettlementResponse(
            submission=Submission(**paid),
            campaign=Campaign(**campaign),
            entries=entries,
            message="Submission approved and paid",
        )

    def _reject(
        self,
        txn: Transaction,
        submission_id: UUID,
        decision: RejectDecision,
        actor_id: UUID,
    ) -> SettlementResponse:
        submission = state_machine.load_submission(txn, submission_id)
        state_machine.authorize(submission, actor_id)
        rejected = state_machine.mark_rejected(
            txn, submission, decision.reason, datetime.now(timezone.utc)
        )
        return SettlementResponse(
            submission=Submission(**rejected),
            message="Submission rejected",
        )
