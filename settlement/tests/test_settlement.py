"""
Unit Tests for the Settlement Engine

Tests cover:
1. Approval flow (reward, balances, budget, ledger entries)
2. Budget cap and insufficient funds aborts
3. Rejection flow
4. Terminal states and authorization
5. Retry exhaustion under constant conflicts
"""

import pytest
from decimal import Decimal
from uuid import UUID

from settlement.errors import (
    BudgetExceededError,
    ConflictRetryExhaustedError,
    InsufficientFundsError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
)
from settlement.models import (
    ApproveDecision,
    CreateCampaignRequest,
    CreateSubmissionRequest,
    EntryCategory,
    RegisterAccountRequest,
    RejectDecision,
    Role,
    SubmissionStatus,
)


class TestApprovalFlow:
    """Tests for approving a pending submission."""

    def test_approve_moves_funds(self, service, advertiser, clipper, campaign, submit):
        """Approving 20,000 views at rpm 10 pays exactly 200.00."""
        submission = submit(declared_views=25000)

        response = service.settle(submission.id, ApproveDecision(audited_views=20000), advertiser.id)

        assert response.submission.status == SubmissionStatus.PAID
        assert response.submission.reward_amount == Decimal("200.00")
        assert response.submission.audited_views == 20000
        assert response.submission.declared_views == 25000
        assert response.submission.decided_at is not None

        assert service.get_account(advertiser.id).balance == Decimal("300.00")
        assert service.get_account(clipper.id).balance == Decimal("200.00")
        assert service.get_campaign(campaign.id).spent == Decimal("200.00")
        assert response.campaign.spent == Decimal("200.00")

    def test_approve_writes_balanced_entries(self, service, advertiser, clipper, submit):
        """The settlement writes one debit and one credit that sum to zero."""
        submission = submit()

        response = service.settle(submission.id, ApproveDecision(audited_views=20000), advertiser.id)

        debit, credit = response.entries
        assert debit.category == EntryCategory.DEBIT_SETTLEMENT
        assert debit.account_id == advertiser.id
        assert debit.amount == Decimal("-200.00")
        assert debit.balance_after == Decimal("300.00")
        assert credit.category == EntryCategory.CREDIT_SETTLEMENT
        assert credit.account_id == clipper.id
        assert credit.amount == Decimal("200.00")
        assert debit.submission_id == credit.submission_id == submission.id
        assert debit.amount + credit.amount == Decimal("0")

    def test_reward_uses_rate_snapshot(self, service, advertiser, campaign, submit):
        """A rate stored on the submission is used even if the campaign changes later."""
        submission = submit()
        # Simulate a later rate change on the campaign record.
        txn = service.storage.transaction()
        txn.get("campaigns", campaign.id)
        txn.update("campaigns", campaign.id, {"rpm": Decimal("50.00")})
        txn.commit()

        response = service.settle(submission.id, ApproveDecision(audited_views=1000), advertiser.id)

        assert response.submission.rpm_snapshot == Decimal("10.00")
        assert response.submission.reward_amount == Decimal("10.00")

    def test_zero_audited_views(self, service, advertiser, clipper, submit):
        """Auditing zero views closes the submission with no money moved."""
        submission = submit()

        response = service.settle(submission.id, ApproveDecision(audited_views=0), advertiser.id)

        assert response.submission.status == SubmissionStatus.PAID
        assert response.submission.reward_amount == Decimal("0.00")
        assert service.get_account(advertiser.id).balance == Decimal("500.00")
        assert service.get_account(clipper.id).balance == Decimal("0.00")


class TestApprovalAborts:
    """Tests for approvals that must leave every record unchanged."""

    def test_budget_exceeded(self, service, advertiser, clipper, campaign, submit):
        """A reward that would push spent past the total is refused."""
        first = submit()
        service.settle(first.id, ApproveDecision(audited_views=20000), advertiser.id)
        second = submit()

        # 200 + 900 > 1000; the budget is checked before the balance.
        with pytest.raises(BudgetExceededError):
            service.settle(second.id, ApproveDecision(audited_views=90000), advertiser.id)

        assert service.get_campaign(campaign.id).spent == Decimal("200.00")
        assert service.get_account(advertiser.id).balance == Decimal("300.00")
        assert service.get_account(clipper.id).balance == Decimal("200.00")
        assert service.get_submission(second.id).status == SubmissionStatus.PENDING

    def test_budget_exactly_exhausted(self, service, submit):
        """spent may reach the total but not pass it."""
        rich = service.register_account(RegisterAccountRequest(
            role=Role.ADVERTISER, email="rich@example.com", initial_bonus=Decimal("5000.00"),
        ))
        big = service.create_campaign(rich.id, CreateCampaignRequest(
            title="Capped", rpm=Decimal("10.00"), total_budget=Decimal("1000.00"),
        ))
        first = submit(campaign_id=big.id)
        second = submit(campaign_id=big.id)

        service.settle(first.id, ApproveDecision(audited_views=100000), rich.id)
        with pytest.raises(BudgetExceededError):
            service.settle(second.id, ApproveDecision(audited_views=100), rich.id)

        assert service.get_campaign(big.id).spent == Decimal("1000.00")
        assert service.get_campaign(big.id).remaining_budget == Decimal("0.00")

    def test_insufficient_funds(self, service, advertiser, clipper, campaign, submit):
        """A reward above the advertiser's balance is refused without side effects."""
        submission = submit()

        with pytest.raises(InsufficientFundsError):
            service.settle(submission.id, ApproveDecision(audited_views=60000), advertiser.id)

        assert service.get_account(advertiser.id).balance == Decimal("500.00")
        assert service.get_account(clipper.id).balance == Decimal("0.00")
        assert service.get_campaign(campaign.id).spent == Decimal("0.00")
        assert service.get_submission(submission.id).status == SubmissionStatus.PENDING
        assert service.get_ledger_history(clipper.id).total_count == 0

    def test_exact_balance_is_enough(self, service, advertiser, submit):
        """An advertiser may spend their balance down to zero."""
        submission = submit()

        service.settle(submission.id, ApproveDecision(audited_views=50000), advertiser.id)

        assert service.get_account(advertiser.id).balance == Decimal("0.00")


class TestRejectionFlow:
    """Tests for rejecting a pending submission."""

    def test_reject_pending(self, service, advertiser, clipper, campaign, submit):
        """Rejection stores the reason and moves no money."""
        submission = submit()

        response = service.settle(submission.id, RejectDecision(reason="Views look botted"), advertiser.id)

        assert response.submission.status == SubmissionStatus.REJECTED
        assert response.submission.rejection_reason == "Views look botted"
        assert response.submission.decided_at is not None
        assert response.entries == []
        assert service.get_account(advertiser.id).balance == Decimal("500.00")
        assert service.get_campaign(campaign.id).spent == Decimal("0.00")

    def test_cannot_reject_twice(self, service, advertiser, submit):
        """A second rejection fails and keeps the first reason."""
        submission = submit()
        service.settle(submission.id, RejectDecision(reason="First"), advertiser.id)

        with pytest.raises(InvalidTransitionError):
            service.settle(submission.id, RejectDecision(reason="Second"), advertiser.id)

        assert service.get_submission(submission.id).rejection_reason == "First"


class TestTerminalStates:
    """Tests for transitions out of paid and rejected."""

    def test_cannot_approve_twice(self, service, advertiser, clipper, campaign, submit):
        """A paid submission cannot be paid again."""
        submission = submit()
        service.settle(submission.id, ApproveDecision(audited_views=20000), advertiser.id)

        with pytest.raises(InvalidTransitionError):
            service.settle(submission.id, ApproveDecision(audited_views=20000), advertiser.id)

        assert service.get_account(clipper.id).balance == Decimal("200.00")
        assert service.get_campaign(campaign.id).spent == Decimal("200.00")

    def test_cannot_reject_paid(self, service, advertiser, submit):
        """A paid submission cannot be rejected."""
        submission = submit()
        service.settle(submission.id, ApproveDecision(audited_views=1000), advertiser.id)

        with pytest.raises(InvalidTransitionError):
            service.settle(submission.id, RejectDecision(reason="Too late"), advertiser.id)

        assert service.get_submission(submission.id).status == SubmissionStatus.PAID

    def test_cannot_approve_rejected(self, service, advertiser, clipper, submit):
        """A rejected submission cannot be approved afterwards."""
        submission = submit()
        service.settle(submission.id, RejectDecision(reason="Wrong brand"), advertiser.id)

        with pytest.raises(InvalidTransitionError):
            service.settle(submission.id, ApproveDecision(audited_views=1000), advertiser.id)

        assert service.get_account(clipper.id).balance == Decimal("0.00")


class TestAuthorization:
    """Tests for who may settle a submission."""

    def test_other_advertiser_cannot_settle(self, service, advertiser, submit):
        """Only the submission's own advertiser may audit it."""
        other = service.register_account(RegisterAccountRequest(
            role=Role.ADVERTISER, email="other@example.com", initial_bonus=Decimal("1000.00"),
        ))
        submission = submit()

        with pytest.raises(UnauthorizedError):
            service.settle(submission.id, ApproveDecision(audited_views=1000), other.id)
        with pytest.raises(UnauthorizedError):
            service.settle(submission.id, RejectDecision(reason="Nope"), other.id)

        assert service.get_submission(submission.id).status == SubmissionStatus.PENDING

    def test_clipper_cannot_approve_own_submission(self, service, clipper, submit):
        """The clipper who submitted cannot approve the claim."""
        submission = submit()

        with pytest.raises(UnauthorizedError):
            service.settle(submission.id, ApproveDecision(audited_views=1000), clipper.id)

    def test_unknown_submission(self, service, advertiser):
        """Settling a submission that does not exist fails with NotFoundError."""
        fake_id = UUID("00000000-0000-0000-0000-000000000000")

        with pytest.raises(NotFoundError):
            service.settle(fake_id, ApproveDecision(audited_views=1000), advertiser.id)


class TestRetryExhaustion:
    """Tests for settlements the store cannot serialize."""

    def _pending(self, service):
        advertiser = service.register_account(RegisterAccountRequest(
            role=Role.ADVERTISER, email="brand@example.com", initial_bonus=Decimal("500.00"),
        ))
        clipper = service.register_account(RegisterAccountRequest(role=Role.CLIPPER, email="c@example.com"))
        campaign = service.create_campaign(advertiser.id, CreateCampaignRequest(
            title="Busy", rpm=Decimal("10.00"), total_budget=Decimal("1000.00"),
        ))
        submission = service.create_submission(clipper.id, CreateSubmissionRequest(
            campaign_id=campaign.id, video_link="https://v/busy", declared_views=20000,
        ))
        return advertiser, clipper, campaign, submission

    def test_conflicts_surface_after_default_attempts(self, contended_service, caplog):
        """Losing every attempt raises ConflictRetryExhaustedError and changes nothing."""
        advertiser, clipper, campaign, submission = self._pending(contended_service)
        contended_service.storage.stale_reads = True

        with caplog.at_level("DEBUG"):
            with pytest.raises(ConflictRetryExhaustedError):
                contended_service.settle(submission.id, ApproveDecision(audited_views=20000), advertiser.id)

        conflicts = [r for r in caplog.records if "conflicted" in r.getMessage()]
        assert len(conflicts) == contended_service.settings.max_attempts
        assert contended_service.get_account(advertiser.id).balance == Decimal("500.00")
        assert contended_service.get_account(clipper.id).balance == Decimal("0.00")
        assert contended_service.get_campaign(campaign.id).spent == Decimal("0.00")
        assert contended_service.get_submission(submission.id).status == SubmissionStatus.PENDING

    def test_exhaustion_is_not_logged_as_refusal(self, contended_service, caplog):
        """Exhaustion is an ERROR from the store, not a WARNING refusal from the engine."""
        advertiser, _, _, submission = self._pending(contended_service)
        contended_service.storage.stale_reads = True

        with pytest.raises(ConflictRetryExhaustedError):
            contended_service.settle(submission.id, RejectDecision(reason="Late"), advertiser.id)

        assert not [r for r in caplog.records if r.name == "settlement.engine" and r.levelname == "WARNING"]
        assert [r for r in caplog.records if r.name == "settlement.store" and r.levelname == "ERROR"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
