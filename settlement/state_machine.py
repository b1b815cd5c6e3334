"""
Submission lifecycle: pending -> paid | rejected.

Both targets are terminal. Only the submission's advertiser may move it.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from .errors import InvalidTransitionError, NotFoundError, UnauthorizedError
from .models import SubmissionStatus, to_money
from .store import SUBMISSIONS, Transaction

TRANSITIONS = {
    SubmissionStatus.PENDING: {SubmissionStatus.PAID, SubmissionStatus.REJECTED},
    SubmissionStatus.PAID: set(),
    SubmissionStatus.REJECTED: set(),
}


def compute_reward(audited_views: int, rpm_snapshot: Decimal) -> Decimal:
    return to_money(Decimal(audited_views) / 1000 * rpm_snapshot)


def can_transition(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    return target in TRANSITIONS[SubmissionStatus(current)]


def load_submission(txn: Transaction, submission_id: UUID) -> dict:
    submission = txn.get(SUBMISSIONS, submission_id)
    if submission is None:
        raise NotFoundError(f"Submission {submission_id} not found")
    return submission


def authorize(submission: dict, actor_id: UUID) -> None:
    if submission["advertiser_id"] != actor_id:
        raise UnauthorizedError(
            f"Account {actor_id} is not the advertiser of submission {submission['id']}"
        )


def ensure_transition(submission: dict, target: SubmissionStatus) -> None:
    current = SubmissionStatus(submission["status"])
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move submission {submission['id']} from {current.value} to {target.value}"
        )


def mark_paid(txn: Transaction, submission: dict, audited_views: int, reward: Decimal, now: datetime) -> dict:
    ensure_transition(submission, SubmissionStatus.PAID)
    return txn.update(SUBMISSIONS, submission["id"], {
        "status": SubmissionStatus.PAID,
        "audited_views": audited_views,
        "reward_amount": reward,
        "decided_at": now,
    })


def mark_rejected(txn: Transaction, submission: dict, reason: str, now: datetime) -> dict:
    ensure_transition(submission, SubmissionStatus.REJECTED)
    return txn.update(SUBMISSIONS, submission["id"], {
        "status": SubmissionStatus.REJECTED,
        "rejection_reason": reason,
        "decided_at": now,
    })
