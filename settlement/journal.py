"""
Append-only transaction log.

One LedgerEntry per account touched by a monetary movement. Entries are
inserted through the same Transaction as the balance change they record
and are never updated afterwards.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .models import EntryCategory, LedgerEntry, LedgerHistoryResponse, ReconciliationReport, to_money
from .store import LEDGER_ENTRIES, InMemoryStorage, Transaction


def append(
    txn: Transaction,
    account: dict,
    amount: Decimal,
    category: EntryCategory,
    description: str,
    now: datetime,
    currency: str,
    submission_id: Optional[UUID] = None,
) -> LedgerEntry:
    entry_data = {
        "id": uuid4(),
        "account_id": account["id"],
        "amount": amount,
        "currency": currency,
        "category": category,
        "submission_id": submission_id,
        "balance_after": account["balance"],
        "description": description,
        "created_at": now,
    }
    txn.insert(LEDGER_ENTRIES, entry_data)
    return LedgerEntry(**entry_data)


def record_settlement(
    txn: Transaction,
    submission: dict,
    advertiser: dict,
    clipper: dict,
    reward: Decimal,
    now: datetime,
    currency: str,
) -> list[LedgerEntry]:
    """Write the debit/credit pair for an approved submission. The pair sums to zero."""
    debit_entry = append(
        txn, advertiser, -reward, EntryCategory.DEBIT_SETTLEMENT,
        f"Payout for submission {submission['id']}", now, currency, submission["id"],
    )
    credit_entry = append(
        txn, clipper, reward, EntryCategory.CREDIT_SETTLEMENT,
        f"Reward for submission {submission['id']}", now, currency, submission["id"],
    )
    return [debit_entry, credit_entry]


def entries_for_submission(storage: InMemoryStorage, submission_id: UUID) -> list[LedgerEntry]:
    return [
        LedgerEntry(**e) for e in storage.query(
            LEDGER_ENTRIES, {"submission_id": submission_id}, order_by="created_at"
        )
    ]


def history(
    storage: InMemoryStorage,
    account_id: UUID,
    current_balance: Decimal,
    limit: int = 50,
    offset: int = 0,
) -> LedgerHistoryResponse:
    entries = storage.query(
        LEDGER_ENTRIES, {"account_id": account_id},
        order_by="created_at", descending=True, limit=limit, offset=offset,
    )
    return LedgerHistoryResponse(
        account_id=account_id,
        entries=[LedgerEntry(**e) for e in entries],
        total_count=storage.count(LEDGER_ENTRIES, {"account_id": account_id}),
        current_balance=current_balance,
    )


def reconcile(storage: InMemoryStorage, account: dict) -> ReconciliationReport:
    entries = storage.query(LEDGER_ENTRIES, {"account_id": account["id"]})
    ledger_total = to_money(sum((e["amount"] for e in entries), Decimal("0.00")))
    return ReconciliationReport(
        account_id=account["id"],
        balance=account["balance"],
        ledger_total=ledger_total,
        total_entries=len(entries),
        balanced=account["balance"] == ledger_total,
    )
