"""
Account balance primitives.

credit() and debit() take the live Transaction of the settlement they
belong to, so a balance never moves outside a transaction.
"""

from decimal import Decimal
from uuid import UUID

from .errors import InsufficientFundsError, NotFoundError
from .models import to_money
from .store import ACCOUNTS, Transaction


def load_account(txn: Transaction, account_id: UUID) -> dict:
    account = txn.get(ACCOUNTS, account_id)
    if account is None:
        raise NotFoundError(f"Account {account_id} not found")
    return account


def credit(txn: Transaction, account_id: UUID, amount: Decimal) -> dict:
    if amount < 0:
        raise ValueError(f"Credit amount must not be negative, got {amount}")
    account = load_account(txn, account_id)
    new_balance = to_money(account["balance"] + amount)
    return txn.update(ACCOUNTS, account_id, {"balance": new_balance})


def debit(txn: Transaction, account_id: UUID, amount: Decimal) -> dict:
    if amount < 0:
        raise ValueError(f"Debit amount must not be negative, got {amount}")
    account = load_account(txn, account_id)
    new_balance = to_money(account["balance"] - amount)
    if new_balance < 0:
        raise InsufficientFundsError(
            f"Account {account_id} balance {account['balance']} cannot cover {amount}"
        )
    return txn.update(ACCOUNTS, account_id, {"balance": new_balance})
