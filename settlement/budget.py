from decimal import Decimal
from uuid import UUID

from .errors import BudgetExceededError, NotFoundError
from .models import to_money
from .store import CAMPAIGNS, Transaction


def load_campaign(txn: Transaction, campaign_id: UUID) -> dict:
    campaign = txn.get(CAMPAIGNS, campaign_id)
    if campaign is None:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    return campaign


def reserve_spend(txn: Transaction, campaign_id: UUID, amount: Decimal) -> dict:
    """Add amount to the campaign's spent total if the cap allows it.

    spent and total_budget are read through the transaction, so a
    concurrent reservation on the same campaign forces a retry instead of
    both passing the check.
    """
    if amount < 0:
        raise ValueError(f"Reserved amount must not be negative, got {amount}")
    campaign = load_campaign(txn, campaign_id)
    new_spent = to_money(campaign["spent"] + amount)
    if new_spent > campaign["total_budget"]:
        raise BudgetExceededError(
            f"Campaign {campaign_id} has {campaign['total_budget'] - campaign['spent']} "
            f"left of {campaign['total_budget']}, cannot reserve {amount}"
        )
    return txn.update(CAMPAIGNS, campaign_id, {"spent": new_spent})
