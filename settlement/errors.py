class MarketplaceError(Exception):
    pass


class NotFoundError(MarketplaceError):
    pass


class UnauthorizedError(MarketplaceError):
    pass


class InvalidTransitionError(MarketplaceError):
    pass


class InsufficientFundsError(MarketplaceError):
    pass


class BudgetExceededError(MarketplaceError):
    pass


class DuplicateSubmissionError(MarketplaceError):
    pass


class CampaignInactiveError(MarketplaceError):
    pass


class ConflictRetryExhaustedError(MarketplaceError):
    """The store could not serialize a transaction within the attempt limit.

    Transient: the same request may succeed if sent again.
    """
