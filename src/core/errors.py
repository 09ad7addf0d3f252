"""
Ledger Error Taxonomy

Request errors mean the caller asked for something invalid. Operational
faults mean the ledger could not reach a committed state. Their message is
generic and the underlying cause is only logged.

Business rejections (insufficient balance, daily/monthly limit) are not
exceptions. They are returned on DeductionResult.
"""


class LedgerError(Exception):
    """Base class for all credit ledger errors."""
    pass


class LedgerRequestError(LedgerError):
    """The request itself is invalid."""
    pass


class AccountNotFoundError(LedgerRequestError):
    """No credit account exists for the user."""

    def __init__(self, user_id: str):
        super().__init__(f"No credit account for user {user_id}")
        self.user_id = user_id


class UnknownServiceError(LedgerRequestError):
    """The service type is not priced in the cost catalog."""

    def __init__(self, service_type: str):
        super().__init__(f"Unknown service type: {service_type}")
        self.service_type = service_type


class InvalidAmountError(LedgerRequestError):
    """Grant amounts must be positive integers."""

    def __init__(self, amount):
        super().__init__(f"Invalid credit amount: {amount!r}")
        self.amount = amount


class LedgerUnavailableError(LedgerError):
    """The ledger could not commit (storage failure or exhausted retries)."""

    def __init__(self, message: str = "Credit ledger temporarily unavailable"):
        super().__init__(message)


class CatalogConfigError(LedgerError):
    """The cost catalog configuration is malformed."""
    pass
