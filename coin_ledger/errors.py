"""
Ledger Error Types

Every failure a ledger operation can report. Validation and authorization
errors are raised before the store is touched; StoreError wraps whatever the
backend raised.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for all ledger errors"""


class ValidationError(LedgerError):
    """Command parameters are malformed or outside their domain"""

    INVALID_AMOUNT = "invalid_amount"
    SELF_TRANSFER = "self_transfer"
    BOT_TARGET = "bot_target"
    MISSING_OPTION = "missing_option"
    ZERO_DELTA = "zero_delta"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class AuthorizationError(LedgerError):
    """Invoking principal lacks the required capability"""


class InsufficientFundsError(LedgerError):
    """A debit would take the account below zero"""

    def __init__(self, account_id: str, balance: int, requested: int):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Account {account_id} has {balance}, cannot debit {requested}"
        )


class StoreError(LedgerError):
    """The backing store failed (network, timeout, unavailable)"""


class TransactionContentionError(StoreError):
    """atomic_update gave up after too many concurrent-write collisions"""

    def __init__(self, account_id: str, attempts: int):
        self.account_id = account_id
        self.attempts = attempts
        super().__init__(
            f"Gave up updating {account_id} after {attempts} conflicting attempts"
        )
