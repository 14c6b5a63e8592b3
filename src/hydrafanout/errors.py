"""
hydrafanout/errors.py

Exception types raised by hydrafanout.
"""

from typing import Optional


class FanoutError(Exception):
    """Base class for all hydrafanout errors."""
    pass


class ValidationError(FanoutError):
    """Bad input, detected before any network call."""
    pass


class OversizedOperationError(FanoutError):
    """An operation is larger than a whole batch may be."""

    def __init__(self, size: int, limit: int, member: Optional[str] = None):
        self.size = size
        self.limit = limit
        self.member = member
        who = f" for {member}" if member else ""
        super().__init__(
            f"Operation{who} has size {size}, larger than max_operations_per_batch={limit}"
        )


class UserDeclined(FanoutError):
    """The signer refused to sign a session's transactions."""
    pass


class SubmissionError(FanoutError):
    """Sending a signed transaction to the network failed."""
    pass


class ConfirmationTimeout(FanoutError):
    """A submitted transaction was not confirmed before its anchor expired."""

    def __init__(self, transaction_id: str, status: str = "unconfirmed"):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(f"Transaction {transaction_id} not confirmed ({status})")


class RetryBudgetExhausted(FanoutError):
    """Every attempt allowed by a retry policy failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


class WalletAlreadyExistsError(FanoutError):
    """A wallet with the requested name already exists on the network."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Wallet '{name}' already exists")


class WalletNotFoundError(FanoutError):
    """The wallet being distributed does not exist on the network."""

    def __init__(self, wallet_id: str):
        self.wallet_id = wallet_id
        super().__init__(f"Wallet {wallet_id} not found")
