"""Error taxonomy for the progression ledgers.

Each error carries the HTTP status the API layer maps it to and a stable
machine-readable ``code``.
"""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for all ledger errors surfaced to callers."""

    status_code: int = 400
    code: str = "progression_error"


class InvalidAmount(ProgressionError, ValueError):
    """A non-positive (or negative) amount where the operation forbids it."""

    status_code = 422
    code = "invalid_amount"


class InvalidArgument(ProgressionError, ValueError):
    """A malformed non-numeric argument (reason too long, unknown reward type, ...)."""

    status_code = 422
    code = "invalid_argument"


class InsufficientBalance(ProgressionError):
    """A subtraction or redemption exceeds the current balance."""

    status_code = 409
    code = "insufficient_balance"

    def __init__(self, user_id: int, balance: int, requested: int) -> None:
        super().__init__(
            f"User {user_id} has {balance} points, {requested} requested"
        )
        self.user_id = user_id
        self.balance = balance
        self.requested = requested


class UserNotFound(ProgressionError):
    """The operation requires an existing ledger row for the user."""

    status_code = 404
    code = "user_not_found"

    def __init__(self, user_id: int, what: str = "account") -> None:
        super().__init__(f"No {what} for user {user_id}")
        self.user_id = user_id


class ConcurrentUpdateConflict(ProgressionError):
    """A compare-and-swap write lost a race. Retried internally."""

    status_code = 409
    code = "concurrent_update_conflict"


class LedgerUpdateFailed(ProgressionError):
    """Retries were exhausted; the update was not applied."""

    status_code = 503
    code = "ledger_update_failed"


class ConfigurationError(ProgressionError):
    """A badge definition violates bronze <= silver <= gold."""

    status_code = 500
    code = "configuration_error"
