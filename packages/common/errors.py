"""
Exception hierarchy shared by the domain packages and the API layer.

Routers translate these into HTTP responses (see apps/api/main.py);
the classification stream turns ClassificationError into `error` events.
"""
from typing import Optional


class ExpenseTrackerError(Exception):
    """Base class for all application errors"""


class ValidationFailure(ExpenseTrackerError):
    """Request rejected before any external call or write was made"""


class NotFoundError(ExpenseTrackerError):
    """Requested record does not exist for this owner"""


class ConfigurationError(ExpenseTrackerError):
    """Caller or deployment configuration makes a calculation meaningless"""


class ClassificationError(ExpenseTrackerError):
    """
    Per-transaction failure from the reasoning service.

    `reason` is safe to show to users; the underlying exception is kept
    on `__cause__` for logs only.
    """

    def __init__(self, reason: str, transient: bool = False, transaction_id: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.transient = transient
        self.transaction_id = transaction_id
