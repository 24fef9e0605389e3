# creditbook/core/errors.py
"""
Error kinds raised by the credit ledger and its store.
"""


class LedgerError(Exception):
    """Base class for every ledger failure."""


class ValidationError(LedgerError):
    """Malformed input: empty required field, bad amount, bad cursor."""


class NotFoundError(LedgerError):
    """The referenced client does not exist."""


class StoreError(LedgerError):
    """
    The persistence layer failed (unavailable, timeout, constraint).
    The original exception is kept as ``cause`` and as ``__cause__``.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause
