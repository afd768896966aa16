# errors.py
"""
Error taxonomy.

- RowValidationError: one field of one CSV row failed a check. The normalizer
  turns it into a human-readable reason; it never leaves the normalizer.
- MalformedInputError: the CSV stream itself is unreadable. Aborts the upload.
- PersistenceError: the trade store rejected a write or a read.
- InvalidQueryError: the balance cutoff could not be parsed.
"""


class TradeBalanceError(Exception):
    """Base class for every error raised by this package."""


class RowValidationError(TradeBalanceError):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MalformedInputError(TradeBalanceError):
    pass


class PersistenceError(TradeBalanceError):
    pass


class InvalidQueryError(TradeBalanceError):
    pass
