# Overview: Typed, recoverable errors raised by the ledger and transaction engines.

"""
Every failure surfaced by the core is one of these. Each error rejects exactly
one logical operation; the unit of work it was raised in is rolled back.

Routes map status_code to the HTTP response; details carry the offending
entity identifiers so an operator can correct input and resubmit.
"""


class LedgerError(Exception):
    """Base class for ledger operation errors."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "type": self.kind,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Malformed input: empty cart, non-positive quantity, bad discount, ..."""


class StaleStockError(ValidationError):
    """A movement's previous_stock snapshot no longer matches the stored stock."""


class NotFoundError(LedgerError):
    """Unknown variant, customer, transaction or sale item."""

    status_code = 404


class InsufficientStockError(LedgerError):
    """A sale requests more units of a variant than are on hand."""

    status_code = 409


class OverRefundError(LedgerError):
    """A refund requests more units than remain refundable on a sale item."""

    status_code = 409


class AlreadyRefundedError(LedgerError):
    """Refund attempted on a transaction already in the terminal refunded state."""

    status_code = 409


class ImmutableMovementError(LedgerError):
    """Attempt to update or delete a stock movement row."""

    status_code = 409
