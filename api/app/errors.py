"""Ledger error taxonomy.

Every error carries the HTTP status it maps to and a stable code, so the API
layer can render them with a single exception handler.
"""


class LedgerError(Exception):
    """Base class for business-rule and storage failures in the points ledger."""

    status_code = 400
    code = 'LEDGER_ERROR'

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidOperation(LedgerError):
    """Rejected before touching storage (bad amount, self-transfer, bad category)."""
    code = 'INVALID_OPERATION'


class InsufficientBalance(LedgerError):
    """Raised when a debit would push the balance below zero."""
    code = 'INSUFFICIENT_BALANCE'


class AccountSuspended(LedgerError):
    status_code = 403
    code = 'ACCOUNT_SUSPENDED'


class RecipientNotFound(LedgerError):
    status_code = 404
    code = 'RECIPIENT_NOT_FOUND'


class RequestNotFound(LedgerError):
    status_code = 404
    code = 'REQUEST_NOT_FOUND'


class NotPending(LedgerError):
    """Transition attempted on a request that already left `pending`."""
    status_code = 409
    code = 'NOT_PENDING'


class PendingRequestExists(LedgerError):
    status_code = 409
    code = 'PENDING_REQUEST_EXISTS'


class RequestExpired(LedgerError):
    status_code = 409
    code = 'REQUEST_EXPIRED'


class PaymentVerificationFailed(LedgerError):
    status_code = 502
    code = 'PAYMENT_VERIFICATION_FAILED'


class PaymentAlreadyClaimed(LedgerError):
    """The on-chain transfer was already used to approve another order."""
    status_code = 409
    code = 'PAYMENT_ALREADY_CLAIMED'


class StorageFailure(LedgerError):
    """The atomic unit could not commit. Nothing was persisted; safe to retry."""
    status_code = 503
    code = 'STORAGE_FAILURE'
