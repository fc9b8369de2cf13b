"""Custom exception hierarchy for loan-ledger."""


class LoanLedgerError(Exception):
    """Base exception for all loan-ledger errors."""


class InvalidLoanTerms(LoanLedgerError):
    """Loan terms that cannot be amortized.

    The calculators never raise this: degenerate terms resolve to zero-valued
    results. It exists so callers validating input up front can report it.
    """


class LoanAlreadyPaidOff(LoanLedgerError):
    """Raised when a payment is recorded against a loan with no balance left."""


class InvalidPaymentAmount(LoanLedgerError):
    """Raised when a payment amount is not a positive number."""


class ClientNotFound(LoanLedgerError):
    """Raised when a referenced client or user does not exist."""


class StorageFailure(LoanLedgerError):
    """Raised when the storage backend fails a read or write."""


class PermissionDenied(LoanLedgerError):
    """Raised when the caller's role does not allow the operation."""


class AuthenticationError(LoanLedgerError):
    """Raised for unknown users, wrong passwords and invalid tokens."""


class ConfigurationError(LoanLedgerError):
    """Raised when configuration is invalid or missing."""


class UserAlreadyExists(LoanLedgerError):
    """Raised when registering an email that already has an account."""
