"""
Error taxonomy for the transaction core.

Every failure surfaced by the engine or the loan workflow carries a stable
``kind`` and a human-readable message. Internal identifiers and stack traces
never leave this layer.
"""


class BankingError(Exception):
    """Base exception for all transaction core errors."""
    
    kind = "BankingError"
    retryable = False
    
    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind
    
    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidAmount(BankingError):
    """Amount is non-numeric, non-finite, not positive or out of range."""
    kind = "InvalidAmount"


class InsufficientFunds(BankingError):
    """The debit would take the balance below zero."""
    kind = "InsufficientFunds"


class NotFound(BankingError):
    """Referenced account, loan or user does not exist."""
    kind = "NotFound"


class RecipientNotFound(NotFound):
    """No account carries the given recipient account number."""
    kind = "RecipientNotFound"


class InvalidRecipient(BankingError):
    """Transfer recipient is the sending account."""
    kind = "InvalidRecipient"


class AlreadyProcessed(BankingError):
    """Loan has already left the pending state."""
    kind = "AlreadyProcessed"


class InvalidLoanTerms(BankingError):
    """Interest rate, duration or due date are out of range."""
    kind = "InvalidLoanTerms"


class InvalidAction(BankingError):
    """Unknown loan processing action or transaction type."""
    kind = "InvalidAction"


class Unauthorized(BankingError):
    """Caller identity is missing or could not be verified."""
    kind = "Unauthorized"


class Forbidden(BankingError):
    """Caller role does not allow the operation."""
    kind = "Forbidden"


class StoreUnavailable(BankingError):
    """Transient storage failure; the atomic unit was rolled back."""
    kind = "StoreUnavailable"
    retryable = True
