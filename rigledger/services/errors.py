"""
Domain errors raised by the ledger services.

Validation errors are raised before any write. Invariant violations and
not-found errors raised inside a write path abort the whole transaction:
the route that owns the session rolls back and re-raises.
"""
from typing import Optional


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        if self.field:
            body["field"] = self.field
        return body


class ValidationFailed(LedgerError):
    status_code = 422
    code = "validation_failed"


class MissingOperator(ValidationFailed):
    code = "missing_operator"


class MissingRequiredField(ValidationFailed):
    code = "missing_required_field"


class InvariantViolation(LedgerError):
    status_code = 409
    code = "invariant_violation"


class InsufficientBalance(InvariantViolation):
    code = "insufficient_balance"


class NotFitted(InvariantViolation):
    code = "not_fitted"


class NotFound(LedgerError):
    status_code = 404
    code = "not_found"
