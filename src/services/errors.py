"""Domain exceptions raised by the expense ledger and budget services.

Every error carries a machine-readable code and the HTTP status the API layer
answers with. Services raise them synchronously and never swallow them.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for ledger and budget errors."""

    def __init__(self, message: str, code: str, http_status: int = 400):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)

    def to_dict(self) -> dict:
        """Return the error body used in API responses."""
        return {"code": self.code, "message": self.message}


class ValidationError(LedgerError):
    """Missing or invalid input (amount <= 0, missing assignment or counterpart, etc.)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, "validation_error", 400)
        self.field = field

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class InvalidTransitionError(LedgerError):
    """Operation not allowed from the expense's current status."""

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message, "invalid_transition", 409)
        self.current_status = current_status

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.current_status:
            body["current_status"] = self.current_status
        return body


class OverpaymentError(LedgerError):
    """Payment would push total_paid past the expense amount."""

    def __init__(self, remaining_balance: Decimal, attempted: Decimal | None = None):
        message = f"Payment exceeds remaining balance of {remaining_balance}"
        if attempted is not None:
            message = f"Payment of {attempted} exceeds remaining balance of {remaining_balance}"
        super().__init__(message, "overpayment", 409)
        self.remaining_balance = remaining_balance
        self.attempted = attempted

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["remaining_balance"] = str(self.remaining_balance)
        return body


class NotFoundError(LedgerError):
    """Unknown expense, payment, document or project id."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", "not_found", 404)
        self.entity = entity
        self.entity_id = entity_id


class PersistenceError(LedgerError):
    """The persistence gateway failed (connection, constraint, stale write)."""

    def __init__(self, message: str = "Persistence failure"):
        super().__init__(message, "persistence_error", 503)


class StaleWriteError(PersistenceError):
    """Record changed since it was read (optimistic version check failed)."""


class TransientPersistenceError(PersistenceError):
    """Database temporarily unavailable (locked, connection dropped)."""


__all__ = [
    "LedgerError",
    "ValidationError",
    "InvalidTransitionError",
    "OverpaymentError",
    "NotFoundError",
    "PersistenceError",
    "StaleWriteError",
    "TransientPersistenceError",
]
