"""Unit tests for ledger error types."""

from decimal import Decimal

from src.services.errors import (
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    OverpaymentError,
    PersistenceError,
    StaleWriteError,
    TransientPersistenceError,
    ValidationError,
)


def test_validation_error_body():
    error = ValidationError("amount must be greater than 0", field="amount")
    assert error.http_status == 400
    assert error.to_dict() == {
        "code": "validation_error",
        "message": "amount must be greater than 0",
        "field": "amount",
    }


def test_invalid_transition_carries_status():
    error = InvalidTransitionError("Only pending expenses can be approved", current_status="paid")
    assert error.http_status == 409
    assert error.to_dict()["current_status"] == "paid"


def test_overpayment_reports_remaining_balance():
    error = OverpaymentError(remaining_balance=Decimal("0.00"), attempted=Decimal("1.00"))
    assert error.http_status == 409
    assert error.remaining_balance == Decimal("0.00")
    assert error.to_dict()["remaining_balance"] == "0.00"
    assert "1.00" in error.message


def test_not_found():
    error = NotFoundError("Expense", 42)
    assert error.http_status == 404
    assert error.message == "Expense 42 not found"


def test_persistence_hierarchy():
    assert issubclass(StaleWriteError, PersistenceError)
    assert issubclass(TransientPersistenceError, PersistenceError)
    assert PersistenceError().http_status == 503


def test_all_errors_are_ledger_errors():
    for error in (
        ValidationError("x"),
        InvalidTransitionError("x"),
        OverpaymentError(Decimal("1")),
        NotFoundError("Project", 1),
        PersistenceError("x"),
    ):
        assert isinstance(error, LedgerError)
        assert str(error) == error.message
