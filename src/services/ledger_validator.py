"""Pure validation and derivation rules for expenses and their payments.

No I/O happens here. Expense and payment services call these functions before
touching the database so a refused operation never leaves a partial write.

Status derivation (single source of truth for the expense status):
- rejected_reason set              -> REJECTED
- not approved                     -> PENDING
- approved, nothing paid           -> APPROVED
- approved, 0 < total_paid < amount -> PARTIALLY_PAID
- approved, total_paid == amount    -> PAID
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from src.models.expense import ExpenseStatus, ExpenseType
from src.models.expense_payment import PaymentMethod
from src.services.errors import InvalidTransitionError, OverpaymentError, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")

PAYABLE_STATUSES = frozenset({ExpenseStatus.APPROVED, ExpenseStatus.PARTIALLY_PAID})

# A paid expense has no balance left, so it fails the overpayment check
# rather than the status check.
UNPAYABLE_STATUSES = frozenset({ExpenseStatus.PENDING, ExpenseStatus.REJECTED})

# Conditional payment fields: method -> required attribute
PAYMENT_REFERENCE_FIELDS = {
    PaymentMethod.CHECK: "check_number",
    PaymentMethod.WIRE: "reference_number",
    PaymentMethod.ACH: "reference_number",
}


def to_decimal(value: Any, field: str) -> Decimal:
    """Convert user input to Decimal without rounding.

    Floats go through str() so 0.1 stays 0.1. Booleans and non-numeric values
    are rejected.

    Raises:
        ValidationError: If value is missing or not numeric
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{field} must be numeric, got {value!r}", field=field) from e
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def to_money(value: Any, field: str = "amount") -> Decimal:
    """Convert to Decimal rounded to cents (ROUND_HALF_UP)."""
    return to_decimal(value, field).quantize(CENT, rounding=ROUND_HALF_UP)


def derive_status(
    approved_by: str | None,
    rejected_reason: str | None,
    total_paid: Decimal,
    amount: Decimal,
) -> ExpenseStatus:
    """Derive the expense status from its ledger state.

    Raises:
        OverpaymentError: If total_paid exceeds amount (ledger already corrupt)
    """
    if rejected_reason:
        return ExpenseStatus.REJECTED
    if not approved_by:
        return ExpenseStatus.PENDING
    if total_paid > amount:
        raise OverpaymentError(remaining_balance=amount - total_paid)
    if total_paid <= ZERO:
        return ExpenseStatus.APPROVED
    if total_paid < amount:
        return ExpenseStatus.PARTIALLY_PAID
    return ExpenseStatus.PAID


def remaining_balance(amount: Decimal, total_paid: Decimal) -> Decimal:
    """Amount still payable."""
    return amount - total_paid


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_expense_input(
    expense_type: Any,
    amount: Any,
    description: Any,
    is_office: bool,
    project_id: int | None = None,
    step_id: int | None = None,
    vendor_id: str | None = None,
    subcontractor_id: str | None = None,
    material_request_id: str | None = None,
) -> tuple[ExpenseType, Decimal]:
    """Validate a new expense.

    Checks, in order: known type, positive amount, description present,
    office XOR project assignment (step only with a project) and the
    counterpart required by the type.

    Returns:
        (normalized ExpenseType, amount rounded to cents)

    Raises:
        ValidationError: On the first failing rule
    """
    try:
        normalized_type = ExpenseType(expense_type)
    except ValueError as e:
        raise ValidationError(f"Unknown expense type: {expense_type!r}", field="type") from e

    money = to_money(amount, "amount")
    if money <= ZERO:
        raise ValidationError("amount must be greater than 0", field="amount")

    if _blank(description):
        raise ValidationError("description is required", field="description")

    if is_office and project_id is not None:
        raise ValidationError(
            "Expense must be assigned to the office or to a project, not both",
            field="project_id",
        )
    if not is_office and project_id is None:
        raise ValidationError(
            "Expense must be assigned to the office or to a project", field="project_id"
        )
    if step_id is not None and project_id is None:
        raise ValidationError("step_id requires a project_id", field="step_id")

    if normalized_type == ExpenseType.SUBCONTRACTOR and _blank(subcontractor_id):
        raise ValidationError(
            "Subcontractor expenses require subcontractor_id", field="subcontractor_id"
        )
    if (
        normalized_type == ExpenseType.MATERIAL
        and _blank(vendor_id)
        and _blank(material_request_id)
    ):
        raise ValidationError(
            "Material expenses require vendor_id or material_request_id", field="vendor_id"
        )

    return normalized_type, money


def validate_payment_input(
    amount: Any,
    payment_method: Any,
    check_number: str | None = None,
    reference_number: str | None = None,
) -> tuple[Decimal, PaymentMethod]:
    """Validate a payment before it reaches the ledger.

    Returns:
        (amount, PaymentMethod)

    Raises:
        ValidationError: Non-positive or sub-cent amount, unknown method or
            missing check/reference number
    """
    value = to_decimal(amount, "amount")
    if value <= ZERO:
        raise ValidationError("Payment amount must be greater than 0", field="amount")
    if value != value.quantize(CENT):
        raise ValidationError("Payment amount cannot have fractions of a cent", field="amount")

    try:
        method = PaymentMethod(payment_method)
    except ValueError as e:
        raise ValidationError(
            f"Unknown payment method: {payment_method!r}", field="payment_method"
        ) from e

    required = PAYMENT_REFERENCE_FIELDS.get(method)
    if required == "check_number" and _blank(check_number):
        raise ValidationError("Check payments require check_number", field="check_number")
    if required == "reference_number" and _blank(reference_number):
        raise ValidationError(
            f"{method.value} payments require reference_number", field="reference_number"
        )

    return value.quantize(CENT), method


def ensure_payable(
    status: ExpenseStatus,
    amount: Decimal,
    total_paid: Decimal,
    payment_amount: Decimal,
) -> Decimal:
    """Check that payment_amount can be appended to the ledger.

    Returns:
        The new total_paid

    Raises:
        InvalidTransitionError: Expense is pending or rejected
        OverpaymentError: total_paid + payment_amount would exceed amount
            (always the case once the expense is paid)
    """
    if status in UNPAYABLE_STATUSES:
        raise InvalidTransitionError(
            f"Payments are not allowed on {status.value} expenses",
            current_status=status.value,
        )
    new_total = total_paid + payment_amount
    if new_total > amount:
        raise OverpaymentError(
            remaining_balance=remaining_balance(amount, total_paid),
            attempted=payment_amount,
        )
    return new_total


__all__ = [
    "CENT",
    "PAYABLE_STATUSES",
    "UNPAYABLE_STATUSES",
    "derive_status",
    "ensure_payable",
    "remaining_balance",
    "to_decimal",
    "to_money",
    "validate_expense_input",
    "validate_payment_input",
]
