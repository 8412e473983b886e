"""Payment ledger for approved expenses.

Payments are appended under the expense's lock; the whole expense record
(ledger, cached total_paid and derived status) is written in one transaction.
total_paid never exceeds amount.
"""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from src.models.document import ExpenseDocument
from src.models.expense import Expense, ExpenseStatus
from src.models.expense_payment import ExpensePayment
from src.services.config import get_settings
from src.services.document_storage import DocumentStorage
from src.services.errors import InvalidTransitionError, NotFoundError, ValidationError
from src.services.expense_service import (
    ExpenseMutationMixin,
    parse_file_type,
    refresh_derived_fields,
    require_actor,
)
from src.services.ledger_validator import ensure_payable, validate_payment_input
from src.services.repository import (
    AuditEntry,
    ExpenseLocks,
    ExpenseRepository,
    SqlAlchemyExpenseRepository,
    expense_locks,
)

logger = logging.getLogger(__name__)


def _find_payment(expense: Expense, payment_id: int) -> ExpensePayment:
    payment = next((p for p in expense.payments if p.id == payment_id), None)
    if payment is None:
        raise NotFoundError("Payment", payment_id)
    return payment


class PaymentLedger(ExpenseMutationMixin):
    """Record, list and correct payments against expenses."""

    def __init__(
        self,
        repository: ExpenseRepository,
        storage: Optional[DocumentStorage] = None,
        locks: ExpenseLocks = expense_locks,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        settings = get_settings()
        self.repository = repository
        self.storage = storage
        self.locks = locks
        self.max_retries = settings.persistence_max_retries if max_retries is None else max_retries
        self.retry_backoff = (
            settings.persistence_retry_backoff if retry_backoff is None else retry_backoff
        )

    @classmethod
    def for_session(cls, db: Session, storage: Optional[DocumentStorage] = None) -> "PaymentLedger":
        """Build a ledger over a SQLAlchemy session."""
        return cls(SqlAlchemyExpenseRepository(db), storage=storage)

    def add_payment(
        self,
        expense_id: int,
        *,
        amount,
        payment_method: str,
        paid_by: str,
        payment_date: Optional[date] = None,
        check_number: Optional[str] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ExpensePayment:
        """Append a payment to an expense's ledger.

        Args:
            expense_id: Expense to pay
            amount: Positive amount with at most cent precision
            payment_method: check/wire/ach/credit_card/cash/other
            paid_by: User recording the payment
            payment_date: Date paid (default: today)
            check_number: Required for check payments
            reference_number: Required for wire and ACH payments
            notes: Free-form notes

        Returns:
            The recorded ExpensePayment

        Raises:
            ValidationError: Bad amount, method or missing reference
            NotFoundError: Unknown expense
            InvalidTransitionError: Expense is pending or rejected
            OverpaymentError: Payment exceeds the remaining balance
            PersistenceError: Storage failed after retries
        """
        payer = require_actor(paid_by, "paid_by")
        money, method = validate_payment_input(
            amount=amount,
            payment_method=payment_method,
            check_number=check_number,
            reference_number=reference_number,
        )

        def _add() -> ExpensePayment:
            expense = self.repository.get(expense_id)
            try:
                new_total = ensure_payable(
                    status=expense.status,
                    amount=expense.amount,
                    total_paid=expense.total_paid,
                    payment_amount=money,
                )
            except InvalidTransitionError:
                logger.warning(
                    f"Refused payment on expense {expense_id} in status {expense.status.value}"
                )
                raise

            payment = ExpensePayment(
                sequence=max((p.sequence for p in expense.payments), default=0) + 1,
                amount=money,
                payment_date=payment_date or date.today(),
                payment_method=method,
                check_number=check_number or None,
                reference_number=reference_number or None,
                paid_by=payer,
                notes=notes or None,
            )
            expense.payments.append(payment)
            refresh_derived_fields(expense)
            self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=payment,
                        entity_type="expense_payment",
                        action="create",
                        actor_id=payer,
                        changes={
                            "expense_id": expense_id,
                            "amount": str(money),
                            "method": method.value,
                        },
                    ),
                    AuditEntry(
                        entity=expense,
                        entity_type="expense",
                        action="payment",
                        actor_id=payer,
                        changes={"total_paid": str(new_total), "status": expense.status.value},
                    ),
                ],
            )
            return payment

        payment = self._mutate(expense_id, _add, "add payment")
        logger.info(
            f"Recorded payment {payment.id} of {money} ({method.value}) on expense {expense_id}"
        )
        return payment

    def list_payments(self, expense_id: int) -> List[ExpensePayment]:
        """Payments newest payment_date first; same-date entries in insertion order.

        Raises:
            NotFoundError: Unknown expense
        """
        expense = self.repository.get(expense_id)
        by_sequence = sorted(expense.payments, key=lambda p: p.sequence)
        # Stable sort keeps sequence order within a date
        return sorted(by_sequence, key=lambda p: p.payment_date, reverse=True)

    def delete_payment(self, expense_id: int, payment_id: int, actor_id: str) -> Expense:
        """Remove a recorded payment and re-derive the expense status.

        Returns:
            The updated expense

        Raises:
            NotFoundError: Unknown expense or payment
            InvalidTransitionError: Expense is rejected
        """
        actor = require_actor(actor_id, "actor_id")
        removed_urls: List[str] = []

        def _delete() -> Expense:
            expense = self.repository.get(expense_id)
            if expense.status == ExpenseStatus.REJECTED:
                raise InvalidTransitionError(
                    f"Cannot change payments of rejected expense {expense_id}",
                    current_status=expense.status.value,
                )
            payment = _find_payment(expense, payment_id)
            removed_urls[:] = [doc.file_url for doc in payment.documents if doc.stored]
            expense.payments.remove(payment)
            refresh_derived_fields(expense)
            return self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=expense,
                        entity_type="expense",
                        action="delete_payment",
                        actor_id=actor,
                        changes={
                            "payment_id": payment_id,
                            "amount": str(payment.amount),
                            "total_paid": str(expense.total_paid),
                            "status": expense.status.value,
                        },
                    )
                ],
            )

        expense = self._mutate(expense_id, _delete, "delete payment")
        self._discard_stored(removed_urls)
        logger.info(
            f"Deleted payment {payment_id} from expense {expense_id}; "
            f"total_paid={expense.total_paid} status={expense.status.value}"
        )
        return expense

    def attach_payment_document(
        self,
        expense_id: int,
        payment_id: int,
        *,
        name: str,
        file_type: str,
        uploaded_by: str,
        content: Optional[bytes] = None,
        file_url: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> ExpenseDocument:
        """Attach a receipt or bank confirmation to a payment.

        Raises:
            NotFoundError: Unknown expense or payment
            ValidationError: Bad file type, missing name/uploader or URL
        """
        uploader = require_actor(uploaded_by, "uploaded_by")
        kind = parse_file_type(file_type)
        if not name or not name.strip():
            raise ValidationError("Document name is required", field="name")

        _find_payment(self.repository.get(expense_id), payment_id)
        url, stored_size, stored_here = self._store_upload(
            f"expense_{expense_id}_payment_{payment_id}", name, content, file_url
        )
        document = ExpenseDocument(
            name=name.strip(),
            file_url=url,
            file_type=kind,
            file_size=stored_size if stored_size is not None else file_size,
            uploaded_by=uploader,
            stored=stored_here,
        )

        def _attach() -> ExpenseDocument:
            expense = self.repository.get(expense_id)
            payment = _find_payment(expense, payment_id)
            payment.documents.append(document)
            self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=payment,
                        entity_type="expense_payment",
                        action="attach_document",
                        actor_id=uploader,
                        changes={"document": document.name},
                    )
                ],
            )
            return document

        try:
            return self._mutate(expense_id, _attach, "attach payment document")
        except Exception:
            if stored_here:
                logger.warning(f"Removing orphaned upload {url} after failed attach")
                self._discard_stored([url])
            raise

    def remove_payment_document(
        self, expense_id: int, payment_id: int, document_id: int, actor_id: str
    ) -> None:
        """Detach and delete a payment document.

        Raises:
            NotFoundError: Unknown expense, payment or document
        """
        actor = require_actor(actor_id, "actor_id")
        removed: List[str] = []

        def _remove() -> None:
            expense = self.repository.get(expense_id)
            payment = _find_payment(expense, payment_id)
            document = next((d for d in payment.documents if d.id == document_id), None)
            if document is None:
                raise NotFoundError("Document", document_id)
            removed[:] = [document.file_url] if document.stored else []
            payment.documents.remove(document)
            self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=payment,
                        entity_type="expense_payment",
                        action="remove_document",
                        actor_id=actor,
                        changes={"document_id": document_id},
                    )
                ],
            )

        self._mutate(expense_id, _remove, "remove payment document")
        self._discard_stored(removed)
        logger.info(f"Removed document {document_id} from payment {payment_id}")


__all__ = ["PaymentLedger"]
