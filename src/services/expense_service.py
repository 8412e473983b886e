"""Expense lifecycle service: creation, approval, rejection, deletion, documents.

State machine:
    pending -> approved | rejected
    approved -> partially_paid | paid      (via PaymentLedger)
    partially_paid -> paid
    rejected, paid: terminal

Status is never assigned by hand: every mutation ends with
refresh_derived_fields(), which recomputes total_paid from the payments and
the status from ledger_validator.derive_status().
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.orm import Session

from src.models.document import DocumentFileType, ExpenseDocument
from src.models.expense import Expense, ExpenseStatus
from src.services.config import get_settings
from src.services.document_storage import DocumentStorage
from src.services.errors import InvalidTransitionError, NotFoundError, ValidationError
from src.services.ledger_validator import derive_status, validate_expense_input
from src.services.repository import (
    AuditEntry,
    ExpenseLocks,
    ExpenseRepository,
    SqlAlchemyExpenseRepository,
    expense_locks,
    run_with_retry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def refresh_derived_fields(expense: Expense) -> ExpenseStatus:
    """Recompute total_paid and status from the payment ledger."""
    expense.total_paid = sum((p.amount for p in expense.payments), Decimal("0.00"))
    expense.status = derive_status(
        approved_by=expense.approved_by,
        rejected_reason=expense.rejected_reason,
        total_paid=expense.total_paid,
        amount=expense.amount,
    )
    return expense.status


def require_actor(actor_id: Optional[str], field: str) -> str:
    if actor_id is None or not str(actor_id).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(actor_id)


class ExpenseMutationMixin:
    """Serialized read-modify-write against the expense repository."""

    repository: ExpenseRepository
    storage: Optional[DocumentStorage]
    locks: ExpenseLocks
    max_retries: int
    retry_backoff: float

    def _mutate(self, expense_id: int, operation: Callable[[], T], description: str) -> T:
        """Run operation under the expense's lock with stale-write retries."""
        with self.locks.hold(expense_id):
            return run_with_retry(
                operation,
                max_retries=self.max_retries,
                backoff=self.retry_backoff,
                description=f"{description} (expense {expense_id})",
            )

    def _store_upload(
        self, folder: str, name: str, content: Optional[bytes], file_url: Optional[str]
    ) -> tuple[str, Optional[int], bool]:
        """Resolve the document URL: upload content, or accept an existing URL.

        Returns:
            (file_url, file_size or None, whether this call stored the file)
        """
        if content is not None:
            if self.storage is None:
                raise ValidationError("Document storage is not configured", field="content")
            stored = self.storage.store(folder, name, content)
            return stored.file_url, stored.file_size, True
        if not file_url:
            raise ValidationError("Either content or file_url is required", field="file_url")
        return file_url, None, False

    def _discard_stored(self, file_urls: List[str]) -> None:
        """Delete uploaded files from this ledger's storage."""
        if self.storage is None:
            return
        for url in file_urls:
            if self.storage.owns(url):
                self.storage.delete(url)


class ExpenseService(ExpenseMutationMixin):
    """Expense lifecycle operations."""

    def __init__(
        self,
        repository: ExpenseRepository,
        storage: Optional[DocumentStorage] = None,
        locks: ExpenseLocks = expense_locks,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        """Initialize expense service.

        Args:
            repository: Expense persistence gateway
            storage: Document storage for uploads (optional)
            locks: Per-expense lock registry (process-wide by default)
            max_retries: Stale-write retries (default from settings)
            retry_backoff: Initial retry delay in seconds (default from settings)
        """
        settings = get_settings()
        self.repository = repository
        self.storage = storage
        self.locks = locks
        self.max_retries = settings.persistence_max_retries if max_retries is None else max_retries
        self.retry_backoff = (
            settings.persistence_retry_backoff if retry_backoff is None else retry_backoff
        )

    @classmethod
    def for_session(cls, db: Session, storage: Optional[DocumentStorage] = None) -> "ExpenseService":
        """Build a service over a SQLAlchemy session."""
        return cls(SqlAlchemyExpenseRepository(db), storage=storage)

    def create_expense(
        self,
        *,
        expense_type: str,
        amount,
        description: str,
        created_by: str,
        expense_date: Optional[date] = None,
        is_office: bool = False,
        project_id: Optional[int] = None,
        step_id: Optional[int] = None,
        category: Optional[str] = None,
        invoice_number: Optional[str] = None,
        vendor_id: Optional[str] = None,
        subcontractor_id: Optional[str] = None,
        material_request_id: Optional[str] = None,
    ) -> Expense:
        """Create a pending expense.

        Args:
            expense_type: subcontractor/material/office/project/other
            amount: Positive amount (rounded to cents)
            description: What the expense is for
            created_by: User creating the expense
            expense_date: Date incurred (default: today)
            is_office: Office expense (mutually exclusive with project_id)
            project_id: Project the expense is charged to
            step_id: Work title within the project
            category: Free-form category (toll, parking, stationery, ...)
            invoice_number: Vendor/subcontractor invoice number
            vendor_id: Vendor (material purchases)
            subcontractor_id: Subcontractor (required for subcontractor expenses)
            material_request_id: Linked material request

        Returns:
            Created Expense with status pending and total_paid 0

        Raises:
            ValidationError: If any creation rule fails
        """
        creator = require_actor(created_by, "created_by")
        normalized_type, money = validate_expense_input(
            expense_type=expense_type,
            amount=amount,
            description=description,
            is_office=is_office,
            project_id=project_id,
            step_id=step_id,
            vendor_id=vendor_id,
            subcontractor_id=subcontractor_id,
            material_request_id=material_request_id,
        )

        expense = Expense(
            type=normalized_type,
            amount=money,
            description=description.strip(),
            category=category or None,
            invoice_number=invoice_number or None,
            expense_date=expense_date or date.today(),
            is_office=is_office,
            project_id=project_id,
            step_id=step_id,
            vendor_id=vendor_id or None,
            subcontractor_id=subcontractor_id or None,
            material_request_id=material_request_id or None,
            total_paid=Decimal("0.00"),
            created_by=creator,
            payments=[],
            documents=[],
        )
        refresh_derived_fields(expense)

        self.repository.save(
            expense,
            audits=[
                AuditEntry(
                    entity=expense,
                    entity_type="expense",
                    action="create",
                    actor_id=creator,
                    changes={"amount": str(money), "type": normalized_type.value},
                )
            ],
        )
        logger.info(
            f"Created expense {expense.id}: type={normalized_type.value} amount={money} "
            f"{'office' if is_office else f'project={project_id}'}"
        )
        return expense

    def get_expense(self, expense_id: int) -> Expense:
        """Get expense by ID.

        Raises:
            NotFoundError: If the expense does not exist
        """
        return self.repository.get(expense_id)

    def list_expenses(
        self, project_id: Optional[int] = None, office_only: bool = False
    ) -> List[Expense]:
        """List expenses, newest expense_date first."""
        return self.repository.list_expenses(project_id=project_id, office_only=office_only)

    def list_project_expenses(self, project_id: int) -> List[Expense]:
        return self.repository.list_expenses(project_id=project_id)

    def list_office_expenses(self) -> List[Expense]:
        return self.repository.list_expenses(office_only=True)

    def approve_expense(self, expense_id: int, approver_id: str) -> Expense:
        """Approve a pending expense.

        Raises:
            NotFoundError: Unknown expense
            InvalidTransitionError: Expense is not pending
            ValidationError: Missing approver
        """
        approver = require_actor(approver_id, "approver_id")

        def _approve() -> Expense:
            expense = self.repository.get(expense_id)
            if expense.status != ExpenseStatus.PENDING:
                logger.warning(
                    f"Refused approval of expense {expense_id} in status {expense.status.value}"
                )
                raise InvalidTransitionError(
                    f"Only pending expenses can be approved (expense {expense_id} is "
                    f"{expense.status.value})",
                    current_status=expense.status.value,
                )
            expense.approved_by = approver
            expense.approved_at = datetime.now(timezone.utc)
            refresh_derived_fields(expense)
            return self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=expense,
                        entity_type="expense",
                        action="approve",
                        actor_id=approver,
                        changes={"status": expense.status.value},
                    )
                ],
            )

        expense = self._mutate(expense_id, _approve, "approve expense")
        logger.info(f"Expense {expense_id} approved by {approver}")
        return expense

    def reject_expense(self, expense_id: int, approver_id: str, reason: str) -> Expense:
        """Reject a pending expense (terminal).

        Raises:
            NotFoundError: Unknown expense
            InvalidTransitionError: Expense is not pending
            ValidationError: Missing approver or empty reason
        """
        approver = require_actor(approver_id, "approver_id")
        if reason is None or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")

        def _reject() -> Expense:
            expense = self.repository.get(expense_id)
            if expense.status != ExpenseStatus.PENDING:
                logger.warning(
                    f"Refused rejection of expense {expense_id} in status {expense.status.value}"
                )
                raise InvalidTransitionError(
                    f"Only pending expenses can be rejected (expense {expense_id} is "
                    f"{expense.status.value})",
                    current_status=expense.status.value,
                )
            expense.rejected_by = approver
            expense.rejected_at = datetime.now(timezone.utc)
            expense.rejected_reason = reason.strip()
            refresh_derived_fields(expense)
            return self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=expense,
                        entity_type="expense",
                        action="reject",
                        actor_id=approver,
                        changes={"status": expense.status.value, "reason": expense.rejected_reason},
                    )
                ],
            )

        expense = self._mutate(expense_id, _reject, "reject expense")
        logger.info(f"Expense {expense_id} rejected by {approver}: {expense.rejected_reason}")
        return expense

    def delete_expense(self, expense_id: int, actor_id: str) -> None:
        """Delete an expense that has no recorded payments.

        Its stored documents are removed from document storage after the
        record is gone.

        Raises:
            NotFoundError: Unknown expense
            InvalidTransitionError: Expense already has payments
        """
        actor = require_actor(actor_id, "actor_id")
        removed_urls: List[str] = []

        def _delete() -> None:
            expense = self.repository.get(expense_id)
            if expense.payments:
                logger.warning(
                    f"Refused deletion of expense {expense_id} with {len(expense.payments)} payments"
                )
                raise InvalidTransitionError(
                    f"Expense {expense_id} has recorded payments and cannot be deleted",
                    current_status=expense.status.value,
                )
            removed_urls[:] = [doc.file_url for doc in expense.documents if doc.stored]
            self.repository.delete(
                expense,
                audits=[
                    AuditEntry(
                        entity=expense,
                        entity_type="expense",
                        action="delete",
                        actor_id=actor,
                        changes={"amount": str(expense.amount), "status": expense.status.value},
                    )
                ],
            )

        self._mutate(expense_id, _delete, "delete expense")
        self.locks.discard(expense_id)
        self._discard_stored(removed_urls)
        logger.info(f"Expense {expense_id} deleted by {actor}")

    def attach_document(
        self,
        expense_id: int,
        *,
        name: str,
        file_type: str,
        uploaded_by: str,
        content: Optional[bytes] = None,
        file_url: Optional[str] = None,
        file_size: Optional[int] = None,
    ) -> ExpenseDocument:
        """Attach a receipt/invoice to an expense.

        Either uploads content to document storage or records an already
        stored file_url. Amount and status are untouched. A failed upload
        leaves the expense as it was; there is no rollback of earlier steps
        (an expense created before a failed upload keeps fewer documents).

        Raises:
            NotFoundError: Unknown expense
            ValidationError: Bad file type, missing name/uploader or URL
        """
        uploader = require_actor(uploaded_by, "uploaded_by")
        kind = parse_file_type(file_type)
        if not name or not name.strip():
            raise ValidationError("Document name is required", field="name")

        self.repository.get(expense_id)
        url, stored_size, stored_here = self._store_upload(
            f"expense_{expense_id}", name, content, file_url
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
            expense.documents.append(document)
            self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=expense,
                        entity_type="expense",
                        action="attach_document",
                        actor_id=uploader,
                        changes={"document": document.name},
                    )
                ],
            )
            return document

        try:
            return self._mutate(expense_id, _attach, "attach document")
        except Exception:
            if stored_here:
                logger.warning(f"Removing orphaned upload {url} after failed attach")
                self._discard_stored([url])
            raise

    def remove_document(self, expense_id: int, document_id: int, actor_id: str) -> None:
        """Detach and delete an expense document.

        Raises:
            NotFoundError: Unknown expense or document
        """
        actor = require_actor(actor_id, "actor_id")
        removed: List[str] = []

        def _remove() -> None:
            expense = self.repository.get(expense_id)
            document = next((d for d in expense.documents if d.id == document_id), None)
            if document is None:
                raise NotFoundError("Document", document_id)
            removed[:] = [document.file_url] if document.stored else []
            expense.documents.remove(document)
            self.repository.save(
                expense,
                audits=[
                    AuditEntry(
                        entity=expense,
                        entity_type="expense",
                        action="remove_document",
                        actor_id=actor,
                        changes={"document_id": document_id},
                    )
                ],
            )

        self._mutate(expense_id, _remove, "remove document")
        self._discard_stored(removed)
        logger.info(f"Removed document {document_id} from expense {expense_id}")


def parse_file_type(file_type: str) -> DocumentFileType:
    try:
        return DocumentFileType(file_type)
    except ValueError as e:
        raise ValidationError(f"Unknown file type: {file_type!r}", field="file_type") from e


__all__ = [
    "ExpenseService",
    "ExpenseMutationMixin",
    "parse_file_type",
    "refresh_derived_fields",
    "require_actor",
]
