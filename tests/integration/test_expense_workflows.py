"""Integration tests for expense workflows."""

from datetime import date
from decimal import Decimal
from pathlib import Path
from urllib.parse import urlparse

import pytest
from sqlalchemy import select

from src.models import AuditLog, ExpenseDocument
from src.models.expense import ExpenseStatus, ExpenseType
from src.services.errors import InvalidTransitionError, NotFoundError, ValidationError
from src.services.expense_service import ExpenseService
from src.services.payment_ledger import PaymentLedger


@pytest.fixture
def service(db_session, storage):
    return ExpenseService.for_session(db_session, storage=storage)


@pytest.fixture
def ledger(db_session, storage):
    return PaymentLedger.for_session(db_session, storage=storage)


def _create(service, **overrides):
    fields = dict(
        expense_type="subcontractor",
        amount=Decimal("1000.00"),
        description="Electrical rough-in",
        created_by="pm-7",
        project_id=12,
        step_id=3,
        subcontractor_id="sub-42",
        invoice_number="INV-881",
        expense_date=date(2025, 11, 3),
    )
    fields.update(overrides)
    return service.create_expense(**fields)


class TestExpenseLifecycle:
    """Create, approve, reject and inspect expenses."""

    def test_create_expense(self, service, db_session):
        expense = _create(service)

        assert expense.id is not None
        assert expense.type == ExpenseType.SUBCONTRACTOR
        assert expense.status == ExpenseStatus.PENDING
        assert expense.total_paid == Decimal("0")
        assert expense.payments == []

        audit = db_session.execute(select(AuditLog)).scalar_one()
        assert audit.entity_type == "expense"
        assert audit.entity_id == expense.id
        assert audit.action == "create"
        assert audit.actor_id == "pm-7"

    def test_create_rejects_invalid_input(self, service, db_session):
        with pytest.raises(ValidationError):
            _create(service, amount=0)
        with pytest.raises(ValidationError):
            _create(service, subcontractor_id=None)
        with pytest.raises(ValidationError):
            _create(service, is_office=True)

        assert service.list_expenses() == []

    def test_approve_expense(self, service):
        expense = _create(service)

        approved = service.approve_expense(expense.id, "admin-1")

        assert approved.status == ExpenseStatus.APPROVED
        assert approved.approved_by == "admin-1"
        assert approved.approved_at is not None
        assert approved.version == 2

    def test_approve_twice_fails(self, service):
        expense = _create(service)
        service.approve_expense(expense.id, "admin-1")

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.approve_expense(expense.id, "admin-2")

        assert exc_info.value.current_status == "approved"
        assert service.get_expense(expense.id).approved_by == "admin-1"

    def test_reject_expense_then_payment_refused(self, service, ledger):
        expense = _create(service)

        rejected = service.reject_expense(expense.id, "admin-1", "duplicate invoice")

        assert rejected.status == ExpenseStatus.REJECTED
        assert rejected.rejected_reason == "duplicate invoice"
        assert rejected.rejected_by == "admin-1"

        with pytest.raises(InvalidTransitionError):
            ledger.add_payment(expense.id, amount="10", payment_method="cash", paid_by="admin-1")
        assert service.get_expense(expense.id).payments == []

    def test_rejected_expense_cannot_be_approved(self, service):
        expense = _create(service)
        service.reject_expense(expense.id, "admin-1", "not ours")

        with pytest.raises(InvalidTransitionError):
            service.approve_expense(expense.id, "admin-1")

    def test_pending_expense_cannot_be_paid(self, service, ledger):
        expense = _create(service)

        with pytest.raises(InvalidTransitionError):
            ledger.add_payment(expense.id, amount="10", payment_method="cash", paid_by="admin")

    def test_get_unknown_expense(self, service):
        with pytest.raises(NotFoundError):
            service.get_expense(12345)


class TestExpenseQueries:
    def test_list_filters_and_order(self, service):
        older = _create(service, expense_date=date(2025, 1, 5))
        newer = _create(service, expense_date=date(2025, 2, 5), project_id=99, step_id=None)
        office = service.create_expense(
            expense_type="office",
            amount="45.10",
            description="Printer toner",
            created_by="clerk",
            is_office=True,
            category="stationery",
            expense_date=date(2025, 1, 20),
        )

        assert [e.id for e in service.list_expenses()] == [newer.id, office.id, older.id]
        assert [e.id for e in service.list_project_expenses(12)] == [older.id]
        assert [e.id for e in service.list_office_expenses()] == [office.id]


class TestExpenseDeletion:
    def test_delete_without_payments(self, service, db_session):
        expense = _create(service)

        service.delete_expense(expense.id, "admin")

        with pytest.raises(NotFoundError):
            service.get_expense(expense.id)
        actions = db_session.execute(select(AuditLog.action)).scalars().all()
        assert actions == ["create", "delete"]

    def test_delete_with_payments_refused(self, service, ledger):
        expense = _create(service)
        service.approve_expense(expense.id, "admin")
        ledger.add_payment(expense.id, amount="100", payment_method="cash", paid_by="admin")

        with pytest.raises(InvalidTransitionError):
            service.delete_expense(expense.id, "admin")

        assert service.get_expense(expense.id).total_paid == Decimal("100.00")

    def test_delete_removes_stored_documents(self, service, storage):
        expense = _create(service)
        document = service.attach_document(
            expense.id,
            name="invoice.pdf",
            file_type="document",
            uploaded_by="pm-7",
            content=b"%PDF",
        )
        path = Path(urlparse(document.file_url).path)
        assert path.exists()

        service.delete_expense(expense.id, "admin")

        assert not path.exists()


class TestExpenseDocuments:
    def test_attach_upload_keeps_amount_and_status(self, service, db_session):
        expense = _create(service)
        service.approve_expense(expense.id, "admin")

        document = service.attach_document(
            expense.id,
            name="receipt.jpg",
            file_type="image",
            uploaded_by="pm-7",
            content=b"\xff\xd8\xff",
        )

        reloaded = service.get_expense(expense.id)
        assert document.id is not None
        assert document.file_size == 3
        assert document.stored is True
        assert [d.id for d in reloaded.documents] == [document.id]
        assert reloaded.status == ExpenseStatus.APPROVED
        assert reloaded.amount == Decimal("1000.00")

    def test_attach_existing_url(self, service):
        expense = _create(service)

        document = service.attach_document(
            expense.id,
            name="quote.pdf",
            file_type="document",
            uploaded_by="pm-7",
            file_url="https://files.example.com/quote.pdf",
            file_size=2048,
        )

        assert document.file_url == "https://files.example.com/quote.pdf"
        assert document.file_size == 2048
        assert document.stored is False

    def test_attach_rejects_unknown_file_type(self, service):
        expense = _create(service)

        with pytest.raises(ValidationError):
            service.attach_document(
                expense.id,
                name="clip.mp4",
                file_type="video",
                uploaded_by="pm-7",
                file_url="https://files.example.com/clip.mp4",
            )

    def test_remove_document(self, service, db_session):
        expense = _create(service)
        document = service.attach_document(
            expense.id,
            name="receipt.jpg",
            file_type="image",
            uploaded_by="pm-7",
            content=b"jpg",
        )
        path = Path(urlparse(document.file_url).path)

        service.remove_document(expense.id, document.id, "pm-7")

        assert service.get_expense(expense.id).documents == []
        assert db_session.execute(select(ExpenseDocument)).first() is None
        assert not path.exists()

    def test_remove_unknown_document(self, service):
        expense = _create(service)

        with pytest.raises(NotFoundError):
            service.remove_document(expense.id, 999, "pm-7")
