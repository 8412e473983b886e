"""Expense and payment ledger API endpoints.

Ledger errors propagate to the LedgerError handler in src.api.app, which
turns them into {"error": {...}} bodies with the error's HTTP status.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.models.document import DocumentFileType
from src.models.expense import ExpenseStatus, ExpenseType
from src.models.expense_payment import PaymentMethod
from src.services import get_db
from src.services.config import get_settings
from src.services.document_storage import DocumentStorage, LocalDocumentStorage
from src.services.expense_service import ExpenseService
from src.services.payment_ledger import PaymentLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/expenses", tags=["expenses"])


# ============================================================================
# Schemas
# ============================================================================


class ExpenseCreateRequest(BaseModel):
    """Payload for POST /api/expenses."""

    type: str = Field(..., description="subcontractor/material/office/project/other")
    amount: Decimal = Field(..., description="Expense amount (> 0)")
    description: str
    created_by: str
    expense_date: Optional[date] = None
    is_office: bool = False
    project_id: Optional[int] = None
    step_id: Optional[int] = None
    category: Optional[str] = None
    invoice_number: Optional[str] = None
    vendor_id: Optional[str] = None
    subcontractor_id: Optional[str] = None
    material_request_id: Optional[str] = None


class ApproveRequest(BaseModel):
    approver_id: str


class RejectRequest(BaseModel):
    approver_id: str
    reason: str


class DocumentCreateRequest(BaseModel):
    """Register an already stored receipt/invoice by URL."""

    name: str
    file_type: str = Field(..., description="image or document")
    file_url: str
    file_size: Optional[int] = None
    uploaded_by: str


class PaymentCreateRequest(BaseModel):
    """Payload for POST /api/expenses/{id}/payments."""

    amount: Decimal
    payment_method: str = Field(..., description="check/wire/ach/credit_card/cash/other")
    paid_by: str
    payment_date: Optional[date] = None
    check_number: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class DocumentResponse(BaseModel):
    id: int
    name: str
    file_url: str
    file_type: DocumentFileType
    file_size: Optional[int] = None
    uploaded_by: str
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    id: int
    expense_id: int
    sequence: int
    amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    check_number: Optional[str] = None
    reference_number: Optional[str] = None
    paid_by: str
    notes: Optional[str] = None
    created_at: datetime
    documents: List[DocumentResponse] = []

    model_config = ConfigDict(from_attributes=True)


class ExpenseResponse(BaseModel):
    id: int
    type: ExpenseType
    amount: Decimal
    description: str
    category: Optional[str] = None
    invoice_number: Optional[str] = None
    expense_date: date
    is_office: bool
    project_id: Optional[int] = None
    step_id: Optional[int] = None
    vendor_id: Optional[str] = None
    subcontractor_id: Optional[str] = None
    material_request_id: Optional[str] = None
    status: ExpenseStatus
    total_paid: Decimal
    remaining_balance: Decimal
    created_by: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    created_at: datetime
    payments: List[PaymentResponse] = []
    documents: List[DocumentResponse] = []

    model_config = ConfigDict(from_attributes=True)


class ExpenseListResponse(BaseModel):
    expenses: List[ExpenseResponse]


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]


# ============================================================================
# Dependencies
# ============================================================================


def get_document_storage() -> DocumentStorage:
    """Document storage rooted at DOCUMENT_STORAGE_DIR."""
    return LocalDocumentStorage(get_settings().document_storage_dir)


def get_expense_service(
    db: Session = Depends(get_db),  # noqa: B008
    storage: DocumentStorage = Depends(get_document_storage),  # noqa: B008
) -> ExpenseService:
    return ExpenseService.for_session(db, storage=storage)


def get_payment_ledger(
    db: Session = Depends(get_db),  # noqa: B008
    storage: DocumentStorage = Depends(get_document_storage),  # noqa: B008
) -> PaymentLedger:
    return PaymentLedger.for_session(db, storage=storage)


# ============================================================================
# Expense endpoints
# ============================================================================


@router.post("", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
def create_expense(
    payload: ExpenseCreateRequest,
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> ExpenseResponse:
    """Create a pending expense.

    Returns:
        201: Created expense
        400: Validation error
    """
    expense = service.create_expense(
        expense_type=payload.type,
        amount=payload.amount,
        description=payload.description,
        created_by=payload.created_by,
        expense_date=payload.expense_date,
        is_office=payload.is_office,
        project_id=payload.project_id,
        step_id=payload.step_id,
        category=payload.category,
        invoice_number=payload.invoice_number,
        vendor_id=payload.vendor_id,
        subcontractor_id=payload.subcontractor_id,
        material_request_id=payload.material_request_id,
    )
    return ExpenseResponse.model_validate(expense)


@router.get("", response_model=ExpenseListResponse)
def list_expenses(
    project_id: Optional[int] = Query(None),  # noqa: B008
    office: bool = Query(False),  # noqa: B008
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> ExpenseListResponse:
    """List expenses (newest expense_date first), optionally by project or office."""
    expenses = service.list_expenses(project_id=project_id, office_only=office)
    return ExpenseListResponse(
        expenses=[ExpenseResponse.model_validate(expense) for expense in expenses]
    )


@router.get("/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: int,
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> ExpenseResponse:
    return ExpenseResponse.model_validate(service.get_expense(expense_id))


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    expense_id: int,
    actor_id: str = Query(...),  # noqa: B008
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> Response:
    """Delete an expense without payments (409 once payments exist)."""
    service.delete_expense(expense_id, actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{expense_id}/approve", response_model=ExpenseResponse)
def approve_expense(
    expense_id: int,
    payload: ApproveRequest,
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> ExpenseResponse:
    return ExpenseResponse.model_validate(service.approve_expense(expense_id, payload.approver_id))


@router.post("/{expense_id}/reject", response_model=ExpenseResponse)
def reject_expense(
    expense_id: int,
    payload: RejectRequest,
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> ExpenseResponse:
    expense = service.reject_expense(expense_id, payload.approver_id, payload.reason)
    return ExpenseResponse.model_validate(expense)


@router.post(
    "/{expense_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
def attach_document(
    expense_id: int,
    payload: DocumentCreateRequest,
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> DocumentResponse:
    document = service.attach_document(
        expense_id,
        name=payload.name,
        file_type=payload.file_type,
        uploaded_by=payload.uploaded_by,
        file_url=payload.file_url,
        file_size=payload.file_size,
    )
    return DocumentResponse.model_validate(document)


@router.delete("/{expense_id}/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_document(
    expense_id: int,
    document_id: int,
    actor_id: str = Query(...),  # noqa: B008
    service: ExpenseService = Depends(get_expense_service),  # noqa: B008
) -> Response:
    service.remove_document(expense_id, document_id, actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Payment endpoints
# ============================================================================


@router.post(
    "/{expense_id}/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_payment(
    expense_id: int,
    payload: PaymentCreateRequest,
    ledger: PaymentLedger = Depends(get_payment_ledger),  # noqa: B008
) -> PaymentResponse:
    """Record a payment.

    Returns:
        201: Recorded payment
        400: Validation error
        404: Unknown expense
        409: Expense not payable, or payment exceeds remaining balance
    """
    payment = ledger.add_payment(
        expense_id,
        amount=payload.amount,
        payment_method=payload.payment_method,
        paid_by=payload.paid_by,
        payment_date=payload.payment_date,
        check_number=payload.check_number,
        reference_number=payload.reference_number,
        notes=payload.notes,
    )
    return PaymentResponse.model_validate(payment)


@router.get("/{expense_id}/payments", response_model=PaymentListResponse)
def list_payments(
    expense_id: int,
    ledger: PaymentLedger = Depends(get_payment_ledger),  # noqa: B008
) -> PaymentListResponse:
    """Payments newest first; same-date payments in the order they were recorded."""
    payments = ledger.list_payments(expense_id)
    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(payment) for payment in payments]
    )


@router.delete("/{expense_id}/payments/{payment_id}", response_model=ExpenseResponse)
def delete_payment(
    expense_id: int,
    payment_id: int,
    actor_id: str = Query(...),  # noqa: B008
    ledger: PaymentLedger = Depends(get_payment_ledger),  # noqa: B008
) -> ExpenseResponse:
    """Remove a payment; returns the expense with its re-derived status."""
    return ExpenseResponse.model_validate(ledger.delete_payment(expense_id, payment_id, actor_id))
