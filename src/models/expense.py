"""Expense ORM model - approval/payment record for office and project costs."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class ExpenseType(str, Enum):
    """What the expense pays for."""

    SUBCONTRACTOR = "subcontractor"
    MATERIAL = "material"
    OFFICE = "office"
    PROJECT = "project"
    OTHER = "other"


class ExpenseStatus(str, Enum):
    """Approval and payment status (always derived, see ledger_validator.derive_status)."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class Expense(Base, BaseModel):
    """Expense awaiting approval and payment.

    An expense is assigned either to the office (is_office=True) or to a
    project (project_id, optionally narrowed to a work title via step_id).
    Payments are kept in an append-only child collection; total_paid caches
    their sum and status is re-derived after every mutation.

    The version column is an optimistic concurrency token: a write based on a
    stale read fails with StaleDataError instead of overwriting the ledger.
    """

    __tablename__ = "expenses"

    type: Mapped[ExpenseType] = mapped_column(
        SQLEnum(ExpenseType, native_enum=False),
        nullable=False,
        index=True,
        comment="subcontractor/material/office/project/other",
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Expense amount (positive, immutable once approved)",
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Office: stationery, kitchen... Project: toll, parking, permit...",
    )
    invoice_number: Mapped[str | None] = mapped_column(
        String(100), nullable=True, comment="Invoice/reference number from vendor"
    )
    expense_date: Mapped[date] = mapped_column(
        Date, nullable=False, index=True, comment="Date the expense was incurred"
    )

    # Assignment: office XOR project
    is_office: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    project_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True, comment="Project the expense is charged to"
    )
    step_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Work title (project step) within the project"
    )

    # Counterpart references (type-dependent)
    vendor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subcontractor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    material_request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Derived ledger state
    status: Mapped[ExpenseStatus] = mapped_column(
        SQLEnum(ExpenseStatus, native_enum=False),
        nullable=False,
        default=ExpenseStatus.PENDING,
        index=True,
    )
    total_paid: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Cached sum of payments.amount",
    )

    # Actors
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Relationships
    payments: Mapped[list["ExpensePayment"]] = relationship(  # noqa: F821
        "ExpensePayment",
        back_populates="expense",
        order_by="ExpensePayment.sequence",
        cascade="all, delete-orphan",
    )
    documents: Mapped[list["ExpenseDocument"]] = relationship(  # noqa: F821
        "ExpenseDocument",
        back_populates="expense",
        foreign_keys="ExpenseDocument.expense_id",
        order_by="ExpenseDocument.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_expense_project_status", "project_id", "status"),
        Index("idx_expense_office", "is_office"),
    )

    @property
    def remaining_balance(self) -> Decimal:
        """Amount still payable on this expense."""
        return self.amount - self.total_paid

    def __repr__(self) -> str:
        return (
            f"<Expense(id={self.id}, type={self.type.value}, amount={self.amount}, "
            f"total_paid={self.total_paid}, status={self.status.value})>"
        )


__all__ = ["Expense", "ExpenseStatus", "ExpenseType"]
