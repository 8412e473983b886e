"""Expense payment ORM model - one entry of an expense's payment ledger."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class PaymentMethod(str, Enum):
    """How a payment was made."""

    CHECK = "check"
    WIRE = "wire"
    ACH = "ach"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    OTHER = "other"


class ExpensePayment(Base, BaseModel):
    """Payment recorded against an approved expense.

    Entries are created once and never mutated; only their attached documents
    change. sequence is the per-expense insertion counter used to order
    payments sharing the same payment_date.

    Attributes:
        expense_id: Owning expense
        sequence: 1-based insertion order within the expense
        amount: Paid amount (positive)
        payment_date: Date the payment was made
        payment_method: check/wire/ach/credit_card/cash/other
        check_number: Required for check payments
        reference_number: Required for wire and ACH payments
        paid_by: User who recorded the payment
        notes: Free-form notes
    """

    __tablename__ = "expense_payments"

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, native_enum=False), nullable=False
    )
    check_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    paid_by: Mapped[str] = mapped_column(String(64), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text(), nullable=True)

    # Relationships
    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense", back_populates="payments"
    )
    documents: Mapped[list["ExpenseDocument"]] = relationship(  # noqa: F821
        "ExpenseDocument",
        back_populates="payment",
        foreign_keys="ExpenseDocument.payment_id",
        order_by="ExpenseDocument.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("expense_id", "sequence", name="uq_payment_expense_sequence"),
        Index("idx_payment_expense_date", "expense_id", "payment_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<ExpensePayment(id={self.id}, expense_id={self.expense_id}, amount={self.amount}, "
            f"method={self.payment_method.value}, date={self.payment_date})>"
        )


__all__ = ["ExpensePayment", "PaymentMethod"]
