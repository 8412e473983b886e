"""Document attachment ORM model (receipts, invoices) for expenses and payments."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class DocumentFileType(str, Enum):
    """Kind of attached file."""

    IMAGE = "image"
    DOCUMENT = "document"


class ExpenseDocument(Base, BaseModel):
    """Opaque attachment owned by exactly one expense or one payment.

    The file itself lives in document storage; this row only keeps the URL
    returned by the storage backend. stored is True only for files uploaded
    through the ledger, and only those files are deleted with the row.
    """

    __tablename__ = "expense_documents"

    expense_id: Mapped[int | None] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=True, index=True
    )
    payment_id: Mapped[int | None] = mapped_column(
        ForeignKey("expense_payments.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_type: Mapped[DocumentFileType] = mapped_column(
        SQLEnum(DocumentFileType, native_enum=False), nullable=False
    )
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    uploaded_by: Mapped[str] = mapped_column(String(64), nullable=False)

    expense: Mapped["Expense | None"] = relationship(  # noqa: F821
        "Expense", back_populates="documents", foreign_keys=[expense_id]
    )
    payment: Mapped["ExpensePayment | None"] = relationship(  # noqa: F821
        "ExpensePayment", back_populates="documents", foreign_keys=[payment_id]
    )

    __table_args__ = (
        CheckConstraint(
            "(expense_id IS NULL) != (payment_id IS NULL)",
            name="ck_document_single_owner",
        ),
    )

    def __repr__(self) -> str:
        return f"<ExpenseDocument(id={self.id}, name={self.name}, type={self.file_type.value})>"


__all__ = ["ExpenseDocument", "DocumentFileType"]
