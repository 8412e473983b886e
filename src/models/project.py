"""Project ORM models - budget snapshot and immutable work-title steps."""

from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class SupervisionType(str, Enum):
    """Contracted on-site supervision."""

    NONE = "none"
    PART_TIME = "part-time"
    FULL_TIME = "full-time"


class Project(Base, BaseModel):
    """Project with the budget snapshot taken when it was created.

    total_budget is the internal budget derived from work titles, general
    conditions, supervision and discount. client_budget is what the client
    sees (the proposal total when the project comes from a proposal).
    pm_budgets maps PM id -> allocated amount (stored as decimal strings).
    """

    __tablename__ = "projects"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    proposal_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Upstream proposal the project was created from"
    )

    # Budget inputs
    general_conditions_percentage: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), nullable=False
    )
    supervision_type: Mapped[SupervisionType] = mapped_column(
        SQLEnum(SupervisionType, native_enum=False),
        nullable=False,
        default=SupervisionType.NONE,
    )
    supervision_weeks: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, default=Decimal("0")
    )
    discount: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=Decimal("0"))

    # Derived budget snapshot
    work_titles_total: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    supervision_fee: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    general_conditions: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    total_budget: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, comment="Internal budget (admin/PM only)"
    )
    client_budget: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, comment="Client-facing budget"
    )

    # Profit split
    gross_profit_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    assigned_pms: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    pm_budgets: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    steps: Mapped[list["ProjectStep"]] = relationship(
        "ProjectStep",
        back_populates="project",
        order_by="ProjectStep.order_index",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<Project(id={self.id}, title={self.title}, total_budget={self.total_budget}, "
            f"client_budget={self.client_budget})>"
        )


class ProjectStep(Base, BaseModel):
    """Work title frozen into a project step at creation time."""

    __tablename__ = "project_steps"

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    price: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, comment="quantity * unit_price"
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    project: Mapped["Project"] = relationship("Project", back_populates="steps")

    def __repr__(self) -> str:
        return f"<ProjectStep(id={self.id}, project_id={self.project_id}, name={self.name})>"


__all__ = ["Project", "ProjectStep", "SupervisionType"]
