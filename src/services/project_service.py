"""Project service - budget preview, project creation and PM allocation."""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from src.models.project import Project, ProjectStep
from src.services.budget_calculator import (
    BudgetBreakdown,
    BudgetCalculator,
    ProposalBudgetInputs,
    WorkTitle,
)
from src.services.config import LedgerSettings, get_settings
from src.services.errors import ValidationError
from src.services.ledger_validator import to_decimal
from src.services.profit_allocator import ProfitAllocation, ProfitAllocator
from src.services.repository import AuditEntry, ProjectRepository, SqlAlchemyProjectRepository

logger = logging.getLogger(__name__)

# Decimal places of the project columns; stored inputs must fit them exactly
AMOUNT_PLACES = 4
RATE_PLACES = 2
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_PLACES)


def _require_places(value: Decimal, places: int, field: str) -> None:
    """Reject a value the project columns would round on save."""
    try:
        fits = value == value.quantize(Decimal(1).scaleb(-places))
    except InvalidOperation:
        fits = False
    if not fits:
        raise ValidationError(f"{field} allows at most {places} decimal places", field=field)


def _serialize_budgets(allocation: ProfitAllocation) -> Optional[dict]:
    if allocation.pm_budgets is None:
        return None
    return {pm_id: str(amount) for pm_id, amount in allocation.pm_budgets.items()}


class ProjectService:
    """Create projects with a frozen budget snapshot and split it among PMs."""

    def __init__(
        self,
        repository: ProjectRepository,
        calculator: Optional[BudgetCalculator] = None,
        allocator: Optional[ProfitAllocator] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        settings = settings or get_settings()
        self.repository = repository
        self.calculator = calculator or BudgetCalculator(
            full_time_rate=Decimal(str(settings.full_time_supervision_rate)),
            part_time_rate=Decimal(str(settings.part_time_supervision_rate)),
            default_general_conditions_percentage=Decimal(
                str(settings.default_general_conditions_percentage)
            ),
        )
        self.allocator = allocator or ProfitAllocator(
            default_gross_profit_rate=Decimal(str(settings.default_gross_profit_rate))
        )

    @classmethod
    def for_session(cls, db: Session) -> "ProjectService":
        return cls(SqlAlchemyProjectRepository(db))

    def preview_budget(
        self,
        work_titles: Sequence[WorkTitle],
        general_conditions_percentage: Any = None,
        supervision_type: Any = None,
        supervision_weeks: Any = None,
        discount: Any = None,
    ) -> BudgetBreakdown:
        """Recompute the budget for the current form inputs (nothing stored)."""
        return self.calculator.calculate(
            work_titles,
            general_conditions_percentage=general_conditions_percentage,
            supervision_type=supervision_type,
            supervision_weeks=supervision_weeks,
            discount=discount,
        )

    def infer_inputs_from_proposal(
        self,
        work_titles: Sequence[WorkTitle],
        general_conditions: Any,
        supervision_fee: Any,
    ) -> ProposalBudgetInputs:
        """Recover GC % and supervision from a proposal's totals."""
        return self.calculator.infer_from_proposal(work_titles, general_conditions, supervision_fee)

    def preview_allocation(
        self, total_budget: Any, gross_profit_rate: Any = None, assigned_pms: Iterable[str] = ()
    ) -> ProfitAllocation:
        return self.allocator.allocate(total_budget, gross_profit_rate, assigned_pms)

    def create_project(
        self,
        *,
        title: str,
        created_by: str,
        work_titles: Sequence[WorkTitle],
        description: Optional[str] = None,
        general_conditions_percentage: Any = None,
        supervision_type: Any = None,
        supervision_weeks: Any = None,
        discount: Any = None,
        assigned_pms: Iterable[str] = (),
        gross_profit_rate: Any = None,
        proposal_id: Optional[str] = None,
        proposal_budget: Any = None,
    ) -> Project:
        """Create a project from work titles and budget inputs.

        The budget is derived once and stored; work titles become project
        steps in their given order. With a proposal the client budget is the
        proposal's total, otherwise the derived total. Derived figures are
        rounded to AMOUNT_PLACES at each step and inputs finer than their
        columns are rejected, so the stored project reproduces its own
        total_budget and pm_budgets.

        Raises:
            ValidationError: Missing title/creator, no work titles or bad inputs
        """
        if not title or not title.strip():
            raise ValidationError("Project title is required", field="title")
        if not created_by or not str(created_by).strip():
            raise ValidationError("created_by is required", field="created_by")
        titles: List[WorkTitle] = list(work_titles)
        if not titles:
            raise ValidationError("At least one work title is required", field="work_titles")

        for wt in titles:
            _require_places(wt.quantity, AMOUNT_PLACES, "quantity")
            _require_places(wt.unit_price, AMOUNT_PLACES, "unit_price")

        breakdown = self.calculator.calculate(
            titles,
            general_conditions_percentage=general_conditions_percentage,
            supervision_type=supervision_type,
            supervision_weeks=supervision_weeks,
            discount=discount,
            places=AMOUNT_PLACES,
        )
        _require_places(
            breakdown.general_conditions_percentage, RATE_PLACES, "general_conditions_percentage"
        )
        _require_places(breakdown.supervision_weeks, RATE_PLACES, "supervision_weeks")
        _require_places(breakdown.discount, AMOUNT_PLACES, "discount")

        client_budget = breakdown.total_budget
        if proposal_budget is not None:
            client_budget = to_decimal(proposal_budget, "proposal_budget")
            _require_places(client_budget, AMOUNT_PLACES, "proposal_budget")

        pm_ids = list(dict.fromkeys(str(pm_id) for pm_id in assigned_pms))
        allocation = None
        if pm_ids:
            allocation = self.allocator.allocate(breakdown.total_budget, gross_profit_rate, pm_ids)
            _require_places(allocation.gross_profit_rate, RATE_PLACES, "gross_profit_rate")

        project = Project(
            title=title.strip(),
            description=description,
            created_by=str(created_by),
            proposal_id=proposal_id,
            general_conditions_percentage=breakdown.general_conditions_percentage,
            supervision_type=breakdown.supervision_type,
            supervision_weeks=breakdown.supervision_weeks,
            discount=breakdown.discount,
            work_titles_total=breakdown.work_titles_total,
            supervision_fee=breakdown.supervision_fee,
            general_conditions=breakdown.general_conditions,
            total_budget=breakdown.total_budget,
            client_budget=client_budget,
            assigned_pms=pm_ids,
            steps=[
                ProjectStep(
                    name=wt.name.strip(),
                    description=wt.description,
                    quantity=wt.quantity,
                    unit_price=wt.unit_price,
                    price=wt.price.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP),
                    order_index=index,
                )
                for index, wt in enumerate(titles)
            ],
        )
        if allocation is not None:
            project.gross_profit_rate = allocation.gross_profit_rate
            project.pm_budgets = _serialize_budgets(allocation)

        self.repository.save(
            project,
            audits=[
                AuditEntry(
                    entity=project,
                    entity_type="project",
                    action="create",
                    actor_id=str(created_by),
                    changes={
                        "total_budget": str(breakdown.total_budget),
                        "client_budget": str(client_budget),
                        "assigned_pms": pm_ids,
                    },
                )
            ],
        )
        logger.info(
            f"Created project {project.id} '{project.title}': total_budget={breakdown.total_budget} "
            f"steps={len(titles)} pms={len(pm_ids)}"
        )
        return project

    def get_project(self, project_id: int) -> Project:
        """Raises NotFoundError for unknown ids."""
        return self.repository.get(project_id)

    def assign_pms(
        self,
        project_id: int,
        pm_ids: Iterable[str],
        gross_profit_rate: Any = None,
        actor_id: Optional[str] = None,
    ) -> Project:
        """Re-split the stored total budget among a new set of PMs.

        An empty set clears the allocation.
        """
        project = self.repository.get(project_id)
        allocation = self.allocator.allocate(project.total_budget, gross_profit_rate, pm_ids)
        _require_places(allocation.gross_profit_rate, RATE_PLACES, "gross_profit_rate")
        pms = list(allocation.pm_budgets or {})

        project.assigned_pms = pms
        project.gross_profit_rate = allocation.gross_profit_rate if pms else None
        project.pm_budgets = _serialize_budgets(allocation)
        self.repository.save(
            project,
            audits=[
                AuditEntry(
                    entity=project,
                    entity_type="project",
                    action="assign_pms",
                    actor_id=actor_id,
                    changes={
                        "assigned_pms": pms,
                        "gross_profit_rate": str(allocation.gross_profit_rate),
                    },
                )
            ],
        )
        logger.info(f"Assigned {len(pms)} PMs to project {project_id}")
        return project


__all__ = ["ProjectService"]
