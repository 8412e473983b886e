"""Project budget API endpoints."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.models.project import SupervisionType
from src.services import get_db
from src.services.budget_calculator import BudgetBreakdown, WorkTitle
from src.services.project_service import ProjectService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


class WorkTitlePayload(BaseModel):
    name: str
    quantity: Decimal
    unit_price: Decimal
    description: Optional[str] = None

    def to_work_title(self) -> WorkTitle:
        return WorkTitle(
            name=self.name,
            quantity=self.quantity,
            unit_price=self.unit_price,
            description=self.description,
        )


class BudgetInputsPayload(BaseModel):
    """Budget form inputs; blank general conditions fall back to the default."""

    work_titles: List[WorkTitlePayload] = Field(default_factory=list)
    general_conditions_percentage: Optional[Union[Decimal, str]] = None
    supervision_type: Optional[str] = Field(None, description="none/part-time/full-time")
    supervision_weeks: Optional[Decimal] = None
    discount: Optional[Decimal] = None


class ProjectCreateRequest(BudgetInputsPayload):
    title: str
    description: Optional[str] = None
    created_by: str
    assigned_pms: List[str] = Field(default_factory=list)
    gross_profit_rate: Optional[Decimal] = None
    proposal_id: Optional[str] = None
    proposal_budget: Optional[Decimal] = None


class AssignPmsRequest(BaseModel):
    pm_ids: List[str]
    gross_profit_rate: Optional[Decimal] = None
    actor_id: Optional[str] = None


class BudgetBreakdownResponse(BaseModel):
    work_titles_total: Decimal
    supervision_type: SupervisionType
    supervision_weeks: Decimal
    supervision_fee: Decimal
    general_conditions_percentage: Decimal
    general_conditions: Decimal
    discount: Decimal
    total_budget: Decimal

    @classmethod
    def from_breakdown(cls, breakdown: BudgetBreakdown) -> "BudgetBreakdownResponse":
        return cls(**breakdown._asdict())


class ProjectStepResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    price: Decimal
    order_index: int

    model_config = ConfigDict(from_attributes=True)


class ProjectResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    created_by: str
    proposal_id: Optional[str] = None
    general_conditions_percentage: Decimal
    supervision_type: SupervisionType
    supervision_weeks: Decimal
    discount: Decimal
    work_titles_total: Decimal
    supervision_fee: Decimal
    general_conditions: Decimal
    total_budget: Decimal
    client_budget: Decimal
    gross_profit_rate: Optional[Decimal] = None
    assigned_pms: List[str] = []
    pm_budgets: Optional[Dict[str, Decimal]] = None
    steps: List[ProjectStepResponse] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


def get_project_service(db: Session = Depends(get_db)) -> ProjectService:  # noqa: B008
    return ProjectService.for_session(db)


@router.post("/budget-preview", response_model=BudgetBreakdownResponse)
def preview_budget(
    payload: BudgetInputsPayload,
    service: ProjectService = Depends(get_project_service),  # noqa: B008
) -> BudgetBreakdownResponse:
    """Recompute the budget for the current inputs without storing anything."""
    breakdown = service.preview_budget(
        [wt.to_work_title() for wt in payload.work_titles],
        general_conditions_percentage=payload.general_conditions_percentage,
        supervision_type=payload.supervision_type,
        supervision_weeks=payload.supervision_weeks,
        discount=payload.discount,
    )
    return BudgetBreakdownResponse.from_breakdown(breakdown)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreateRequest,
    service: ProjectService = Depends(get_project_service),  # noqa: B008
) -> ProjectResponse:
    project = service.create_project(
        title=payload.title,
        created_by=payload.created_by,
        work_titles=[wt.to_work_title() for wt in payload.work_titles],
        description=payload.description,
        general_conditions_percentage=payload.general_conditions_percentage,
        supervision_type=payload.supervision_type,
        supervision_weeks=payload.supervision_weeks,
        discount=payload.discount,
        assigned_pms=payload.assigned_pms,
        gross_profit_rate=payload.gross_profit_rate,
        proposal_id=payload.proposal_id,
        proposal_budget=payload.proposal_budget,
    )
    return ProjectResponse.model_validate(project)


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: int,
    service: ProjectService = Depends(get_project_service),  # noqa: B008
) -> ProjectResponse:
    return ProjectResponse.model_validate(service.get_project(project_id))


@router.post("/{project_id}/pms", response_model=ProjectResponse)
def assign_pms(
    project_id: int,
    payload: AssignPmsRequest,
    service: ProjectService = Depends(get_project_service),  # noqa: B008
) -> ProjectResponse:
    """Split the stored total budget equally among the given PMs."""
    project = service.assign_pms(
        project_id,
        payload.pm_ids,
        gross_profit_rate=payload.gross_profit_rate,
        actor_id=payload.actor_id,
    )
    return ProjectResponse.model_validate(project)
