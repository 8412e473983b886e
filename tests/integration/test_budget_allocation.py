"""Integration tests for project creation, budget snapshots and PM allocation."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from src.models import AuditLog
from src.models.project import Project, SupervisionType
from src.services.budget_calculator import WorkTitle
from src.services.errors import NotFoundError, ValidationError
from src.services.project_service import AMOUNT_PLACES, ProjectService


@pytest.fixture
def service(db_session):
    return ProjectService.for_session(db_session)


@pytest.fixture
def work_titles():
    return [
        WorkTitle(name="Foundation", quantity="2", unit_price="500", description="Slab on grade"),
        WorkTitle(name="Framing", quantity="1", unit_price="3000"),
    ]


class TestCreateProject:
    def test_budget_snapshot_and_steps(self, service, work_titles):
        project = service.create_project(
            title="Kitchen remodel",
            created_by="admin",
            work_titles=work_titles,
            general_conditions_percentage="10",
            supervision_type="part-time",
            supervision_weeks=2,
            discount="50",
        )

        assert project.id is not None
        assert project.work_titles_total == Decimal("4000")
        assert project.supervision_type == SupervisionType.PART_TIME
        assert project.supervision_fee == Decimal("1450")
        assert project.general_conditions == Decimal("545")
        assert project.total_budget == Decimal("5945")
        assert project.client_budget == Decimal("5945")
        assert [(s.name, s.price, s.order_index) for s in project.steps] == [
            ("Foundation", Decimal("1000"), 0),
            ("Framing", Decimal("3000"), 1),
        ]
        assert project.steps[0].description == "Slab on grade"
        assert project.pm_budgets is None
        assert project.assigned_pms == []

    def test_default_general_conditions(self, service):
        project = service.create_project(
            title="Deck",
            created_by="admin",
            work_titles=[WorkTitle(name="Decking", quantity=2, unit_price=500)],
            general_conditions_percentage="",
        )

        assert project.general_conditions_percentage == Decimal("18.5")
        assert project.total_budget == Decimal("1185")

    def test_pm_allocation(self, service):
        project = service.create_project(
            title="Deck",
            created_by="admin",
            work_titles=[WorkTitle(name="Decking", quantity=2, unit_price=500)],
            assigned_pms=["pm-1"],
            gross_profit_rate="28.5",
        )

        assert project.gross_profit_rate == Decimal("28.5")
        assert project.assigned_pms == ["pm-1"]
        assert {pm: Decimal(v) for pm, v in project.pm_budgets.items()} == {"pm-1": Decimal("847.275")}

    def test_proposal_budget_is_client_budget(self, service, work_titles):
        project = service.create_project(
            title="From proposal",
            created_by="admin",
            work_titles=work_titles,
            proposal_id="prop-77",
            proposal_budget="6500",
        )

        assert project.proposal_id == "prop-77"
        assert project.client_budget == Decimal("6500")
        assert project.total_budget != project.client_budget

    def test_requires_work_titles(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.create_project(title="Empty", created_by="admin", work_titles=[])
        assert exc_info.value.field == "work_titles"

    def test_requires_title(self, service, work_titles):
        with pytest.raises(ValidationError):
            service.create_project(title=" ", created_by="admin", work_titles=work_titles)

    def test_creation_is_audited(self, service, db_session, work_titles):
        project = service.create_project(title="Audit", created_by="admin", work_titles=work_titles)

        audit = db_session.execute(select(AuditLog)).scalar_one()
        assert (audit.entity_type, audit.entity_id, audit.action) == ("project", project.id, "create")


class TestAssignPms:
    def test_reassign_splits_stored_budget(self, service):
        project = service.create_project(
            title="Deck",
            created_by="admin",
            work_titles=[WorkTitle(name="Decking", quantity=2, unit_price=500)],
            assigned_pms=["pm-1"],
        )

        updated = service.assign_pms(project.id, ["pm-1", "pm-2"], gross_profit_rate=28.5)

        assert updated.assigned_pms == ["pm-1", "pm-2"]
        assert {pm: Decimal(v) for pm, v in updated.pm_budgets.items()} == {
            "pm-1": Decimal("423.6375"),
            "pm-2": Decimal("423.6375"),
        }
        assert updated.total_budget == Decimal("1185")

    def test_clearing_pms(self, service, work_titles):
        project = service.create_project(
            title="Deck", created_by="admin", work_titles=work_titles, assigned_pms=["pm-1"]
        )

        updated = service.assign_pms(project.id, [])

        assert updated.assigned_pms == []
        assert updated.pm_budgets is None
        assert updated.gross_profit_rate is None

    def test_unknown_project(self, service):
        with pytest.raises(NotFoundError):
            service.assign_pms(999, ["pm-1"])


class TestPreview:
    def test_preview_matches_created_snapshot(self, service, work_titles):
        preview = service.preview_budget(work_titles, supervision_type="full-time", supervision_weeks=1)
        project = service.create_project(
            title="Same inputs",
            created_by="admin",
            work_titles=work_titles,
            supervision_type="full-time",
            supervision_weeks=1,
        )

        assert project.total_budget == preview.total_budget

    def test_infer_inputs_from_proposal(self, service, work_titles):
        inputs = service.infer_inputs_from_proposal(work_titles, general_conditions="545", supervision_fee="1450")

        assert inputs.supervision_type == SupervisionType.FULL_TIME
        assert inputs.supervision_weeks == Decimal("1")
        assert inputs.general_conditions_percentage == Decimal("10.00")


class TestStoredSnapshot:
    @pytest.fixture
    def stored_project(self, service, session_factory):
        project = service.create_project(
            title="Fractional",
            created_by="admin",
            work_titles=[WorkTitle(name="Trim", quantity=1, unit_price="333.33")] * 3,
            general_conditions_percentage="18.55",
            supervision_type="part-time",
            supervision_weeks="1.5",
            discount="0.0125",
            assigned_pms=["pm-1", "pm-2", "pm-3"],
            gross_profit_rate="28.55",
        )
        session = session_factory()
        yield session.get(Project, project.id)
        session.close()

    def test_budget_recomputes_from_stored_fields(self, service, stored_project):
        recomputed = service.calculator.calculate(
            [
                WorkTitle(name=step.name, quantity=step.quantity, unit_price=step.unit_price)
                for step in stored_project.steps
            ],
            general_conditions_percentage=stored_project.general_conditions_percentage,
            supervision_type=stored_project.supervision_type,
            supervision_weeks=stored_project.supervision_weeks,
            discount=stored_project.discount,
            places=AMOUNT_PLACES,
        )

        assert stored_project.general_conditions_percentage == Decimal("18.55")
        assert recomputed.work_titles_total == stored_project.work_titles_total
        assert recomputed.supervision_fee == stored_project.supervision_fee
        assert recomputed.general_conditions == stored_project.general_conditions
        assert recomputed.total_budget == stored_project.total_budget
        assert stored_project.total_budget == (
            stored_project.work_titles_total
            + stored_project.general_conditions
            + stored_project.supervision_fee
            - stored_project.discount
        )
        assert sum(step.price for step in stored_project.steps) == stored_project.work_titles_total

    def test_pm_budgets_recompute_from_stored_fields(self, service, stored_project):
        allocation = service.allocator.allocate(
            stored_project.total_budget,
            stored_project.gross_profit_rate,
            stored_project.assigned_pms,
        )

        assert stored_project.gross_profit_rate == Decimal("28.55")
        assert {pm: Decimal(v) for pm, v in stored_project.pm_budgets.items()} == allocation.pm_budgets
        assert allocation.pm_budget_total + allocation.company_profit == stored_project.total_budget

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"general_conditions_percentage": "18.555"}, "general_conditions_percentage"),
            ({"gross_profit_rate": "28.555", "assigned_pms": ["pm-1"]}, "gross_profit_rate"),
            ({"supervision_type": "full-time", "supervision_weeks": "1.125"}, "supervision_weeks"),
            ({"discount": "0.00001"}, "discount"),
            ({"proposal_budget": "1000.00001"}, "proposal_budget"),
        ],
    )
    def test_inputs_finer_than_stored_scale_are_rejected(self, service, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            service.create_project(
                title="Too precise",
                created_by="admin",
                work_titles=[WorkTitle(name="Trim", quantity=1, unit_price="333.33")],
                **overrides,
            )

        assert exc_info.value.field == field

    def test_unit_price_finer_than_stored_scale_is_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.create_project(
                title="Too precise",
                created_by="admin",
                work_titles=[WorkTitle(name="Trim", quantity=1, unit_price="10.00005")],
            )

        assert exc_info.value.field == "unit_price"

    def test_reassign_rejects_fine_rate(self, service, stored_project):
        with pytest.raises(ValidationError) as exc_info:
            service.assign_pms(stored_project.id, ["pm-1"], gross_profit_rate="30.125")

        assert exc_info.value.field == "gross_profit_rate"
