"""Contract tests for the project budget endpoints."""

from decimal import Decimal


def _payload(**overrides):
    payload = {
        "title": "Bathroom remodel",
        "created_by": "admin",
        "work_titles": [{"name": "Tile", "quantity": 2, "unit_price": 500}],
        "general_conditions_percentage": 18.5,
        "supervision_type": "none",
        "discount": 0,
    }
    payload.update(overrides)
    return payload


class TestBudgetPreview:
    def test_preview(self, client):
        response = client.post("/api/projects/budget-preview", json=_payload())

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["work_titles_total"]) == Decimal("1000")
        assert Decimal(body["general_conditions"]) == Decimal("185")
        assert Decimal(body["total_budget"]) == Decimal("1185")
        assert body["supervision_type"] == "none"

    def test_blank_general_conditions_uses_default(self, client):
        response = client.post(
            "/api/projects/budget-preview", json=_payload(general_conditions_percentage="")
        )

        assert Decimal(response.json()["general_conditions_percentage"]) == Decimal("18.5")

    def test_invalid_work_title(self, client):
        response = client.post(
            "/api/projects/budget-preview",
            json=_payload(work_titles=[{"name": "Tile", "quantity": 0, "unit_price": 500}]),
        )

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "quantity"


class TestProjects:
    def test_create_and_get(self, client):
        response = client.post("/api/projects", json=_payload(assigned_pms=["pm-1"]))

        assert response.status_code == 201
        project = response.json()
        assert Decimal(project["total_budget"]) == Decimal("1185")
        assert Decimal(project["pm_budgets"]["pm-1"]) == Decimal("847.275")
        assert [s["name"] for s in project["steps"]] == ["Tile"]

        fetched = client.get(f"/api/projects/{project['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == project["id"]

    def test_assign_pms(self, client):
        project = client.post("/api/projects", json=_payload()).json()

        response = client.post(
            f"/api/projects/{project['id']}/pms",
            json={"pm_ids": ["pm-1", "pm-2"], "gross_profit_rate": "50"},
        )

        assert response.status_code == 200
        budgets = response.json()["pm_budgets"]
        assert {pm: Decimal(v) for pm, v in budgets.items()} == {
            "pm-1": Decimal("296.25"),
            "pm-2": Decimal("296.25"),
        }

    def test_unknown_project(self, client):
        response = client.get("/api/projects/42")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"
