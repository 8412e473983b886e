"""Unit tests for splitting a project budget between company profit and PMs."""

from decimal import Decimal

import pytest

from src.services.profit_allocator import ProfitAllocator


@pytest.fixture
def allocator():
    return ProfitAllocator()


class TestProfitAllocator:
    """Company profit / PM budget split."""

    def test_pm_budget_total(self, allocator):
        allocation = allocator.allocate(Decimal("1185"), Decimal("28.5"), ["pm-1"])

        assert allocation.pm_rate == Decimal("71.5")
        assert allocation.pm_budget_total == Decimal("847.275")
        assert allocation.company_profit == Decimal("337.725")
        assert allocation.pm_budgets == {"pm-1": Decimal("847.275")}

    def test_default_rate(self, allocator):
        assert allocator.calculate_pm_budget(1185) == Decimal("847.275")

    def test_equal_split_among_pms(self, allocator):
        allocation = allocator.allocate(Decimal("1000"), 20, ["a", "b", "c", "d"])

        assert allocation.pm_budget_per_pm == Decimal("200")
        assert set(allocation.pm_budgets.values()) == {Decimal("200")}
        assert list(allocation.pm_budgets) == ["a", "b", "c", "d"]

    def test_duplicate_pms_collapse(self, allocator):
        allocation = allocator.allocate(Decimal("1000"), 50, ["a", "b", "a", 7])

        assert list(allocation.pm_budgets) == ["a", "b", "7"]
        assert allocation.pm_budget_per_pm == Decimal("500") / Decimal(3)

    def test_no_pms_means_no_allocation(self, allocator):
        allocation = allocator.allocate(Decimal("1000"), 30, [])

        assert allocation.pm_budgets is None
        assert allocation.pm_budget_per_pm is None
        assert allocation.pm_budget_total == Decimal("700")

    @pytest.mark.parametrize(
        "rate,expected",
        [(-10, Decimal("0")), (150, Decimal("100")), ("42.5", Decimal("42.5"))],
    )
    def test_rate_is_clamped(self, allocator, rate, expected):
        assert allocator.clamp_rate(rate) == expected

    def test_full_company_profit_leaves_nothing_for_pms(self, allocator):
        allocation = allocator.allocate(Decimal("900"), 120, ["a"])
        assert allocation.pm_budget_total == Decimal("0")
        assert allocation.company_profit == Decimal("900")

    @pytest.mark.parametrize(
        "total,rate",
        [
            ("1185", "28.5"),
            ("0.01", "33.33"),
            ("123456.789", "12.345"),
            ("-815", "28.5"),
            ("1000000", "0"),
        ],
    )
    def test_conservation(self, allocator, total, rate):
        allocation = allocator.allocate(Decimal(total), Decimal(rate), ["a", "b", "c"])
        assert allocation.pm_budget_total + allocation.company_profit == Decimal(total)

    def test_custom_default_rate(self):
        allocator = ProfitAllocator(default_gross_profit_rate=Decimal("40"))
        assert allocator.calculate_pm_budget(Decimal("100")) == Decimal("60")
