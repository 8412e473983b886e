"""Profit allocator for splitting a project budget between the company and its PMs.

Company Profit % is the gross profit rate (e.g. 28.5). PM budget is the
remaining % (100 - rate), divided equally among the assigned PMs.
Invariant: pm_budget_total + company_profit == total_budget.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, NamedTuple, Optional

from src.services.ledger_validator import to_decimal

logger = logging.getLogger(__name__)

DEFAULT_GROSS_PROFIT_RATE = Decimal("28.5")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


class ProfitAllocation(NamedTuple):
    """Result of splitting a total budget."""

    total_budget: Decimal
    gross_profit_rate: Decimal
    pm_rate: Decimal
    company_profit: Decimal
    pm_budget_total: Decimal
    pm_budget_per_pm: Optional[Decimal]
    pm_budgets: Optional[Dict[str, Decimal]]


class ProfitAllocator:
    """Company profit / PM budget split engine."""

    def __init__(self, default_gross_profit_rate: Decimal = DEFAULT_GROSS_PROFIT_RATE):
        """Initialize profit allocator.

        Args:
            default_gross_profit_rate: Rate used when none is supplied
        """
        self.default_gross_profit_rate = Decimal(str(default_gross_profit_rate))

    def clamp_rate(self, gross_profit_rate: Any) -> Decimal:
        """Clamp the gross profit rate into [0, 100] (None -> default)."""
        if gross_profit_rate is None:
            rate = self.default_gross_profit_rate
        else:
            rate = to_decimal(gross_profit_rate, "gross_profit_rate")
        if rate < ZERO or rate > HUNDRED:
            logger.debug("Clamping gross profit rate %s into [0, 100]", rate)
        return max(ZERO, min(HUNDRED, rate))

    def calculate_pm_budget(self, total_budget: Any, gross_profit_rate: Any = None) -> Decimal:
        """PM share of the total budget: total * (100 - rate) / 100."""
        total = to_decimal(total_budget, "total_budget")
        rate = self.clamp_rate(gross_profit_rate)
        return total * (HUNDRED - rate) / HUNDRED

    def allocate(
        self,
        total_budget: Any,
        gross_profit_rate: Any = None,
        assigned_pms: Iterable[str] = (),
    ) -> ProfitAllocation:
        """Split the total budget into company profit and equal PM budgets.

        Args:
            total_budget: Internal project budget
            gross_profit_rate: Company profit % (clamped to [0, 100])
            assigned_pms: PM ids; duplicates are ignored, order preserved

        Returns:
            ProfitAllocation; pm_budgets and pm_budget_per_pm are None when no
            PM is assigned
        """
        total = to_decimal(total_budget, "total_budget")
        rate = self.clamp_rate(gross_profit_rate)
        pm_rate = HUNDRED - rate
        pm_budget_total = total * pm_rate / HUNDRED
        # Equals total * rate / 100; subtraction keeps the sum exact
        company_profit = total - pm_budget_total

        pm_ids = list(dict.fromkeys(str(pm_id) for pm_id in assigned_pms))
        if not pm_ids:
            return ProfitAllocation(
                total_budget=total,
                gross_profit_rate=rate,
                pm_rate=pm_rate,
                company_profit=company_profit,
                pm_budget_total=pm_budget_total,
                pm_budget_per_pm=None,
                pm_budgets=None,
            )

        per_pm = pm_budget_total / Decimal(len(pm_ids))
        return ProfitAllocation(
            total_budget=total,
            gross_profit_rate=rate,
            pm_rate=pm_rate,
            company_profit=company_profit,
            pm_budget_total=pm_budget_total,
            pm_budget_per_pm=per_pm,
            pm_budgets={pm_id: per_pm for pm_id in pm_ids},
        )


__all__ = ["ProfitAllocation", "ProfitAllocator", "DEFAULT_GROSS_PROFIT_RATE"]
