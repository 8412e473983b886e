"""Budget calculator for deriving a project's internal budget.

Algorithm:
1. work_titles_total = sum(quantity * unit_price)
2. supervision_fee = weekly rate (full-time 1450, part-time 725) * weeks,
   0 for no supervision or no weeks
3. general_conditions = (work_titles_total + supervision_fee) * gc% / 100,
   gc% falling back to 18.5 when blank or not numeric
4. total_budget = work_titles_total + general_conditions + supervision_fee - discount

All arithmetic is Decimal and the calculator keeps no state between calls, so
recomputing with unchanged inputs always yields the same breakdown. The
discount is not clamped: a discount above the subtotal gives a negative total.
With places set, each figure is rounded before the next step uses it, so a
stored breakdown can be derived again from its own stored inputs.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, NamedTuple

from src.models.project import SupervisionType
from src.services.errors import ValidationError
from src.services.ledger_validator import to_decimal

logger = logging.getLogger(__name__)

DEFAULT_GENERAL_CONDITIONS_PERCENTAGE = Decimal("18.5")
FULL_TIME_SUPERVISION_RATE = Decimal("1450")
PART_TIME_SUPERVISION_RATE = Decimal("725")

ZERO = Decimal("0")
HUNDRED = Decimal("100")
# Supervision fee counts as whole weeks when within this distance of an integer
WEEK_MATCH_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class WorkTitle:
    """Billable line item: price is always quantity * unit_price."""

    name: str
    quantity: Decimal
    unit_price: Decimal
    description: str | None = None

    def __post_init__(self):
        if not self.name or not str(self.name).strip():
            raise ValidationError("Work title name is required", field="name")
        quantity = to_decimal(self.quantity, "quantity")
        unit_price = to_decimal(self.unit_price, "unit_price")
        if quantity <= ZERO:
            raise ValidationError(
                f"Work title '{self.name}' quantity must be greater than 0", field="quantity"
            )
        if unit_price <= ZERO:
            raise ValidationError(
                f"Work title '{self.name}' unit_price must be greater than 0", field="unit_price"
            )
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "unit_price", unit_price)

    @property
    def price(self) -> Decimal:
        return self.quantity * self.unit_price


class BudgetBreakdown(NamedTuple):
    """Every intermediate figure of one budget derivation."""

    work_titles_total: Decimal
    supervision_type: SupervisionType
    supervision_weeks: Decimal
    supervision_fee: Decimal
    general_conditions_percentage: Decimal
    general_conditions: Decimal
    discount: Decimal
    total_budget: Decimal


class ProposalBudgetInputs(NamedTuple):
    """Calculator inputs recovered from an upstream proposal's totals."""

    general_conditions_percentage: Decimal
    supervision_type: SupervisionType
    supervision_weeks: Decimal


def _optional_decimal(value: Any) -> Decimal | None:
    """Parse lenient numeric input; blank or non-numeric gives None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    text = str(value).strip()
    if not text:
        return None
    try:
        result = Decimal(text)
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _round_half_up(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def parse_supervision_type(value: Any) -> SupervisionType:
    """Normalize 'full-time' / 'part-time' / 'none' (None means none)."""
    if value is None or value == "":
        return SupervisionType.NONE
    try:
        return SupervisionType(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown supervision type: {value!r}", field="supervision_type"
        ) from e


class BudgetCalculator:
    """Pure budget derivation engine.

    Rates and the general-conditions fallback are injected so deployments can
    configure them; defaults match the company's standard price list.
    """

    def __init__(
        self,
        full_time_rate: Decimal = FULL_TIME_SUPERVISION_RATE,
        part_time_rate: Decimal = PART_TIME_SUPERVISION_RATE,
        default_general_conditions_percentage: Decimal = DEFAULT_GENERAL_CONDITIONS_PERCENTAGE,
    ):
        self.full_time_rate = Decimal(str(full_time_rate))
        self.part_time_rate = Decimal(str(part_time_rate))
        self.default_general_conditions_percentage = Decimal(
            str(default_general_conditions_percentage)
        )

    def supervision_rate(self, supervision_type: SupervisionType) -> Decimal:
        """Weekly supervision rate for the given type."""
        if supervision_type == SupervisionType.FULL_TIME:
            return self.full_time_rate
        if supervision_type == SupervisionType.PART_TIME:
            return self.part_time_rate
        return ZERO

    def supervision_fee(self, supervision_type: Any, supervision_weeks: Any) -> Decimal:
        """Weekly rate * weeks, or 0 when there is no supervision or no weeks."""
        kind = parse_supervision_type(supervision_type)
        weeks = _optional_decimal(supervision_weeks) or ZERO
        if kind == SupervisionType.NONE or weeks <= ZERO:
            return ZERO
        return self.supervision_rate(kind) * weeks

    def resolve_general_conditions_percentage(self, value: Any) -> Decimal:
        """Use the entered percentage when numeric, the default otherwise."""
        parsed = _optional_decimal(value)
        if parsed is None:
            return self.default_general_conditions_percentage
        return parsed

    def calculate(
        self,
        work_titles: Iterable[WorkTitle],
        general_conditions_percentage: Any = None,
        supervision_type: Any = SupervisionType.NONE,
        supervision_weeks: Any = None,
        discount: Any = None,
        places: int | None = None,
    ) -> BudgetBreakdown:
        """Derive the internal project budget.

        Args:
            work_titles: Line items (quantity and unit price > 0)
            general_conditions_percentage: Overhead %; blank/non-numeric -> default
            supervision_type: none / part-time / full-time
            supervision_weeks: Contracted weeks (blank -> 0, must not be negative)
            discount: Flat discount (blank -> 0, must not be negative)
            places: Round each derived figure half-up to this many decimal
                places before it feeds the next step (None keeps exact values)

        Returns:
            BudgetBreakdown with every intermediate figure

        Raises:
            ValidationError: Unknown supervision type, negative weeks or discount
        """
        kind = parse_supervision_type(supervision_type)

        weeks = _optional_decimal(supervision_weeks) or ZERO
        if weeks < ZERO:
            raise ValidationError("supervision_weeks cannot be negative", field="supervision_weeks")

        discount_value = _optional_decimal(discount) or ZERO
        if discount_value < ZERO:
            raise ValidationError("discount cannot be negative", field="discount")

        quantum = None if places is None else Decimal(1).scaleb(-places)

        def fix(value: Decimal) -> Decimal:
            if quantum is None:
                return value
            return value.quantize(quantum, rounding=ROUND_HALF_UP)

        work_titles_total = sum((fix(wt.price) for wt in work_titles), ZERO)
        fee = fix(self.supervision_fee(kind, weeks))
        gc_pct = self.resolve_general_conditions_percentage(general_conditions_percentage)
        general_conditions = fix((work_titles_total + fee) * gc_pct / HUNDRED)
        total = work_titles_total + general_conditions + fee - discount_value

        if total < ZERO:
            logger.warning(
                "Discount %s exceeds budget subtotal; total_budget is negative (%s)",
                discount_value,
                total,
            )

        return BudgetBreakdown(
            work_titles_total=work_titles_total,
            supervision_type=kind,
            supervision_weeks=weeks,
            supervision_fee=fee,
            general_conditions_percentage=gc_pct,
            general_conditions=general_conditions,
            discount=discount_value,
            total_budget=total,
        )

    def infer_from_proposal(
        self,
        work_titles: Iterable[WorkTitle],
        general_conditions: Any,
        supervision_fee: Any,
    ) -> ProposalBudgetInputs:
        """Recover calculator inputs from a proposal's money totals.

        The general-conditions percentage is the proposal's GC amount over
        (work titles + supervision fee), rounded to two places. The supervision
        fee maps to whole full-time weeks when it divides evenly, then to whole
        part-time weeks, otherwise to part-time with rounded (or, when that
        rounds to zero, ceiled) weeks.
        """
        work_titles_total = sum((wt.price for wt in work_titles), ZERO)
        gc_amount = _optional_decimal(general_conditions) or ZERO
        fee = _optional_decimal(supervision_fee) or ZERO

        gc_pct = self.default_general_conditions_percentage
        base = work_titles_total + fee
        if base > ZERO and gc_amount > ZERO:
            gc_pct = (gc_amount * HUNDRED / base).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

        if fee <= ZERO:
            return ProposalBudgetInputs(gc_pct, SupervisionType.NONE, ZERO)

        full_weeks = fee / self.full_time_rate
        part_weeks = fee / self.part_time_rate
        full_rounded = _round_half_up(full_weeks)
        part_rounded = _round_half_up(part_weeks)

        if abs(full_weeks - full_rounded) < WEEK_MATCH_TOLERANCE and full_rounded > ZERO:
            return ProposalBudgetInputs(gc_pct, SupervisionType.FULL_TIME, full_rounded)
        if abs(part_weeks - part_rounded) < WEEK_MATCH_TOLERANCE and part_rounded > ZERO:
            return ProposalBudgetInputs(gc_pct, SupervisionType.PART_TIME, part_rounded)
        if part_rounded > ZERO:
            return ProposalBudgetInputs(gc_pct, SupervisionType.PART_TIME, part_rounded)
        return ProposalBudgetInputs(
            gc_pct,
            SupervisionType.PART_TIME,
            part_weeks.quantize(Decimal("1"), rounding=ROUND_CEILING),
        )


def calculate_budget(
    work_titles: Iterable[WorkTitle],
    general_conditions_percentage: Any = None,
    supervision_type: Any = SupervisionType.NONE,
    supervision_weeks: Any = None,
    discount: Any = None,
) -> BudgetBreakdown:
    """Derive a budget with the standard rates."""
    return BudgetCalculator().calculate(
        work_titles,
        general_conditions_percentage=general_conditions_percentage,
        supervision_type=supervision_type,
        supervision_weeks=supervision_weeks,
        discount=discount,
    )


__all__ = [
    "BudgetBreakdown",
    "BudgetCalculator",
    "ProposalBudgetInputs",
    "WorkTitle",
    "calculate_budget",
    "parse_supervision_type",
]
