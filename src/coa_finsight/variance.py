# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Budget vs. actual variance analysis.

For each budget line::

    variance_amount     = actual - budgeted
    variance_percentage = variance_amount / budgeted x 100   (None if budgeted == 0)

Whether a variance is favorable depends on the category: more revenue than
budgeted is favorable, more expense than budgeted is not. The status buckets
the unsigned percentage through a threshold table, whatever the direction:

    |pct| <= 10  on_track
    |pct| <= 25  warning
    |pct| <= 50  critical
    otherwise    exceeded

The trend compares this period's percentage with the prior period's one for
the same line, oriented so that 'improving' always means "more favorable".
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from .exceptions import InvalidBudgetLineError
from .models import HUNDRED, ZERO, BudgetInput, BudgetLine, Category, to_decimal

PERCENT_QUANTUM = Decimal("0.01")

FAVORABLE = "favorable"
UNFAVORABLE = "unfavorable"

# (status, max_percentage): first row whose bound covers |pct| wins.
DEFAULT_THRESHOLDS: tuple[tuple[str, Decimal], ...] = (
    ("on_track", Decimal("10")),
    ("warning", Decimal("25")),
    ("critical", Decimal("50")),
)
DEFAULT_FALLBACK = "exceeded"
DEFAULT_TREND_TOLERANCE = Decimal("1")

# (overall health, minimum share of on_track lines in percent)
DEFAULT_HEALTH_TIERS: tuple[tuple[str, Decimal], ...] = (
    ("excellent", Decimal("90")),
    ("good", Decimal("70")),
    ("warning", Decimal("50")),
)
DEFAULT_HEALTH_FALLBACK = "critical"


@dataclass(frozen=True)
class VarianceResult:
    variance_amount: Decimal
    variance_percentage: Optional[Decimal]
    variance_type: str
    status: str
    trend: str = "stable"


def variance_percentage(budgeted: Any, actual: Any) -> Optional[Decimal]:
    """Signed variance over budget, in percent; None when the budget is 0."""
    b = to_decimal(budgeted)
    if b == ZERO:
        return None
    pct = (to_decimal(actual) - b) / b * HUNDRED
    return pct.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def variance_type(variance_amount: Decimal, category: Category) -> str:
    """'favorable' or 'unfavorable' given the category of the line."""
    category = Category(category)
    if category is Category.REVENUE:
        return FAVORABLE if variance_amount >= ZERO else UNFAVORABLE
    return FAVORABLE if variance_amount <= ZERO else UNFAVORABLE


def classify_variance(
    percentage: Optional[Decimal],
    actual: Decimal = ZERO,
    thresholds: Sequence[tuple[str, Decimal]] = DEFAULT_THRESHOLDS,
    fallback: str = DEFAULT_FALLBACK,
) -> str:
    """Bucket the unsigned variance percentage into a status.

    Without a percentage (zero budget), a zero actual is on track and any
    other actual exceeds the budget.
    """
    if percentage is None:
        return thresholds[0][0] if to_decimal(actual) == ZERO else fallback
    magnitude = abs(percentage)
    for status, max_percentage in thresholds:
        if magnitude <= max_percentage:
            return status
    return fallback


def variance_trend(
    current: Optional[Decimal],
    prior: Optional[Decimal],
    category: Category,
    tolerance: Decimal = DEFAULT_TREND_TOLERANCE,
) -> str:
    """Compare two variance percentages of the same line.

    Returns 'stable' when either percentage is missing or when they differ by
    no more than ``tolerance`` points.
    """
    if current is None or prior is None:
        return "stable"
    delta = to_decimal(current) - to_decimal(prior)
    if Category(category) is Category.EXPENSE:
        delta = -delta
    if delta > tolerance:
        return "improving"
    if delta < -tolerance:
        return "worsening"
    return "stable"


def analyze(
    budgeted: Any,
    actual: Any,
    category: Category,
    prior_percentage: Optional[Decimal] = None,
    thresholds: Sequence[tuple[str, Decimal]] = DEFAULT_THRESHOLDS,
    fallback: str = DEFAULT_FALLBACK,
    trend_tolerance: Decimal = DEFAULT_TREND_TOLERANCE,
) -> VarianceResult:
    """Analyze one budget vs. actual pair.

    Args:
        budgeted: Budgeted amount (must not be negative).
        actual: Actual amount.
        category: 'revenue' or 'expense'.
        prior_percentage: Variance percentage of the same line in the prior
            period, if known.

    Raises:
        InvalidBudgetLineError: if the budgeted amount is negative.
    """
    b = to_decimal(budgeted)
    a = to_decimal(actual)
    if b < ZERO:
        raise InvalidBudgetLineError(
            {"budgeted": b, "actual": a, "category": Category(category).value},
            "Negative budgeted amount",
        )

    amount = a - b
    pct = variance_percentage(b, a)
    return VarianceResult(
        variance_amount=amount,
        variance_percentage=pct,
        variance_type=variance_type(amount, category),
        status=classify_variance(pct, a, thresholds, fallback),
        trend=variance_trend(pct, prior_percentage, category, trend_tolerance),
    )


def _prior_percentages(prior: Optional[Iterable[BudgetInput]]) -> dict[str, Optional[Decimal]]:
    if prior is None:
        return {}
    return {
        line.account_code: variance_percentage(line.budgeted_amount, line.actual_amount)
        for line in prior
    }


def analyze_budget(
    lines: Iterable[BudgetInput],
    prior: Optional[Iterable[BudgetInput]] = None,
    thresholds: Sequence[tuple[str, Decimal]] = DEFAULT_THRESHOLDS,
    fallback: str = DEFAULT_FALLBACK,
    trend_tolerance: Decimal = DEFAULT_TREND_TOLERANCE,
) -> tuple[BudgetLine, ...]:
    """Analyze every line of a budget.

    Args:
        lines: Current period budget lines.
        prior: Same lines for the prior period, matched by account code.
            Lines without a prior counterpart get the 'stable' trend.

    Raises:
        InvalidBudgetLineError: on a negative budgeted amount or a duplicate
            account code, naming the offending line.
    """
    lines = list(lines)
    prior_pct = _prior_percentages(prior)
    seen: dict[str, int] = {}
    out: list[BudgetLine] = []

    for position, line in enumerate(lines):
        if line.account_code in seen:
            raise InvalidBudgetLineError(
                line, f"Duplicate budget line for account '{line.account_code}'", position
            )
        seen[line.account_code] = position
        if line.budgeted_amount < ZERO:
            raise InvalidBudgetLineError(line, "Negative budgeted amount", position)

        result = analyze(
            line.budgeted_amount,
            line.actual_amount,
            line.category,
            prior_pct.get(line.account_code),
            thresholds,
            fallback,
            trend_tolerance,
        )
        out.append(
            BudgetLine(
                account_code=line.account_code,
                account_name=line.account_name,
                category=line.category,
                budgeted_amount=line.budgeted_amount,
                actual_amount=line.actual_amount,
                variance_amount=result.variance_amount,
                variance_percentage=result.variance_percentage,
                variance_type=result.variance_type,
                status=result.status,
                trend=result.trend,
            )
        )
    return tuple(out)


@dataclass(frozen=True)
class BudgetSummary:
    """Budget totals by category and overall health of the budget."""

    total_budgeted_revenue: Decimal
    total_actual_revenue: Decimal
    revenue_variance: Decimal
    revenue_variance_percentage: Optional[Decimal]
    total_budgeted_expenses: Decimal
    total_actual_expenses: Decimal
    expense_variance: Decimal
    expense_variance_percentage: Optional[Decimal]
    budgeted_net_income: Decimal
    actual_net_income: Decimal
    budget_utilization: Optional[Decimal]
    status_counts: Mapping[str, int]
    overall_health: str


def summarize_budget(
    lines: Sequence[BudgetLine],
    tiers: Sequence[tuple[str, Decimal]] = DEFAULT_HEALTH_TIERS,
    fallback: str = DEFAULT_HEALTH_FALLBACK,
) -> BudgetSummary:
    """Summarize analyzed budget lines.

    ``budget_utilization`` is actual expenses over budgeted expenses x 100.
    ``overall_health`` is read from the share of on_track lines (an empty
    budget is 'excellent').
    """
    def _total(category: Category, attr: str) -> Decimal:
        return sum(
            (getattr(line, attr) for line in lines if line.category == category), ZERO
        )

    budget_rev = _total(Category.REVENUE, "budgeted_amount")
    actual_rev = _total(Category.REVENUE, "actual_amount")
    budget_exp = _total(Category.EXPENSE, "budgeted_amount")
    actual_exp = _total(Category.EXPENSE, "actual_amount")

    counts: dict[str, int] = {}
    for line in lines:
        counts[line.status] = counts.get(line.status, 0) + 1

    if lines:
        share = Decimal(counts.get("on_track", 0)) / Decimal(len(lines)) * HUNDRED
        health = next((tier for tier, minimum in tiers if share >= minimum), fallback)
    else:
        health = tiers[0][0] if tiers else fallback

    utilization = variance_percentage(budget_exp, actual_exp)
    if utilization is not None:
        utilization = utilization + HUNDRED

    return BudgetSummary(
        total_budgeted_revenue=budget_rev,
        total_actual_revenue=actual_rev,
        revenue_variance=actual_rev - budget_rev,
        revenue_variance_percentage=variance_percentage(budget_rev, actual_rev),
        total_budgeted_expenses=budget_exp,
        total_actual_expenses=actual_exp,
        expense_variance=actual_exp - budget_exp,
        expense_variance_percentage=variance_percentage(budget_exp, actual_exp),
        budgeted_net_income=budget_rev - budget_exp,
        actual_net_income=actual_rev - actual_exp,
        budget_utilization=utilization,
        status_counts=counts,
        overall_health=health,
    )
