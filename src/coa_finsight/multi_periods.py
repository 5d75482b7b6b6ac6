# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Comparative statements and multi-period analysis.

Two entry points:

- ``compare_statements(current, previous)`` pairs the sections of two
  aggregated statements by code and reports, for each section, the current
  and previous amounts, the variation and the variation percentage (the
  "comparative" view of a balance sheet or income statement).

- ``compare_periods(snapshots, config)`` runs the full analysis once per
  ledger snapshot (an ordered mapping period label -> accounts) and
  concatenates the results into long-format DataFrames with a
  ``period_label`` column, ready for time-series rendering.

``engine.py`` stays the single source of truth for how one period is
computed; this module only assembles periods.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import pandas as pd

from .config import EngineConfig, load_engine_config
from .engine import FinancialAnalysis, analyze_financials
from .models import HUNDRED, ZERO, Account, Statement
from .views import ratios_to_frame, statement_to_frame

PERCENT_QUANTUM = Decimal("0.01")
STATEMENT_KEYS = ("income_statement", "assets", "liabilities_and_equity")


@dataclass(frozen=True)
class SectionComparison:
    """One section of a comparative statement."""

    code: str
    name: str
    level: int
    current: Decimal
    previous: Decimal
    variation: Decimal
    variation_percentage: Optional[Decimal]


def variation_percentage(current: Decimal, previous: Decimal) -> Optional[Decimal]:
    """(current - previous) / |previous| x 100, None when previous is 0."""
    if previous == ZERO:
        return None
    pct = (current - previous) / abs(previous) * HUNDRED
    return pct.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def compare_statements(current: Statement, previous: Statement) -> list[SectionComparison]:
    """
    Compare two aggregated statements section by section.

    Sections are paired by code. The result follows the current statement's
    order; sections present only in the previous statement are appended at
    the end with a current amount of 0.

    Returns:
        One SectionComparison per section code.
    """
    previous_by_code = {s.code: s for s in previous.walk()}
    rows: list[SectionComparison] = []
    seen: set[str] = set()

    for section in current.walk():
        seen.add(section.code)
        before = previous_by_code.get(section.code)
        prev_amount = before.amount if before is not None else ZERO
        rows.append(
            SectionComparison(
                code=section.code,
                name=section.name,
                level=section.level,
                current=section.amount,
                previous=prev_amount,
                variation=section.amount - prev_amount,
                variation_percentage=variation_percentage(section.amount, prev_amount),
            )
        )

    for section in previous.walk():
        if section.code in seen:
            continue
        rows.append(
            SectionComparison(
                code=section.code,
                name=section.name,
                level=section.level,
                current=ZERO,
                previous=section.amount,
                variation=-section.amount,
                variation_percentage=variation_percentage(ZERO, section.amount),
            )
        )
    return rows


def comparison_to_frame(comparisons: Iterable[SectionComparison]) -> pd.DataFrame:
    """Comparative statement as a DataFrame, one row per section."""
    columns = [
        "code",
        "level",
        "name",
        "current",
        "previous",
        "variation",
        "variation_percentage",
    ]
    return pd.DataFrame(
        [{c: getattr(row, c) for c in columns} for row in comparisons], columns=columns
    )


# ---------------------------------------------------------------------------
# Multi-period orchestration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MultiPeriodAnalysis:
    """
    Analysis of several ledger snapshots.

    Attributes:
        periods: Per-period analysis, in input order.
        statements: Long-format statements with columns period_label,
            statement, display_order, code, level, name, amount.
        measures: Long-format measures with columns period_label, measure,
            value.
        ratios: Long-format ratios with columns period_label plus the
            columns of ``views.ratios_to_frame``.
    """

    periods: dict[str, FinancialAnalysis]
    statements: pd.DataFrame
    measures: pd.DataFrame
    ratios: pd.DataFrame

    @property
    def labels(self) -> list[str]:
        return list(self.periods)

    def compare(
        self, statement: str, current_label: str, previous_label: str
    ) -> list[SectionComparison]:
        """Compare one statement between two analyzed periods."""
        if statement not in STATEMENT_KEYS:
            raise ValueError(f"Unknown statement {statement!r}; expected one of {STATEMENT_KEYS}.")
        current = getattr(self.periods[current_label].statements, statement)
        previous = getattr(self.periods[previous_label].statements, statement)
        return compare_statements(current, previous)


def compare_periods(
    snapshots: Mapping[str, Sequence[Account]],
    config: Optional[EngineConfig] = None,
) -> MultiPeriodAnalysis:
    """
    Analyze several ledger snapshots with the same configuration.

    Args:
        snapshots: Ordered mapping period label -> accounts.
        config: EngineConfig; the bundled Spanish PGC standard when None.

    Returns:
        A MultiPeriodAnalysis. Frames are empty (with their columns) when no
        snapshot is given.
    """
    if config is None:
        config = load_engine_config()

    periods: dict[str, FinancialAnalysis] = {}
    statement_frames: list[pd.DataFrame] = []
    measure_rows: list[dict[str, object]] = []
    ratio_frames: list[pd.DataFrame] = []

    for label, accounts in snapshots.items():
        analysis = analyze_financials(accounts, config)
        periods[label] = analysis

        for key in STATEMENT_KEYS:
            frame = statement_to_frame(getattr(analysis.statements, key))
            frame.insert(0, "statement", key)
            frame.insert(0, "period_label", label)
            statement_frames.append(frame)

        for measure, value in analysis.measures.items():
            measure_rows.append({"period_label": label, "measure": measure, "value": value})

        ratios = ratios_to_frame(analysis.ratios)
        ratios.insert(0, "period_label", label)
        ratio_frames.append(ratios)

    if statement_frames:
        statements = pd.concat(statement_frames, ignore_index=True)
        ratios_df = pd.concat(ratio_frames, ignore_index=True)
    else:
        statements = pd.DataFrame(
            columns=["period_label", "statement", "display_order", "code", "level", "name", "amount"]
        )
        ratios_df = ratios_to_frame([])
        ratios_df.insert(0, "period_label", [])

    measures = pd.DataFrame(measure_rows, columns=["period_label", "measure", "value"])
    return MultiPeriodAnalysis(
        periods=periods, statements=statements, measures=measures, ratios=ratios_df
    )
