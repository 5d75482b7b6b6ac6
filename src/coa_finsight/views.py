# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for COA FinSight.

This module flattens engine results into pandas DataFrames for rendering
layers (tables, cards, CSV exports). Amounts stay ``Decimal`` so that a
rendered view shows exactly what the engine computed.

Statement views are detail-level hints:

- simplified: level 0 only (top-level sections),
- regular:    levels 0-1,
- detailed:   every template level,
- complete:   same as detailed, with one row per account inserted under
              the leaf section it feeds.
"""

from collections.abc import Iterable, Sequence
from typing import Optional

import pandas as pd

from .aging import AgingReport
from .mapping import StatementTemplate
from .models import Account, BudgetLine, RatioResult, Statement, StatementSection
from .ratios import CATEGORIES

STATEMENT_COLUMNS = ["display_order", "code", "level", "name", "amount"]
VIEWS = ("simplified", "regular", "detailed", "complete")


def _renumber_display_order(df: pd.DataFrame, start: int = 10, step: int = 10) -> pd.DataFrame:
    """Reassign display_order to start, start+step, ... in the current row order."""
    df = df.reset_index(drop=True)
    df["display_order"] = [start + i * step for i in range(len(df))]
    return df


def _section_row(section: StatementSection) -> dict[str, object]:
    return {
        "code": section.code,
        "level": section.level,
        "name": section.name,
        "amount": section.amount,
    }


def statement_to_frame(
    statement: Statement,
    view: str = "detailed",
    accounts: Optional[Sequence[Account]] = None,
    template: Optional[StatementTemplate] = None,
) -> pd.DataFrame:
    """Return a statement as a DataFrame, depth-first in template order.

    Args:
        statement: Aggregated statement.
        view: 'simplified', 'regular', 'detailed' or 'complete'.
        accounts: Ledger snapshot, required by the 'complete' view to list
            the accounts of each leaf with their name and balance.
        template: Template of the statement; its leaf signs are applied to
            the account rows of the complete view.

    Returns:
        A DataFrame with columns display_order, code, level, name, amount.
        Account rows of the complete view carry the account code, the
        account name and the signed contribution of the account.
    """
    if view not in VIEWS:
        raise ValueError(f"Unknown view {view!r}; expected one of {VIEWS}.")
    if view == "complete" and accounts is None:
        raise ValueError("The 'complete' view requires the accounts snapshot.")

    by_code = {a.code: a for a in accounts or ()}
    signs = {s.code: s.sign for s in template.walk()} if template is not None else {}
    max_level = {"simplified": 0, "regular": 1}.get(view)

    rows: list[dict[str, object]] = []
    for section in statement.walk():
        if max_level is not None and section.level > max_level:
            continue
        rows.append(_section_row(section))

        if view == "complete" and section.is_leaf and section.account_codes:
            sign = signs.get(section.code, 1)
            for code in sorted(section.account_codes):
                account = by_code[code]
                rows.append(
                    {
                        "code": code,
                        "level": section.level + 1,
                        "name": f"{code} {account.name}".strip(),
                        "amount": account.balance * sign,
                    }
                )

    if not rows:
        return pd.DataFrame(columns=STATEMENT_COLUMNS)
    df = _renumber_display_order(pd.DataFrame(rows))
    return df[STATEMENT_COLUMNS]


def ratios_to_frame(ratios: Iterable[RatioResult]) -> pd.DataFrame:
    """
    Convert RatioResult objects into a DataFrame (one row per ratio card).

    Columns: name, label, category, value, formatted_value, unit, benchmark,
    status. Rows are sorted by category (liquidity, solvency, profitability,
    efficiency, then others) and keep the catalogue order inside a category.
    """
    columns = [
        "name",
        "label",
        "category",
        "value",
        "formatted_value",
        "unit",
        "benchmark",
        "status",
    ]
    rows = [
        {
            "name": r.name,
            "label": r.label,
            "category": r.category,
            "value": r.raw_value,
            "formatted_value": r.formatted_value,
            "unit": r.unit,
            "benchmark": r.benchmark,
            "status": r.status,
        }
        for r in ratios
    ]
    if not rows:
        return pd.DataFrame(columns=columns)

    category_order = {c: i for i, c in enumerate(CATEGORIES)}
    df = pd.DataFrame(rows)
    df["__category_order__"] = df["category"].map(lambda c: category_order.get(c, 99))
    df = df.sort_values("__category_order__", kind="stable").drop(
        columns=["__category_order__"]
    )
    return df[columns].reset_index(drop=True)


def aging_to_frame(report: AgingReport) -> pd.DataFrame:
    """Bucket summary of an aging report: bucket, status, count, total, percentage."""
    return pd.DataFrame(
        [
            {
                "bucket": b.key,
                "status": b.status,
                "count": b.count,
                "total": b.total,
                "percentage": b.percentage,
            }
            for b in report.buckets.values()
        ],
        columns=["bucket", "status", "count", "total", "percentage"],
    )


def aging_items_to_frame(report: AgingReport) -> pd.DataFrame:
    """One row per aged item, most overdue first."""
    columns = [
        "id",
        "counterparty",
        "due_date",
        "days_overdue",
        "bucket",
        "status",
        "amount",
        "pending_amount",
    ]
    items = sorted(report.items, key=lambda i: (-i.days_overdue, i.id))
    return pd.DataFrame(
        [{c: getattr(i, c) for c in columns} for i in items], columns=columns
    )


def budget_to_frame(lines: Iterable[BudgetLine]) -> pd.DataFrame:
    """One row per analyzed budget line, in input order."""
    columns = [
        "account_code",
        "account_name",
        "category",
        "budgeted_amount",
        "actual_amount",
        "variance_amount",
        "variance_percentage",
        "variance_type",
        "status",
        "trend",
    ]
    rows = []
    for line in lines:
        row = {c: getattr(line, c) for c in columns}
        row["category"] = line.category.value
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)
