# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for COA FinSight.

This module adapts the upstream sources of the engine, delivered as pandas
DataFrames or CSV files, into the engine's value objects. Column names are
case-insensitive and a few aliases are accepted.

Ledger balances
---------------
Two formats are supported:

1) Signed balance
       code, name, type, balance

2) Debit / credit totals
       code, name, type, debit, credit

   The balance is taken on the normal side of the account type:

       asset, expense:             balance = debit - credit
       liability, equity, revenue: balance = credit - debit

``account_code`` is accepted for ``code``, ``account_name`` / ``label`` for
``name`` and ``account_type`` for ``type``.

Open items
----------
       id, due_date, amount, pending_amount, counterparty

``pending_amount`` defaults to ``amount`` and ``counterparty`` is optional.

Budget lines
------------
       account_code, account_name, category, budgeted_amount, actual_amount

``code`` / ``name`` / ``budget`` / ``actual`` are accepted as aliases.

CSV files are read with every column as text, so that account codes keep
their exact digits and amounts are converted to ``Decimal`` without going
through binary floats.
"""

import os
from collections.abc import Mapping
from typing import Any, Union

import pandas as pd

from .exceptions import InvalidAccountError, InvalidBudgetLineError, InvalidOpenItemError
from .models import Account, AccountType, BudgetInput, Category, OpenItem, to_decimal

PathLike = Union[str, "os.PathLike[str]"]

ACCOUNT_ALIASES: dict[str, str] = {
    "account_code": "code",
    "account_name": "name",
    "label": "name",
    "account_type": "type",
}
OPEN_ITEM_ALIASES: dict[str, str] = {
    "invoice_id": "id",
    "due": "due_date",
    "pending": "pending_amount",
    "outstanding": "pending_amount",
    "customer": "counterparty",
    "supplier": "counterparty",
}
BUDGET_ALIASES: dict[str, str] = {
    "code": "account_code",
    "name": "account_name",
    "budget": "budgeted_amount",
    "budgeted": "budgeted_amount",
    "actual": "actual_amount",
}

DEBIT_NORMAL_TYPES = (AccountType.ASSET, AccountType.EXPENSE)


def _normalize_columns(df: pd.DataFrame, aliases: Mapping[str, str]) -> pd.DataFrame:
    """Lowercase column names and apply aliases (never over an existing column)."""
    d = df.copy()
    d.columns = [str(c).lower().strip() for c in d.columns]
    cols = set(d.columns)
    renames = {
        alias: target
        for alias, target in aliases.items()
        if alias in cols and target not in cols
    }
    return d.rename(columns=renames)


def _text(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def _read_csv(path: PathLike) -> pd.DataFrame:
    return pd.read_csv(path, dtype=str, keep_default_na=False)


# ---------------------------------------------------------------------------
# Ledger balances
# ---------------------------------------------------------------------------


def accounts_from_frame(df: pd.DataFrame) -> list[Account]:
    """
    Convert a DataFrame of ledger balances into ``Account`` objects.

    Returns:
        Accounts in row order. No snapshot-level validation is done here
        (duplicates and negative balances are checked by the engine).

    Raises:
        ValueError: if the columns match none of the supported formats.
        InvalidAccountError: if a row has an unknown type or a non-numeric
            amount; the error names the row position.
    """
    d = _normalize_columns(df, ACCOUNT_ALIASES)
    cols = set(d.columns)

    if {"code", "type", "balance"}.issubset(cols):
        signed = True
    elif {"code", "type", "debit", "credit"}.issubset(cols):
        signed = False
    else:
        raise ValueError(
            "Invalid ledger structure. Expected either:\n"
            "  - code, name, type, balance\n"
            "  - code, name, type, debit, credit\n"
            "(column names are case-insensitive)."
        )

    accounts: list[Account] = []
    for position, row in enumerate(d.to_dict("records")):
        try:
            account_type = AccountType(_text(row["type"]).lower())
            if signed:
                balance = to_decimal(row["balance"])
            else:
                debit = to_decimal(row["debit"])
                credit = to_decimal(row["credit"])
                balance = debit - credit if account_type in DEBIT_NORMAL_TYPES else credit - debit
        except ValueError as exc:
            raise InvalidAccountError(row, str(exc), position) from exc

        accounts.append(
            Account(
                code=_text(row["code"]),
                name=_text(row.get("name")),
                type=account_type,
                balance=balance,
            )
        )
    return accounts


def read_accounts_csv(path: PathLike) -> list[Account]:
    """Read a ledger balances CSV file (see ``accounts_from_frame``)."""
    return accounts_from_frame(_read_csv(path))


# ---------------------------------------------------------------------------
# Open items
# ---------------------------------------------------------------------------


def open_items_from_frame(df: pd.DataFrame) -> list[OpenItem]:
    """
    Convert a DataFrame of unpaid invoices/bills into ``OpenItem`` objects.

    Raises:
        ValueError: if a required column is missing.
        InvalidOpenItemError: if a row has an invalid date or amount.
    """
    d = _normalize_columns(df, OPEN_ITEM_ALIASES)
    missing = {"id", "due_date", "amount"} - set(d.columns)
    if missing:
        raise ValueError(f"Open items are missing columns: {sorted(missing)}")

    items: list[OpenItem] = []
    for position, row in enumerate(d.to_dict("records")):
        try:
            due = pd.to_datetime(row["due_date"], errors="raise")
            if pd.isna(due):
                raise ValueError("missing due date")
            amount = to_decimal(row["amount"])
            pending_raw = row.get("pending_amount")
            pending = amount if _text(pending_raw) == "" else to_decimal(pending_raw)
        except (TypeError, ValueError) as exc:
            raise InvalidOpenItemError(row, str(exc), position) from exc

        items.append(
            OpenItem(
                id=_text(row["id"]),
                due_date=due.date(),
                amount=amount,
                pending_amount=pending,
                counterparty=_text(row.get("counterparty")),
            )
        )
    return items


def read_open_items_csv(path: PathLike) -> list[OpenItem]:
    """Read an open items CSV file (see ``open_items_from_frame``)."""
    return open_items_from_frame(_read_csv(path))


# ---------------------------------------------------------------------------
# Budget lines
# ---------------------------------------------------------------------------


def budget_lines_from_frame(df: pd.DataFrame) -> list[BudgetInput]:
    """
    Convert a DataFrame of budget lines into ``BudgetInput`` objects.

    Raises:
        ValueError: if a required column is missing.
        InvalidBudgetLineError: if a row has an unknown category or a
            non-numeric amount.
    """
    d = _normalize_columns(df, BUDGET_ALIASES)
    missing = {"account_code", "category", "budgeted_amount", "actual_amount"} - set(
        d.columns
    )
    if missing:
        raise ValueError(f"Budget lines are missing columns: {sorted(missing)}")

    lines: list[BudgetInput] = []
    for position, row in enumerate(d.to_dict("records")):
        try:
            line = BudgetInput(
                account_code=_text(row["account_code"]),
                account_name=_text(row.get("account_name")),
                category=Category(_text(row["category"]).lower()),
                budgeted_amount=to_decimal(row["budgeted_amount"]),
                actual_amount=to_decimal(row["actual_amount"]),
            )
        except ValueError as exc:
            raise InvalidBudgetLineError(row, str(exc), position) from exc
        lines.append(line)
    return lines


def read_budget_csv(path: PathLike) -> list[BudgetInput]:
    """Read a budget CSV file (see ``budget_lines_from_frame``)."""
    return budget_lines_from_frame(_read_csv(path))
