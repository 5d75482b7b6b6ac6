# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Value objects shared by every COA FinSight component.

All objects are frozen dataclasses holding ``Decimal`` amounts and tuples, so
a result computed from a ledger snapshot can be shared between threads and
compared for equality without any copy.

Amounts coming from callers (int, float, str, Decimal) are normalized with
:func:`to_decimal`, which goes through ``str()`` so that a float such as
``0.1`` becomes ``Decimal("0.1")`` and not its binary approximation.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Convert a numeric value into a ``Decimal``.

    Args:
        value: int, float, str or Decimal. ``None`` and empty strings are
            treated as zero.

    Returns:
        The value as a Decimal.

    Raises:
        ValueError: if the value cannot be interpreted as a number, or is
            NaN / infinite.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        raw = str(value).strip()
        if raw == "":
            return ZERO
        try:
            result = Decimal(raw)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid numeric value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Non-finite numeric value: {value!r}")
    return result


class AccountType(str, Enum):
    """Accounting nature of an account."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class Category(str, Enum):
    """Budget line category."""

    REVENUE = "revenue"
    EXPENSE = "expense"


@dataclass(frozen=True)
class Account:
    """A posted account balance from a ledger snapshot.

    Attributes:
        code: Account code, digits only (e.g. '570001').
        name: Account label.
        type: Accounting nature of the account.
        balance: Signed balance on the normal side of the account type
            (debit for assets/expenses, credit for the others).
    """

    code: str
    name: str
    type: AccountType
    balance: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", str(self.code).strip())
        object.__setattr__(self, "type", AccountType(self.type))
        object.__setattr__(self, "balance", to_decimal(self.balance))


@dataclass(frozen=True)
class StatementSection:
    """One node of an aggregated statement.

    ``amount`` of a node with children is always the sum of its children's
    amounts. ``account_codes`` lists the accounts aggregated into a leaf.
    """

    code: str
    name: str
    amount: Decimal
    level: int = 0
    children: tuple["StatementSection", ...] = ()
    account_codes: tuple[str, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def walk(self):
        """Yield this section and all its descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, code: str) -> Optional["StatementSection"]:
        """Return the descendant (or self) with the given code, if any."""
        for section in self.walk():
            if section.code == code:
                return section
        return None


@dataclass(frozen=True)
class Statement:
    """An aggregated statement (a forest of top-level sections).

    Attributes:
        title: Human-readable title (e.g. 'Activo').
        sections: Top-level sections, in template order.
        total: Sum of the top-level section amounts.
        unmatched_codes: Codes of the accounts that matched no leaf of this
            statement, in input order.
    """

    title: str
    sections: tuple[StatementSection, ...]
    total: Decimal
    unmatched_codes: tuple[str, ...] = ()

    @property
    def unmatched_count(self) -> int:
        return len(self.unmatched_codes)

    def walk(self):
        for section in self.sections:
            yield from section.walk()

    def find(self, code: str) -> Optional[StatementSection]:
        for section in self.sections:
            found = section.find(code)
            if found is not None:
                return found
        return None


@dataclass(frozen=True)
class RatioResult:
    """Computed financial ratio.

    ``raw_value`` is None when the formula is undefined for the inputs
    (zero denominator); ``status`` is then always 'neutral'.
    """

    name: str
    raw_value: Optional[Decimal]
    formatted_value: str
    status: str
    benchmark: Optional[Decimal] = None
    label: str = ""
    category: str = ""
    unit: str = "times"


@dataclass(frozen=True)
class OpenItem:
    """Unpaid invoice or bill supplied by the open-items source."""

    id: str
    due_date: date
    amount: Decimal
    pending_amount: Decimal
    counterparty: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "pending_amount", to_decimal(self.pending_amount))


@dataclass(frozen=True)
class AgingItem:
    """Open item aged against a reference date.

    ``days_overdue`` is ``today - due_date`` in days (negative when the item
    is not yet due) and ``status`` is derived from it.
    """

    id: str
    due_date: date
    amount: Decimal
    pending_amount: Decimal
    days_overdue: int
    status: str
    bucket: str = ""
    counterparty: str = ""


@dataclass(frozen=True)
class BudgetInput:
    """Budget line as supplied by the budget source (before analysis)."""

    account_code: str
    account_name: str
    category: Category
    budgeted_amount: Decimal
    actual_amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "account_code", str(self.account_code).strip())
        object.__setattr__(self, "category", Category(self.category))
        object.__setattr__(self, "budgeted_amount", to_decimal(self.budgeted_amount))
        object.__setattr__(self, "actual_amount", to_decimal(self.actual_amount))


@dataclass(frozen=True)
class BudgetLine:
    """Analyzed budget line (budget vs. actual)."""

    account_code: str
    account_name: str
    category: Category
    budgeted_amount: Decimal
    actual_amount: Decimal
    variance_amount: Decimal
    variance_percentage: Optional[Decimal]
    variance_type: str
    status: str
    trend: str = "stable"
