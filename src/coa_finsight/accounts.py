# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Account utilities for COA FinSight.

This module contains the helpers related to the chart of accounts:

- classification of an account code into a half-open code range
  (``matches``), which is how statement templates decide which accounts feed
  which section,
- boundary validation of a ledger snapshot (``validate_accounts``), which
  rejects duplicate codes, malformed codes and unexpected negative balances
  before any aggregation takes place.

Range matching rule
-------------------
A range is written ``[start, end)`` and a code belongs to it when::

    start <= code < end

using plain string comparison. With two-digit group boundaries this gives
the expected hierarchy: '570123' is in ['57', '58') because '57' <= '570123'
and '570123' < '58'. Both boundaries of one range must have the same length,
otherwise the comparison mixes granularities (e.g. '5' < '57' < '6' but also
'5' < '599' < '6').
"""

from collections.abc import Iterable, Sequence

from .exceptions import (
    DuplicateAccountCodeError,
    InvalidAccountError,
    NegativeBalanceError,
)
from .models import ZERO, Account

CodeRange = tuple[str, str]


def matches(code: str, range_start: str, range_end: str) -> bool:
    """Return True if ``code`` lies in the half-open range [start, end).

    Args:
        code: Account code (e.g. '570001').
        range_start: Inclusive lower boundary (e.g. '57').
        range_end: Exclusive upper boundary (e.g. '58').

    A code shorter than the boundaries is right-padded with zeros first, so
    the group code '64' is compared as '640' against ['631', '640').

    Returns:
        True when ``range_start <= code < range_end``.
    """
    s = str(code).strip().ljust(len(range_start), "0")
    return range_start <= s < range_end


def in_any_range(code: str, ranges: Iterable[CodeRange]) -> bool:
    """Return True if the code matches at least one of the given ranges."""
    return any(matches(code, start, end) for start, end in ranges)


def validate_range(range_start: str, range_end: str) -> None:
    """Check that a range is well formed.

    Raises:
        ValueError: if a boundary is not made of digits, if both boundaries
            do not have the same length, or if the range is empty.
    """
    if not range_start.isdigit() or not range_end.isdigit():
        raise ValueError(
            f"Range boundaries must be digit strings: [{range_start!r}, {range_end!r})"
        )
    if len(range_start) != len(range_end):
        raise ValueError(
            f"Range boundaries must have the same length: [{range_start}, {range_end})"
        )
    if range_start >= range_end:
        raise ValueError(f"Empty range: [{range_start}, {range_end})")


def validate_accounts(
    accounts: Sequence[Account],
    contra_ranges: Iterable[CodeRange] = (),
) -> None:
    """Validate a ledger snapshot before aggregation.

    Rules:
      - every code is a non-empty string of digits,
      - codes are unique within the snapshot (duplicates would be summed
        twice),
      - balances are non-negative, except for accounts whose code falls in
        one of ``contra_ranges`` (accumulated amortisation, impairments,
        sales returns, negative retained earnings, ...).

    Args:
        accounts: Ledger snapshot.
        contra_ranges: Ranges of codes allowed to carry a negative balance.

    Raises:
        InvalidAccountError: on an empty or non-digit code.
        DuplicateAccountCodeError: on the second occurrence of a code.
        NegativeBalanceError: on a negative balance outside contra ranges.
    """
    contra = tuple(contra_ranges)
    seen: dict[str, int] = {}

    for position, account in enumerate(accounts):
        code = account.code
        if not code or not code.isdigit():
            raise InvalidAccountError(
                account, "Account code must be a non-empty digit string", position
            )

        if code in seen:
            raise DuplicateAccountCodeError(account, code, seen[code], position)
        seen[code] = position

        if account.balance < ZERO and not in_any_range(code, contra):
            raise NegativeBalanceError(
                account,
                f"Negative balance on {account.type.value} account '{code}' "
                "outside contra ranges",
                position,
            )
