# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Exception hierarchy for COA FinSight.

Only structurally invalid input and broken configuration raise. Business
conditions such as zero denominators, unbalanced books, unmatched accounts or
missing prior-period data are reported in the results instead.

    FinSightError
    +-- InvalidInputError            (record, reason)
    |   +-- InvalidAccountError
    |   +-- DuplicateAccountCodeError
    |   +-- NegativeBalanceError
    |   +-- InvalidOpenItemError
    |   +-- InvalidBudgetLineError
    +-- ConfigError
    |   +-- TemplateError
    +-- RatioError
        +-- UnknownRatioError
        +-- MissingInputError

Input and configuration errors also derive from ``ValueError``.
"""

from typing import Any, Optional


class FinSightError(Exception):
    """Base class for all COA FinSight errors."""

    code: str = "FINSIGHT_ERROR"


class InvalidInputError(FinSightError, ValueError):
    """A record of the input snapshot violates a precondition.

    Attributes:
        record: The offending record, as received.
        reason: Short description of the violated precondition.
        position: Index of the record in the input sequence, when known.
    """

    code = "INVALID_INPUT"

    def __init__(self, record: Any, reason: str, position: Optional[int] = None):
        self.record = record
        self.reason = reason
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"{reason}{where}: {record!r}")


class InvalidAccountError(InvalidInputError):
    code = "INVALID_ACCOUNT"


class DuplicateAccountCodeError(InvalidInputError):
    """Two accounts of the same snapshot share a code."""

    code = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, record: Any, account_code: str, first_position: int, position: int):
        self.account_code = account_code
        self.first_position = first_position
        super().__init__(
            record,
            f"Duplicate account code '{account_code}' (first seen at position "
            f"{first_position})",
            position,
        )


class NegativeBalanceError(InvalidInputError):
    code = "NEGATIVE_BALANCE"


class InvalidOpenItemError(InvalidInputError):
    code = "INVALID_OPEN_ITEM"


class InvalidBudgetLineError(InvalidInputError):
    code = "INVALID_BUDGET_LINE"


class ConfigError(FinSightError, ValueError):
    """A configuration or template file is missing or inconsistent."""

    code = "CONFIG_ERROR"


class TemplateError(ConfigError):
    """A statement template is inconsistent (overlaps, bad ranges, ...)."""

    code = "TEMPLATE_ERROR"


class RatioError(FinSightError):
    code = "RATIO_ERROR"


class UnknownRatioError(RatioError, KeyError):
    """The requested ratio is not defined in the rules."""

    code = "UNKNOWN_RATIO"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown ratio: {name!r}")

    def __str__(self) -> str:
        return f"Unknown ratio: {self.name!r}"


class MissingInputError(RatioError, ValueError):
    """A ratio formula references an input that was not supplied."""

    code = "MISSING_INPUT"

    def __init__(self, ratio: str, variable: str):
        self.ratio = ratio
        self.variable = variable
        super().__init__(f"Ratio {ratio!r} requires input {variable!r}")
