# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Core aggregation engine for COA FinSight.

This module turns a flat ledger snapshot (a sequence of ``Account``) into
structured financial statements, and orchestrates the downstream analysis.

1. Statement aggregation
   ----------------------
   ``aggregate(accounts, template)`` classifies every account into the one
   leaf section of the template whose code range contains its code, sums
   the balances of each leaf (times the leaf's sign) and rolls the leaf
   amounts up the tree. Accounts matching no leaf are excluded from the
   totals and reported on the resulting ``Statement``.

2. Balance check
   --------------
   ``check_balance(total_assets, total_liabilities_and_equity)`` verifies the
   accounting equation Assets == Liabilities + Equity within a tolerance. An
   unbalanced sheet is reported, never raised.

3. Financial statements and analysis
   ----------------------------------
   ``build_financial_statements(accounts, config)`` builds the income
   statement, then both sides of the balance sheet (the net result of the
   period feeding the equity section), checks the balance and extracts the
   canonical measures. ``analyze_financials(accounts, config)`` adds the
   derived measures, the ratio catalogue and the health score on top of it.

Every function is pure: the same snapshot always yields equal results.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .accounts import CodeRange, validate_accounts
from .config import EngineConfig, load_engine_config
from .mapping import SectionDef, StatementTemplate
from .models import ZERO, Account, RatioResult, Statement, StatementSection, to_decimal
from .ratios import compute_derived_measures, compute_ratios, health_score, overall_health

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("0.01")


# ---------------------------------------------------------------------------
# Balance check
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceCheck:
    """
    Result of the accounting equation check.

    Attributes:
        is_balanced: True when the discrepancy is below the tolerance.
        discrepancy: Absolute difference between both sides.
        difference: Signed difference (assets minus liabilities and equity).
    """

    is_balanced: bool
    discrepancy: Decimal
    difference: Decimal


def check_balance(
    total_assets: Decimal,
    total_liabilities_and_equity: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> BalanceCheck:
    """Check that Assets == Liabilities + Equity within ``tolerance``."""
    difference = to_decimal(total_assets) - to_decimal(total_liabilities_and_equity)
    discrepancy = abs(difference)
    return BalanceCheck(
        is_balanced=discrepancy < to_decimal(tolerance),
        discrepancy=discrepancy,
        difference=difference,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _build_section(
    definition: SectionDef,
    leaf_accounts: Mapping[str, list[Account]],
    period_result: Decimal,
    level: int,
) -> StatementSection:
    if not definition.is_leaf:
        children = tuple(
            _build_section(child, leaf_accounts, period_result, level + 1)
            for child in definition.children
        )
        return StatementSection(
            code=definition.code,
            name=definition.name,
            amount=sum((c.amount for c in children), ZERO),
            level=level,
            children=children,
        )

    if definition.source == "period_result":
        return StatementSection(
            code=definition.code,
            name=definition.name,
            amount=period_result * definition.sign or ZERO,
            level=level,
        )

    accounts = leaf_accounts.get(definition.code, [])
    total = sum((a.balance for a in accounts), ZERO)
    return StatementSection(
        code=definition.code,
        name=definition.name,
        amount=total * definition.sign or ZERO,
        level=level,
        account_codes=tuple(a.code for a in accounts),
    )


def _classify(
    accounts: Iterable[Account], template: StatementTemplate
) -> tuple[dict[str, list[Account]], list[str]]:
    leaf_accounts: dict[str, list[Account]] = {}
    unmatched: list[str] = []
    for account in accounts:
        leaf = template.match_leaf_for_code(account.code)
        if leaf is None:
            unmatched.append(account.code)
            continue
        leaf_accounts.setdefault(leaf.code, []).append(account)
    return leaf_accounts, unmatched


def aggregate(
    accounts: Sequence[Account],
    template: StatementTemplate,
    period_result: Optional[Decimal] = None,
    contra_ranges: Iterable[CodeRange] = (),
    validate: bool = True,
    warn_unmatched: bool = True,
) -> Statement:
    """Aggregate account balances into a statement tree.

    Steps:
        1. Validate the snapshot (duplicate codes, malformed codes,
           unexpected negative balances) unless ``validate`` is False.
        2. Classify each account into the leaf whose range contains its code.
        3. Sum each leaf (times its sign); 'period_result' leaves take the
           supplied period result.
        4. Roll amounts up: an internal node is the sum of its children.

    Args:
        accounts: Ledger snapshot.
        template: Statement template.
        period_result: Net result of the period, for 'period_result' leaves.
            Zero when not given.
        contra_ranges: Ranges allowed to carry a negative balance.
        validate: Whether to validate the snapshot first.
        warn_unmatched: Whether to log unmatched accounts.

    Returns:
        A Statement whose sections follow the template order, with the
        codes of unmatched accounts in ``unmatched_codes``.

    Raises:
        InvalidInputError: on invalid accounts (see accounts.validate_accounts).
    """
    accounts = list(accounts)
    if validate:
        validate_accounts(accounts, contra_ranges)

    leaf_accounts, unmatched = _classify(accounts, template)
    if unmatched and warn_unmatched:
        logger.warning(
            "%d account(s) match no section of '%s': %s",
            len(unmatched),
            template.key,
            ", ".join(unmatched),
        )

    result = to_decimal(period_result)
    sections = tuple(
        _build_section(definition, leaf_accounts, result, 0)
        for definition in template.sections
    )
    return Statement(
        title=template.title,
        sections=sections,
        total=sum((s.amount for s in sections), ZERO),
        unmatched_codes=tuple(unmatched),
    )


def build_canonical_measures(
    statement: Statement, template: StatementTemplate
) -> dict[str, Decimal]:
    """Extract the canonical measures of an aggregated statement.

    Every section defining a ``measure`` contributes its amount; the
    template's ``total_measure`` (if any) receives the statement total.
    """
    measures: dict[str, Decimal] = {}
    for measure, definition in template.canonical_sections().items():
        section = statement.find(definition.code)
        measures[measure] = section.amount if section is not None else ZERO
    if template.total_measure:
        measures[template.total_measure] = statement.total
    return measures


# ---------------------------------------------------------------------------
# Financial statements and analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FinancialStatements:
    """The three statements of one ledger snapshot and their balance check."""

    income_statement: Statement
    assets: Statement
    liabilities_and_equity: Statement
    balance: BalanceCheck
    measures: dict[str, Decimal]
    unmatched_codes: tuple[str, ...] = ()

    @property
    def total_assets(self) -> Decimal:
        return self.assets.total

    @property
    def total_liabilities_and_equity(self) -> Decimal:
        return self.liabilities_and_equity.total

    @property
    def net_income(self) -> Decimal:
        return self.income_statement.total


def build_financial_statements(
    accounts: Sequence[Account], config: Optional[EngineConfig] = None
) -> FinancialStatements:
    """
    Build the income statement and the balance sheet of a ledger snapshot.

    The income statement is aggregated first; its total (net result of the
    period) is carried into the equity section of the liabilities side, so
    that a snapshot whose income and expense accounts are not yet closed
    still balances.

    Args:
        accounts: Ledger snapshot.
        config: EngineConfig; the bundled Spanish PGC standard when None.

    Returns:
        A FinancialStatements instance. ``unmatched_codes`` lists the
        accounts that matched no section of any statement, in input order.
    """
    if config is None:
        config = load_engine_config()

    accounts = list(accounts)
    validate_accounts(accounts, config.contra_ranges)

    income_template = config.template("income_statement")
    assets_template = config.template("assets")
    le_template = config.template("liabilities_and_equity")

    income = aggregate(accounts, income_template, validate=False, warn_unmatched=False)
    assets = aggregate(accounts, assets_template, validate=False, warn_unmatched=False)
    liabilities_and_equity = aggregate(
        accounts,
        le_template,
        period_result=income.total,
        validate=False,
        warn_unmatched=False,
    )

    unmatched_everywhere = (
        set(income.unmatched_codes)
        & set(assets.unmatched_codes)
        & set(liabilities_and_equity.unmatched_codes)
    )
    unmatched = tuple(a.code for a in accounts if a.code in unmatched_everywhere)
    if unmatched:
        logger.warning(
            "%d account(s) match no statement section: %s",
            len(unmatched),
            ", ".join(unmatched),
        )

    balance = check_balance(
        assets.total, liabilities_and_equity.total, config.balance_tolerance
    )
    if not balance.is_balanced:
        logger.warning(
            "Balance sheet is not balanced: assets=%s, liabilities and equity=%s, "
            "difference=%s",
            assets.total,
            liabilities_and_equity.total,
            balance.difference,
        )

    measures: dict[str, Decimal] = {}
    measures.update(build_canonical_measures(income, income_template))
    measures.update(build_canonical_measures(assets, assets_template))
    measures.update(build_canonical_measures(liabilities_and_equity, le_template))

    return FinancialStatements(
        income_statement=income,
        assets=assets,
        liabilities_and_equity=liabilities_and_equity,
        balance=balance,
        measures=measures,
        unmatched_codes=unmatched,
    )


@dataclass(frozen=True)
class FinancialAnalysis:
    """Statements plus ratios and health score of one ledger snapshot."""

    statements: FinancialStatements
    measures: dict[str, Decimal]
    ratios: tuple[RatioResult, ...]
    health_score: Optional[Decimal]
    overall_health: Optional[str]

    def ratio(self, name: str) -> Optional[RatioResult]:
        return next((r for r in self.ratios if r.name == name), None)


def analyze_financials(
    accounts: Sequence[Account], config: Optional[EngineConfig] = None
) -> FinancialAnalysis:
    """
    Run the full analysis of a ledger snapshot.

    Builds the statements, computes derived measures and every ratio of the
    catalogue, then scores the ratios against their benchmarks.
    """
    if config is None:
        config = load_engine_config()

    statements = build_financial_statements(accounts, config)
    rules = config.ratio_rules
    measures = compute_derived_measures(statements.measures, rules)
    ratios = tuple(
        compute_ratios(measures, rules, locale=config.locale, currency=config.currency)
    )
    score = health_score(ratios, rules.health_weights)
    return FinancialAnalysis(
        statements=statements,
        measures=measures,
        ratios=ratios,
        health_score=score,
        overall_health=overall_health(score, rules.health_tiers, rules.health_fallback),
    )
