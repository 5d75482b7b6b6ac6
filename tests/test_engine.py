import logging
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from coa_finsight.config import load_engine_config
from coa_finsight.engine import (
    aggregate,
    analyze_financials,
    build_canonical_measures,
    build_financial_statements,
    check_balance,
)
from coa_finsight.exceptions import DuplicateAccountCodeError, NegativeBalanceError
from coa_finsight.models import Account, AccountType, StatementSection

CONFIG = load_engine_config()


def _assert_tree_consistent(section: StatementSection) -> None:
    if section.children:
        assert section.amount == sum((c.amount for c in section.children), Decimal("0"))
        for child in section.children:
            assert child.level == section.level + 1
            _assert_tree_consistent(child)


def _closed_year_snapshot() -> list[Account]:
    """Small company with unclosed P&L accounts: net result 2,500."""
    return [
        Account("100000", "Capital social", AccountType.EQUITY, 10000),
        Account("400001", "Proveedor A", AccountType.LIABILITY, 3000),
        Account("430001", "Cliente A", AccountType.ASSET, 4500),
        Account("570000", "Caja", AccountType.ASSET, 11000),
        Account("700000", "Ventas", AccountType.REVENUE, 10000),
        Account("600000", "Compras", AccountType.EXPENSE, 4000),
        Account("640000", "Sueldos", AccountType.EXPENSE, 3000),
        Account("630000", "Impuesto sobre beneficios", AccountType.EXPENSE, 500),
    ]


def test_scenario_balanced_sheet() -> None:
    """Cash 1000 = supplier 600 + capital 400."""
    accounts = [
        Account("570001", "Bank", AccountType.ASSET, 1000),
        Account("400001", "Supplier", AccountType.LIABILITY, 600),
        Account("100001", "Capital", AccountType.EQUITY, 400),
    ]
    statements = build_financial_statements(accounts, CONFIG)

    assert statements.total_assets == Decimal("1000")
    assert statements.total_liabilities_and_equity == Decimal("1000")
    assert statements.balance.is_balanced is True
    assert statements.balance.discrepancy == Decimal("0")
    assert statements.unmatched_codes == ()


def test_aggregate_assets_tree() -> None:
    accounts = [
        Account("570001", "Bank", AccountType.ASSET, Decimal("1000.10")),
        Account("572001", "Bank 2", AccountType.ASSET, Decimal("0.20")),
        Account("300000", "Goods", AccountType.ASSET, 250),
        Account("210000", "Land", AccountType.ASSET, 5000),
        Account("281000", "Accumulated amortisation", AccountType.ASSET, -1000),
    ]
    statement = aggregate(accounts, CONFIG.template("assets"), contra_ranges=CONFIG.contra_ranges)

    assert [s.code for s in statement.sections] == ["A", "B"]
    assert statement.find("B.VIII").amount == Decimal("1000.30")
    assert statement.find("B.VIII").account_codes == ("570001", "572001")
    assert statement.find("B.I").amount == Decimal("250")
    assert statement.find("A").amount == Decimal("4000")
    assert statement.find("B").amount == Decimal("1250.30")
    assert statement.total == Decimal("5250.30")
    for section in statement.sections:
        _assert_tree_consistent(section)


def test_aggregate_children_keep_definition_order() -> None:
    statement = aggregate([], CONFIG.template("assets"))
    codes = [c.code for c in statement.find("B").children]
    assert codes == ["B.I", "B.II", "B.III", "B.IV", "B.V", "B.VI", "B.VII", "B.VIII"]


def test_aggregate_empty_snapshot_gives_zeros() -> None:
    statement = aggregate([], CONFIG.template("income_statement"))
    assert statement.total == Decimal("0")
    assert all(s.amount == Decimal("0") for s in statement.walk())
    assert statement.unmatched_count == 0


def test_aggregate_reports_and_logs_unmatched_accounts(caplog) -> None:
    accounts = [
        Account("570001", "Bank", AccountType.ASSET, 100),
        Account("999999", "Unknown", AccountType.ASSET, 50),
    ]
    with caplog.at_level(logging.WARNING, logger="coa_finsight.engine"):
        statement = aggregate(accounts, CONFIG.template("assets"))

    assert statement.total == Decimal("100")
    assert statement.unmatched_codes == ("999999",)
    assert statement.unmatched_count == 1
    assert "999999" in caplog.text


def test_aggregate_group_code_next_to_a_narrower_range() -> None:
    """'64' belongs to personnel expenses, not to the 631-639 taxes leaf."""
    accounts = [Account("64", "Gastos de personal", AccountType.EXPENSE, 3000)]
    statement = aggregate(accounts, CONFIG.template("income_statement"))

    assert statement.find("RE.5").amount == Decimal("0")
    assert statement.find("RE.6").amount == Decimal("-3000")
    assert statement.find("RE.6").account_codes == ("64",)
    assert statement.unmatched_count == 0


def test_empty_negative_leaves_are_plain_zero() -> None:
    statement = aggregate([], CONFIG.template("income_statement"))
    for section in statement.walk():
        assert not section.amount.is_signed(), section.code
    assert str(statement.find("RE.6").amount) == "0"


def test_aggregate_rejects_duplicate_codes_before_summing() -> None:
    accounts = [
        Account("570001", "Bank", AccountType.ASSET, 100),
        Account("570001", "Bank", AccountType.ASSET, 100),
    ]
    with pytest.raises(DuplicateAccountCodeError):
        aggregate(accounts, CONFIG.template("assets"))


def test_aggregate_rejects_negative_balance_outside_contra_ranges() -> None:
    accounts = [Account("570001", "Bank", AccountType.ASSET, -100)]
    with pytest.raises(NegativeBalanceError):
        aggregate(accounts, CONFIG.template("assets"), contra_ranges=CONFIG.contra_ranges)


def test_aggregate_is_idempotent() -> None:
    accounts = _closed_year_snapshot()
    template = CONFIG.template("income_statement")
    first = aggregate(accounts, template)
    second = aggregate(accounts, template)
    assert first == second
    assert repr(first) == repr(second)


def test_income_statement_signs_and_totals() -> None:
    statements = build_financial_statements(_closed_year_snapshot(), CONFIG)
    income = statements.income_statement

    assert income.find("RE.1").amount == Decimal("10000")
    assert income.find("RE.3").amount == Decimal("-4000")
    assert income.find("RE.6").amount == Decimal("-3000")
    assert income.find("RE").amount == Decimal("3000")
    assert income.find("IS").amount == Decimal("-500")
    assert statements.net_income == Decimal("2500")


def test_period_result_feeds_equity_and_balances_sheet() -> None:
    statements = build_financial_statements(_closed_year_snapshot(), CONFIG)
    le = statements.liabilities_and_equity

    assert le.find("PN.II").amount == Decimal("2500")
    assert le.find("PN").amount == Decimal("12500")
    assert statements.total_assets == Decimal("15500")
    assert statements.total_liabilities_and_equity == Decimal("15500")
    assert statements.balance.is_balanced


def test_canonical_measures() -> None:
    statements = build_financial_statements(_closed_year_snapshot(), CONFIG)
    m = statements.measures

    assert m["current_assets"] == Decimal("15500")
    assert m["cash"] == Decimal("11000")
    assert m["trade_receivables"] == Decimal("4500")
    assert m["current_liabilities"] == Decimal("3000")
    assert m["equity"] == Decimal("12500")
    assert m["revenue"] == Decimal("10000")
    assert m["cost_of_sales"] == Decimal("-4000")
    assert m["net_income"] == Decimal("2500")
    assert m["total_assets"] == Decimal("15500")


def test_build_canonical_measures_for_single_statement() -> None:
    template = CONFIG.template("assets")
    statement = aggregate([Account("570001", "Bank", "asset", 10)], template)
    measures = build_canonical_measures(statement, template)
    assert measures["cash"] == Decimal("10")
    assert measures["inventories"] == Decimal("0")
    assert measures["total_assets"] == Decimal("10")


def test_unbalanced_sheet_is_reported_not_raised(caplog) -> None:
    accounts = [
        Account("570001", "Bank", AccountType.ASSET, 1000),
        Account("100001", "Capital", AccountType.EQUITY, 400),
    ]
    with caplog.at_level(logging.WARNING, logger="coa_finsight.engine"):
        statements = build_financial_statements(accounts, CONFIG)

    assert statements.balance.is_balanced is False
    assert statements.balance.discrepancy == Decimal("600")
    assert statements.balance.difference == Decimal("600")
    assert "not balanced" in caplog.text


def test_overall_unmatched_codes_ignore_codes_matched_elsewhere() -> None:
    accounts = [
        Account("570001", "Bank", AccountType.ASSET, 100),
        Account("100001", "Capital", AccountType.EQUITY, 100),
        Account("890000", "Unknown", AccountType.EXPENSE, 1),
    ]
    statements = build_financial_statements(accounts, CONFIG)
    assert statements.unmatched_codes == ("890000",)
    assert statements.assets.unmatched_count == 2


@pytest.mark.parametrize(
    "assets, le, tolerance, balanced",
    [
        ("1000", "1000", "0.01", True),
        ("1000.004", "1000", "0.01", True),
        ("1000.01", "1000", "0.01", False),
        ("999", "1000", "5", True),
    ],
)
def test_check_balance(assets: str, le: str, tolerance: str, balanced: bool) -> None:
    result = check_balance(Decimal(assets), Decimal(le), Decimal(tolerance))
    assert result.is_balanced is balanced
    assert result.discrepancy == abs(Decimal(assets) - Decimal(le))


def test_analyze_financials_scores_ratios() -> None:
    analysis = analyze_financials(_closed_year_snapshot(), CONFIG)

    current_ratio = analysis.ratio("current_ratio")
    assert current_ratio is not None
    # 15,500 / 3,000
    assert current_ratio.status == "excellent"
    assert current_ratio.formatted_value == "5.17x"

    gross_margin = analysis.ratio("gross_margin")
    assert gross_margin.raw_value == Decimal("0.6")
    assert gross_margin.formatted_value == "60.00%"

    assert analysis.measures["gross_profit"] == Decimal("6000")
    assert analysis.health_score is not None
    assert analysis.overall_health in {"excellent", "good", "fair", "poor", "critical"}


_codes = st.text(alphabet="0123456789", min_size=2, max_size=7)
_balances = st.decimals(
    min_value=0, max_value=10**9, places=2, allow_nan=False, allow_infinity=False
)


@settings(max_examples=60, deadline=None)
@given(st.lists(st.tuples(_codes, _balances), max_size=30, unique_by=lambda t: t[0]))
def test_tree_consistency_property(rows) -> None:
    """Internal nodes always equal the exact sum of their children."""
    accounts = [Account(code, "", AccountType.ASSET, balance) for code, balance in rows]
    template = CONFIG.template("assets")
    statement = aggregate(accounts, template, warn_unmatched=False)

    for section in statement.sections:
        _assert_tree_consistent(section)
    assert statement.total == sum((s.amount for s in statement.sections), Decimal("0"))

    matched = sum(
        (a.balance for a in accounts if template.match_leaf_for_code(a.code) is not None),
        Decimal("0"),
    )
    assert statement.total == matched
    assert statement.unmatched_count == sum(
        1 for a in accounts if template.match_leaf_for_code(a.code) is None
    )
