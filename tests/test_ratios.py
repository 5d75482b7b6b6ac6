from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from coa_finsight.exceptions import ConfigError, MissingInputError, UnknownRatioError
from coa_finsight.models import RatioResult
from coa_finsight.ratios import (
    compute_derived_measures,
    compute_ratio,
    compute_ratios,
    evaluate_status,
    format_amount,
    format_ratio,
    health_score,
    load_ratio_rules,
    overall_health,
    parse_ratio_rules,
)

RULES = load_ratio_rules()


def _result(status: str) -> RatioResult:
    return RatioResult(name="x", raw_value=None, formatted_value="-", status=status)


def test_current_ratio_against_benchmark() -> None:
    result = compute_ratio(
        "current_ratio", {"current_assets": 150000, "current_liabilities": 100000}, RULES
    )
    assert result.raw_value == Decimal("1.5")
    assert result.formatted_value == "1.50x"
    assert result.status == "good"
    assert result.benchmark == Decimal("1.5")
    assert result.category == "liquidity"


def test_current_ratio_with_zero_denominator_is_neutral() -> None:
    result = compute_ratio(
        "current_ratio", {"current_assets": 0, "current_liabilities": 0}, RULES
    )
    assert result.raw_value is None
    assert result.formatted_value == "-"
    assert result.status == "neutral"


def test_compute_ratio_unknown_name() -> None:
    with pytest.raises(UnknownRatioError):
        compute_ratio("does_not_exist", {}, RULES)


def test_compute_ratio_missing_input() -> None:
    with pytest.raises(MissingInputError) as excinfo:
        compute_ratio("current_ratio", {"current_assets": 1}, RULES)
    assert excinfo.value.variable == "current_liabilities"


@pytest.mark.parametrize(
    "value, benchmark, direction, expected",
    [
        ("1.5", "1.5", "higher_is_better", "good"),
        ("1.65", "1.5", "higher_is_better", "excellent"),
        ("1.35", "1.5", "higher_is_better", "good"),
        ("1.0", "1.5", "higher_is_better", "warning"),
        ("0.5", "1.5", "higher_is_better", "critical"),
        ("0.8", "1.0", "lower_is_better", "excellent"),
        ("1.3", "1.0", "lower_is_better", "warning"),
        ("2.0", "1.0", "lower_is_better", "critical"),
        ("0.2", "0", "higher_is_better", "excellent"),
    ],
)
def test_evaluate_status(value: str, benchmark: str, direction: str, expected: str) -> None:
    assert evaluate_status(Decimal(value), Decimal(benchmark), direction) == expected


def test_evaluate_status_without_value_or_benchmark_is_neutral() -> None:
    assert evaluate_status(None, Decimal("1")) == "neutral"
    assert evaluate_status(Decimal("1"), None) == "neutral"


def test_evaluate_status_below_min_value_is_fallback() -> None:
    assert (
        evaluate_status(Decimal("-5"), Decimal("1"), "lower_is_better", min_value=Decimal("0"))
        == "critical"
    )
    assert evaluate_status(Decimal("-1"), None, min_value=Decimal("0")) == "critical"
    assert (
        evaluate_status(Decimal("0.8"), Decimal("1"), "lower_is_better", min_value=Decimal("0"))
        == "excellent"
    )


def test_negative_equity_is_critical() -> None:
    """An insolvent company never gets a favorable leverage or ROE rating."""
    debt_to_equity = compute_ratio(
        "debt_to_equity", {"total_liabilities": 5000, "equity": -1000}, RULES
    )
    assert debt_to_equity.raw_value == Decimal("-5")
    assert debt_to_equity.status == "critical"

    # Loss over negative equity gives a positive ROE.
    roe = compute_ratio("roe", {"net_income": -300, "equity": -1000}, RULES)
    assert roe.raw_value == Decimal("0.3")
    assert roe.status == "critical"

    roe = compute_ratio("roe", {"net_income": 300, "equity": 1000}, RULES)
    assert roe.status == "excellent"


def test_parse_ratio_rules_domain_bounds() -> None:
    rules = parse_ratio_rules(
        {
            "ratios": {
                "solvency": {
                    "r": {
                        "formula": "a / b",
                        "benchmark": 1,
                        "min_value": 0,
                        "positive_inputs": ["b"],
                    }
                }
            }
        }
    )
    definition = rules.get("r")
    assert definition.min_value == Decimal("0")
    assert definition.positive_inputs == ("b",)
    with pytest.raises(ConfigError):
        parse_ratio_rules(
            {"ratios": {"solvency": {"r": {"formula": "a / b", "positive_inputs": "b"}}}}
        )


def test_dupont_decomposition_equals_roe() -> None:
    measures = {"net_income": 150, "revenue": 1000, "total_assets": 2000, "equity": 1000}
    results = {r.name: r for r in compute_ratios(measures, RULES)}

    net_margin = results["net_margin"].raw_value
    asset_turnover = results["asset_turnover"].raw_value
    equity_multiplier = results["equity_multiplier"].raw_value
    assert equity_multiplier == Decimal("2")
    assert net_margin * asset_turnover * equity_multiplier == results["roe"].raw_value
    assert results["dupont_roe"].raw_value == results["roe"].raw_value
    assert results["dupont_roe"].formatted_value == "15.00%"
    assert results["dupont_roe"].category == "profitability"


def test_load_ratio_rules_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_ratio_rules(tmp_path / "missing.toml")
    broken = tmp_path / "ratios.toml"
    broken.write_text("[ratios\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_ratio_rules(broken)


@pytest.mark.parametrize(
    "value, unit, locale, expected",
    [
        (Decimal("0.15"), "percent", "es_ES", "15.00%"),
        (Decimal("0.12345"), "percent", "es_ES", "12.35%"),
        (Decimal("1.5"), "times", "es_ES", "1.50x"),
        (Decimal("45.4"), "days", "es_ES", "45 días"),
        (Decimal("45.5"), "days", "en_US", "46 days"),
        (Decimal("1234567.891"), "currency", "es_ES", "1.234.567,89 €"),
        (Decimal("1234567.891"), "currency", "en_US", "€1,234,567.89"),
        (None, "times", "es_ES", "-"),
    ],
)
def test_format_ratio(value, unit: str, locale: str, expected: str) -> None:
    assert format_ratio(value, unit, locale=locale) == expected


def test_format_amount_negative_and_other_currency() -> None:
    assert format_amount(Decimal("-1234.5")) == "-1.234,50 €"
    assert format_amount(Decimal("99"), locale="en_US", currency="USD") == "$99.00"


def test_format_ratio_unknown_unit() -> None:
    with pytest.raises(ValueError):
        format_ratio(Decimal("1"), "furlongs")


def test_health_score_and_tiers() -> None:
    results = [_result("excellent"), _result("good"), _result("neutral")]
    score = health_score(results)
    assert score == Decimal("87.5")
    assert overall_health(score) == "excellent"

    assert overall_health(Decimal("65")) == "good"
    assert overall_health(Decimal("50")) == "fair"
    assert overall_health(Decimal("30")) == "poor"
    assert overall_health(Decimal("29.9")) == "critical"


def test_health_score_without_scoreable_ratio() -> None:
    assert health_score([_result("neutral")]) is None
    assert health_score([]) is None
    assert overall_health(None) is None


def test_compute_derived_measures_in_file_order() -> None:
    base = {
        "revenue": 1000,
        "cost_of_sales": -400,
        "operating_income": 200,
        "depreciation_amortization": -50,
        "financial_expenses": -20,
        "financial_result": -15,
        "non_current_liabilities": 300,
        "current_liabilities": 100,
    }
    measures = compute_derived_measures(base, RULES)

    assert measures["revenue"] == Decimal("1000")
    assert measures["gross_profit"] == Decimal("600")
    assert measures["ebitda"] == Decimal("250")
    assert measures["interest_expense"] == Decimal("20")
    assert measures["total_liabilities"] == Decimal("400")
    assert measures["purchases"] == Decimal("400")


def test_compute_derived_measures_skips_unevaluable_formulas() -> None:
    measures = compute_derived_measures({"revenue": 100}, RULES)
    assert "gross_profit" not in measures
    assert measures["revenue"] == Decimal("100")


def test_compute_ratios_returns_full_catalogue_with_missing_inputs() -> None:
    results = compute_ratios({"current_assets": 300, "current_liabilities": 200}, RULES)

    names = [r.name for r in results]
    assert names[0] == "current_ratio"
    assert "roe" in names and "days_receivables" in names
    by_name = {r.name: r for r in results}
    assert by_name["current_ratio"].raw_value == Decimal("1.5")
    assert by_name["roe"].raw_value is None
    assert by_name["roe"].status == "neutral"


def test_compute_ratios_by_category() -> None:
    results = compute_ratios({}, RULES, category="solvency")
    assert {r.category for r in results} == {"solvency"}
    with pytest.raises(ValueError):
        compute_ratios({}, RULES, category="growth")


def test_parse_ratio_rules_validation() -> None:
    with pytest.raises(ConfigError):
        parse_ratio_rules({"ratios": {"growth": {"x": {"formula": "a / b"}}}})
    with pytest.raises(ConfigError):
        parse_ratio_rules({"ratios": {"liquidity": {"x": {"label": "no formula"}}}})
    with pytest.raises(ConfigError):
        parse_ratio_rules(
            {"ratios": {"liquidity": {"x": {"formula": "a / b", "unit": "furlongs"}}}}
        )


def test_custom_status_thresholds() -> None:
    rules = parse_ratio_rules(
        {
            "ratios": {"liquidity": {"r": {"formula": "a / b", "benchmark": 1}}},
            "status": {
                "fallback": "bad",
                "thresholds": [{"status": "ok", "min_deviation": 0}],
            },
        }
    )
    assert compute_ratio("r", {"a": 1, "b": 1}, rules).status == "ok"
    assert compute_ratio("r", {"a": 1, "b": 2}, rules).status == "bad"


_amounts = st.decimals(
    min_value=-(10**9), max_value=10**9, places=2, allow_nan=False, allow_infinity=False
)


@settings(max_examples=50, deadline=None)
@given(numerator=_amounts)
def test_zero_denominator_is_always_neutral(numerator) -> None:
    for name, inputs in [
        ("current_ratio", {"current_assets": numerator, "current_liabilities": 0}),
        ("roe", {"net_income": numerator, "equity": 0}),
        ("days_receivables", {"trade_receivables": numerator, "revenue": 0}),
    ]:
        result = compute_ratio(name, inputs, RULES)
        assert result.raw_value is None
        assert result.formatted_value == "-"
        assert result.status == "neutral"
