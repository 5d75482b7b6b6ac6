# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Computation of derived measures, financial ratios and health score.

This module complements the aggregation engine (engine.py) by providing:

1. Derived measures
   -----------------
   Derived measures are defined in the ratios TOML file under the
   ``[measures]`` table, as ``key = "formula"`` pairs. Each formula may
   reference canonical measures (produced from statement templates) and
   previously defined derived measures:

       [measures]
       total_liabilities = "non_current_liabilities + current_liabilities"
       gross_profit = "revenue + cost_of_sales"

   They are computed by ``compute_derived_measures(base_measures, rules)``.

2. Financial ratios
   -----------------
   Ratios are defined under ``[ratios.<category>.<key>]`` where category is
   one of liquidity, solvency, profitability or efficiency. Each ratio
   specifies:
       - label,
       - formula (arithmetic expression over named inputs),
       - unit: 'percent', 'times', 'currency' or 'days',
       - direction: 'higher_is_better' or 'lower_is_better',
       - benchmark (optional),
       - min_value and positive_inputs (optional): outside these bounds
         the ratio is rated with the fallback status whatever its
         benchmark distance (e.g. debt_to_equity with negative equity).

   ``compute_ratio(name, inputs)`` evaluates one ratio. A division by zero
   anywhere in the formula makes the ratio undefined: ``raw_value`` is None,
   ``formatted_value`` is '-' and ``status`` is 'neutral'.

3. Status and health
   ------------------
   ``evaluate_status`` turns the distance between a ratio and its benchmark
   into a status tag through a threshold table (``[status]`` in the TOML
   file). ``health_score`` averages per-status weights over all non-neutral
   ratios, and ``overall_health`` buckets that score into a tier.

All arithmetic is done on ``Decimal``.
"""

import ast
import logging
import operator
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Optional

from .exceptions import ConfigError, MissingInputError, UnknownRatioError
from .models import HUNDRED, ZERO, RatioResult, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_RULES_FILE = Path(__file__).parent / "data" / "ratios_es_pgc.toml"

CATEGORIES: tuple[str, ...] = ("liquidity", "solvency", "profitability", "efficiency")
UNITS: tuple[str, ...] = ("percent", "times", "currency", "days")
HIGHER_IS_BETTER = "higher_is_better"
LOWER_IS_BETTER = "lower_is_better"
NEUTRAL = "neutral"

# (status, min_deviation): first row whose min_deviation <= deviation wins.
DEFAULT_STATUS_THRESHOLDS: tuple[tuple[str, Decimal], ...] = (
    ("excellent", Decimal("0.10")),
    ("good", Decimal("-0.10")),
    ("warning", Decimal("-0.50")),
)
DEFAULT_STATUS_FALLBACK = "critical"

DEFAULT_HEALTH_WEIGHTS: dict[str, Decimal] = {
    "excellent": Decimal("100"),
    "good": Decimal("75"),
    "warning": Decimal("40"),
    "critical": Decimal("10"),
}

# (tier, min_score): first row whose min_score <= score wins.
DEFAULT_HEALTH_TIERS: tuple[tuple[str, Decimal], ...] = (
    ("excellent", Decimal("80")),
    ("good", Decimal("65")),
    ("fair", Decimal("50")),
    ("poor", Decimal("30")),
)
DEFAULT_HEALTH_FALLBACK = "critical"

# language -> (thousands separator, decimal separator, symbol placement)
LOCALE_FORMATS: dict[str, tuple[str, str, str]] = {
    "es": (".", ",", "suffix"),
    "ca": (".", ",", "suffix"),
    "de": (".", ",", "suffix"),
    "fr": (" ", ",", "suffix"),
    "en": (",", ".", "prefix"),
}
CURRENCY_SYMBOLS: dict[str, str] = {"EUR": "€", "USD": "$", "GBP": "£"}


@dataclass(frozen=True)
class RatioDefinition:
    """Definition of one ratio as read from the rules file.

    ``min_value`` and ``positive_inputs`` bound the domain in which the
    benchmark comparison is meaningful. A value below ``min_value``, or a
    non-positive value of one of ``positive_inputs`` (e.g. negative equity),
    is rated with the fallback status.
    """

    key: str
    label: str
    category: str
    formula: str
    unit: str = "times"
    direction: str = HIGHER_IS_BETTER
    benchmark: Optional[Decimal] = None
    notes: str = ""
    min_value: Optional[Decimal] = None
    positive_inputs: tuple[str, ...] = ()


@dataclass(frozen=True)
class RatioRules:
    """Ratio catalogue plus status and health configuration."""

    definitions: dict[str, RatioDefinition]
    measures: dict[str, str] = field(default_factory=dict)
    status_thresholds: tuple[tuple[str, Decimal], ...] = DEFAULT_STATUS_THRESHOLDS
    status_fallback: str = DEFAULT_STATUS_FALLBACK
    health_weights: dict[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_HEALTH_WEIGHTS)
    )
    health_tiers: tuple[tuple[str, Decimal], ...] = DEFAULT_HEALTH_TIERS
    health_fallback: str = DEFAULT_HEALTH_FALLBACK

    def get(self, name: str) -> RatioDefinition:
        try:
            return self.definitions[name]
        except KeyError:
            raise UnknownRatioError(name) from None


# ---------------------------------------------------------------------------
# Rules loading
# ---------------------------------------------------------------------------


def _threshold_table(
    rows: Any, value_key: str, default: tuple[tuple[str, Decimal], ...]
) -> tuple[tuple[str, Decimal], ...]:
    if rows is None:
        return default
    if not isinstance(rows, Sequence):
        raise ConfigError(f"Expected an array of tables with '{value_key}'.")
    table = []
    for row in rows:
        try:
            table.append((str(row["status"]), to_decimal(row[value_key])))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid threshold row: {row!r}") from exc
    # Rows are evaluated from the highest bound down.
    return tuple(sorted(table, key=lambda r: r[1], reverse=True))


def parse_ratio_rules(data: Mapping[str, Any]) -> RatioRules:
    """Build RatioRules from a parsed TOML document."""
    definitions: dict[str, RatioDefinition] = {}

    ratios_section = data.get("ratios") or {}
    if not isinstance(ratios_section, Mapping):
        raise ConfigError("[ratios] must be a table.")

    for category, entries in ratios_section.items():
        if category not in CATEGORIES:
            raise ConfigError(f"Unknown ratio category: {category!r}")
        if not isinstance(entries, Mapping):
            continue
        for key, cfg in entries.items():
            if not isinstance(cfg, Mapping) or not cfg.get("formula"):
                raise ConfigError(f"Ratio {key!r} has no formula.")
            unit = str(cfg.get("unit", "times"))
            direction = str(cfg.get("direction", HIGHER_IS_BETTER))
            if unit not in UNITS:
                raise ConfigError(f"Ratio {key!r}: unknown unit {unit!r}")
            if direction not in (HIGHER_IS_BETTER, LOWER_IS_BETTER):
                raise ConfigError(f"Ratio {key!r}: unknown direction {direction!r}")
            if key in definitions:
                raise ConfigError(f"Ratio {key!r} is defined twice.")
            benchmark = cfg.get("benchmark")
            min_value = cfg.get("min_value")
            positive_inputs = cfg.get("positive_inputs", [])
            if isinstance(positive_inputs, str) or not isinstance(
                positive_inputs, Sequence
            ):
                raise ConfigError(f"Ratio {key!r}: positive_inputs must be a list.")
            definitions[str(key)] = RatioDefinition(
                key=str(key),
                label=str(cfg.get("label", key)),
                category=str(category),
                formula=str(cfg["formula"]),
                unit=unit,
                direction=direction,
                benchmark=None if benchmark is None else to_decimal(benchmark),
                notes=str(cfg.get("notes", "")),
                min_value=None if min_value is None else to_decimal(min_value),
                positive_inputs=tuple(str(n) for n in positive_inputs),
            )

    measures_section = data.get("measures") or {}
    measures = {str(k): str(v) for k, v in measures_section.items()}

    status_section = data.get("status") or {}
    health_section = data.get("health") or {}
    weights_raw = health_section.get("weights")
    weights = (
        {str(k): to_decimal(v) for k, v in weights_raw.items()}
        if weights_raw
        else dict(DEFAULT_HEALTH_WEIGHTS)
    )

    return RatioRules(
        definitions=definitions,
        measures=measures,
        status_thresholds=_threshold_table(
            status_section.get("thresholds"), "min_deviation", DEFAULT_STATUS_THRESHOLDS
        ),
        status_fallback=str(status_section.get("fallback", DEFAULT_STATUS_FALLBACK)),
        health_weights=weights,
        health_tiers=_threshold_table(
            health_section.get("tiers"), "min_score", DEFAULT_HEALTH_TIERS
        ),
        health_fallback=str(health_section.get("fallback", DEFAULT_HEALTH_FALLBACK)),
    )


def load_ratio_rules(rules_file: Path = DEFAULT_RULES_FILE) -> RatioRules:
    """Load a ratios rules TOML file (the bundled PGC rules by default)."""
    # config imports this module at load time.
    from .config import load_toml

    return parse_ratio_rules(load_toml(Path(rules_file)))


# ---------------------------------------------------------------------------
# Safe expression evaluation
# ---------------------------------------------------------------------------


class _UnknownVariable(ValueError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown variable in expression: {name!r}")


_ALLOWED_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def _safe_eval_expr(expr: str, variables: Mapping[str, Decimal]) -> Decimal:
    """
    Safely evaluate a simple arithmetic expression over Decimal values.

    Supported:
        - numeric literals
        - variable names (keys from `variables`)
        - binary operations: +, -, *, /
        - unary minus / plus
        - parentheses

    Raises:
        ZeroDivisionError: on a division by zero.
        _UnknownVariable: on a name missing from `variables`.
        ValueError: if the expression contains unsupported constructs.
    """
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Invalid expression syntax: {expr!r}") from exc

    def _eval(node: ast.AST) -> Decimal:
        if isinstance(node, ast.Expression):
            return _eval(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
                return to_decimal(node.value)
            raise ValueError(f"Unsupported constant in expression: {node.value!r}")

        if isinstance(node, ast.Name):
            if node.id not in variables:
                raise _UnknownVariable(node.id)
            return to_decimal(variables[node.id])

        if isinstance(node, ast.BinOp):
            op_type = type(node.op)
            if op_type not in _ALLOWED_OPERATORS:
                raise ValueError(f"Unsupported operator in expression: {op_type}")
            left = _eval(node.left)
            right = _eval(node.right)
            if op_type is ast.Div and right == ZERO:
                raise ZeroDivisionError(expr)
            return _ALLOWED_OPERATORS[op_type](left, right)

        if isinstance(node, ast.UnaryOp):
            if type(node.op) not in _ALLOWED_OPERATORS:
                raise ValueError(f"Unsupported unary operator: {node.op!r}")
            return _ALLOWED_OPERATORS[type(node.op)](_eval(node.operand))

        raise ValueError(f"Unsupported expression node: {type(node).__name__}")

    return _eval(tree)


def compute_derived_measures(
    base_measures: Mapping[str, Any],
    rules: Optional[RatioRules] = None,
) -> dict[str, Decimal]:
    """
    Compute derived measures from canonical measures.

    Measures are evaluated in the order they appear in the rules file, so a
    measure may depend on previously defined derived measures. A measure
    whose formula cannot be evaluated (missing input, division by zero) is
    skipped and is not available to the following formulas.

    Args:
        base_measures: Mapping of canonical measure names to values.
        rules: Ratio rules; the bundled PGC rules when None.

    Returns:
        A dictionary containing all base measures plus the derived measures.
    """
    rules = rules if rules is not None else load_ratio_rules()
    all_measures: dict[str, Decimal] = {
        str(k): to_decimal(v) for k, v in base_measures.items()
    }

    for key, formula in rules.measures.items():
        try:
            all_measures[key] = _safe_eval_expr(formula, all_measures)
        except (ZeroDivisionError, ValueError) as exc:
            logger.debug("Derived measure %r skipped: %s", key, exc)

    return all_measures


# ---------------------------------------------------------------------------
# Status, formatting, health
# ---------------------------------------------------------------------------


def evaluate_status(
    raw_value: Optional[Decimal],
    benchmark: Optional[Decimal],
    direction: str = HIGHER_IS_BETTER,
    thresholds: Sequence[tuple[str, Decimal]] = DEFAULT_STATUS_THRESHOLDS,
    fallback: str = DEFAULT_STATUS_FALLBACK,
    min_value: Optional[Decimal] = None,
) -> str:
    """Map the distance between a ratio and its benchmark to a status tag.

    The deviation is relative to the benchmark and oriented so that a
    positive deviation is always favorable::

        higher_is_better: d = (value - benchmark) / |benchmark|
        lower_is_better:  d = (benchmark - value) / |benchmark|

    With a zero benchmark the plain difference is used instead. The first
    threshold row whose ``min_deviation <= d`` gives the status, otherwise
    ``fallback``. A value below ``min_value`` is always ``fallback``.

    Returns:
        'neutral' when the value is None, or when the benchmark is None and
        the value is within ``min_value``.
    """
    if raw_value is None:
        return NEUTRAL

    value = to_decimal(raw_value)
    if min_value is not None and value < to_decimal(min_value):
        return fallback
    if benchmark is None:
        return NEUTRAL

    bench = to_decimal(benchmark)
    diff = value - bench if direction == HIGHER_IS_BETTER else bench - value
    deviation = diff if bench == ZERO else diff / abs(bench)

    for status, min_deviation in thresholds:
        if deviation >= min_deviation:
            return status
    return fallback


def _quantize(value: Decimal, decimals: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)


def format_amount(
    value: Decimal, decimals: int = 2, locale: str = "es_ES", currency: str = "EUR"
) -> str:
    """Format a monetary amount with locale separators and currency symbol.

    Examples:
        es_ES: 1234567.891 -> '1.234.567,89 €'
        en_US: 1234567.891 -> '€1,234,567.89'
    """
    language = locale.split("_")[0].lower()
    thousands, decimal_sep, placement = LOCALE_FORMATS.get(language, LOCALE_FORMATS["en"])
    symbol = CURRENCY_SYMBOLS.get(currency, currency)

    q = _quantize(to_decimal(value), decimals)
    sign = "-" if q < ZERO else ""
    int_part, _, frac = f"{abs(q):,.{decimals}f}".partition(".")
    body = int_part.replace(",", thousands)
    if frac:
        body = f"{body}{decimal_sep}{frac}"

    if placement == "prefix":
        return f"{sign}{symbol}{body}"
    return f"{sign}{body} {symbol}"


def format_ratio(
    value: Optional[Decimal],
    unit: str,
    decimals: int = 2,
    locale: str = "es_ES",
    currency: str = "EUR",
) -> str:
    """Format a ratio value according to its unit.

    - percent:  value x 100 with ``decimals`` digits and '%' ('15.00%'),
    - times:    ``decimals`` digits and 'x' ('1.50x'),
    - currency: see ``format_amount``,
    - days:     integer and ' días' (Spanish locales) or ' days'.

    None is rendered as '-'.
    """
    if value is None:
        return "-"
    v = to_decimal(value)

    if unit == "percent":
        return f"{_quantize(v * HUNDRED, decimals)}%"
    if unit == "times":
        return f"{_quantize(v, decimals)}x"
    if unit == "currency":
        return format_amount(v, decimals, locale=locale, currency=currency)
    if unit == "days":
        suffix = " días" if locale.lower().startswith("es") else " days"
        return f"{int(_quantize(v, 0))}{suffix}"
    raise ValueError(f"Unknown ratio unit: {unit!r}")


def health_score(
    results: Iterable[RatioResult],
    weights: Mapping[str, Decimal] = DEFAULT_HEALTH_WEIGHTS,
) -> Optional[Decimal]:
    """Average the status weights of all non-neutral ratios.

    Returns:
        A score between 0 and 100 rounded to one decimal, or None when no
        ratio has a scoreable status.
    """
    scored = [weights[r.status] for r in results if r.status in weights]
    if not scored:
        return None
    return _quantize(sum(scored, ZERO) / len(scored), 1)


def overall_health(
    score: Optional[Decimal],
    tiers: Sequence[tuple[str, Decimal]] = DEFAULT_HEALTH_TIERS,
    fallback: str = DEFAULT_HEALTH_FALLBACK,
) -> Optional[str]:
    """Bucket a health score into excellent / good / fair / poor / critical."""
    if score is None:
        return None
    for tier, min_score in tiers:
        if score >= min_score:
            return tier
    return fallback


# ---------------------------------------------------------------------------
# Ratio computation
# ---------------------------------------------------------------------------


def _build_result(
    definition: RatioDefinition,
    raw_value: Optional[Decimal],
    rules: RatioRules,
    locale: str,
    currency: str,
    inputs: Optional[Mapping[str, Decimal]] = None,
) -> RatioResult:
    out_of_domain = raw_value is not None and any(
        (inputs or {}).get(name, ZERO) <= ZERO for name in definition.positive_inputs
    )
    if out_of_domain:
        status = rules.status_fallback
    else:
        status = evaluate_status(
            raw_value,
            definition.benchmark,
            definition.direction,
            rules.status_thresholds,
            rules.status_fallback,
            definition.min_value,
        )
    return RatioResult(
        name=definition.key,
        raw_value=raw_value,
        formatted_value=format_ratio(
            raw_value, definition.unit, locale=locale, currency=currency
        ),
        status=status,
        benchmark=definition.benchmark,
        label=definition.label,
        category=definition.category,
        unit=definition.unit,
    )


def compute_ratio(
    name: str,
    inputs: Mapping[str, Any],
    rules: Optional[RatioRules] = None,
    locale: str = "es_ES",
    currency: str = "EUR",
) -> RatioResult:
    """
    Compute one named ratio from its inputs.

    Args:
        name: Ratio key (e.g. 'current_ratio').
        inputs: Mapping of input names to numeric values
            (e.g. {'current_assets': 150000, 'current_liabilities': 100000}).
        rules: Ratio rules; the bundled PGC rules when None.
        locale: Locale used for currency and days formatting.
        currency: Currency code used for currency formatting.

    Returns:
        A RatioResult. If the formula divides by zero, raw_value is None,
        formatted_value is '-' and status is 'neutral'.

    Raises:
        UnknownRatioError: if the ratio is not defined.
        MissingInputError: if the formula references a missing input.
    """
    rules = rules if rules is not None else load_ratio_rules()
    definition = rules.get(name)
    values = {str(k): to_decimal(v) for k, v in inputs.items()}

    raw_value: Optional[Decimal]
    try:
        raw_value = _safe_eval_expr(definition.formula, values)
    except ZeroDivisionError:
        raw_value = None
    except _UnknownVariable as exc:
        raise MissingInputError(name, exc.name) from exc

    return _build_result(definition, raw_value, rules, locale, currency, values)


def compute_ratios(
    measures: Mapping[str, Any],
    rules: Optional[RatioRules] = None,
    category: Optional[str] = None,
    locale: str = "es_ES",
    currency: str = "EUR",
) -> list[RatioResult]:
    """
    Compute every ratio of the catalogue (optionally one category only).

    Unlike ``compute_ratio``, a ratio whose inputs are not all available is
    reported as undefined (None / '-' / neutral) instead of raising, so that
    a partial set of measures still yields the full list of cards.

    Returns:
        RatioResult instances in rules-file order.
    """
    rules = rules if rules is not None else load_ratio_rules()
    if category is not None and category not in CATEGORIES:
        raise ValueError(f"Unknown ratio category: {category!r}")

    results: list[RatioResult] = []
    for definition in rules.definitions.values():
        if category is not None and definition.category != category:
            continue
        try:
            results.append(
                compute_ratio(definition.key, measures, rules, locale, currency)
            )
        except MissingInputError as exc:
            logger.debug("Ratio %r undefined: missing input %r", exc.ratio, exc.variable)
            results.append(_build_result(definition, None, rules, locale, currency))

    return results
