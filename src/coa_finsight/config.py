# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for COA FinSight.

This module is responsible for:
- loading a standard configuration file (TOML) describing one chart of
  accounts (e.g. the Spanish PGC bundled as data/standard_es_pgc.toml),
- loading the statement templates and the ratio rules it references,
- exposing the typed, frozen EngineConfig used by the engine.

A standard file looks like::

    [standard]
    name = "ES_PGC"
    locale = "es_ES"
    currency = "EUR"

    [paths]
    statements = "statements_es_pgc.toml"
    ratios = "ratios_es_pgc.toml"

    [balance]
    tolerance = "0.01"

    [validation]
    contra_ranges = [["28", "30"], ["129", "130"]]

    [[aging.buckets]]
    key = "current"
    max_days = 0
    status = "current"

    [variance]
    trend_tolerance = 1
    thresholds = [{ status = "on_track", max_percentage = 10 }]
    fallback = "exceeded"

    [budget_health]
    tiers = [{ status = "excellent", min_on_track_share = 90 }]
    fallback = "critical"

Paths are resolved relative to the directory of the standard file. Every
section except [paths] is optional and falls back to the module defaults.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

from . import aging, variance
from .accounts import CodeRange, validate_range
from .exceptions import ConfigError
from .mapping import StatementTemplate, load_statement_templates
from .models import to_decimal
from .ratios import RatioRules, load_ratio_rules

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_STANDARD_FILE = DATA_DIR / "standard_es_pgc.toml"

REQUIRED_TEMPLATES: tuple[str, ...] = ("assets", "liabilities_and_equity", "income_statement")


@dataclass(frozen=True)
class EngineConfig:
    """
    Standard-specific configuration of the engine.

    Attributes:
        standard: Name of the chart of accounts (e.g. 'ES_PGC').
        locale: Locale used to format amounts and days (e.g. 'es_ES').
        currency: Currency code of the amounts (never converted).
        balance_tolerance: Tolerance of the Assets == L + E check.
        contra_ranges: Code ranges allowed to carry a negative balance.
        templates: Statement templates by key.
        ratio_rules: Ratio catalogue, status thresholds and health weights.
        aging_buckets: Aging bucket table.
        variance_thresholds: Variance status table.
        variance_fallback: Status beyond the last variance threshold.
        trend_tolerance: Points of variance change considered stable.
        budget_health_tiers: Overall budget health table.
        budget_health_fallback: Health below the last tier.
    """

    standard: str
    locale: str
    currency: str
    balance_tolerance: Decimal
    contra_ranges: tuple[CodeRange, ...]
    templates: dict[str, StatementTemplate]
    ratio_rules: RatioRules
    aging_buckets: tuple[aging.BucketDef, ...] = aging.DEFAULT_BUCKETS
    variance_thresholds: tuple[tuple[str, Decimal], ...] = variance.DEFAULT_THRESHOLDS
    variance_fallback: str = variance.DEFAULT_FALLBACK
    trend_tolerance: Decimal = variance.DEFAULT_TREND_TOLERANCE
    budget_health_tiers: tuple[tuple[str, Decimal], ...] = variance.DEFAULT_HEALTH_TIERS
    budget_health_fallback: str = variance.DEFAULT_HEALTH_FALLBACK

    def template(self, key: str) -> StatementTemplate:
        try:
            return self.templates[key]
        except KeyError:
            raise ConfigError(f"No statement template named '{key}'.") from None


def load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigError: if the TOML content cannot be parsed.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse TOML config file: {path}") from exc


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"[{key}] must be a table.")
    return value


def _parse_contra_ranges(raw: Any) -> tuple[CodeRange, ...]:
    ranges: list[CodeRange] = []
    for item in raw or []:
        try:
            start, end = (str(x).strip() for x in item)
            validate_range(start, end)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid contra range: {item!r}") from exc
        ranges.append((start, end))
    return tuple(ranges)


def _parse_aging_buckets(raw: Any) -> tuple[aging.BucketDef, ...]:
    if not raw:
        return aging.DEFAULT_BUCKETS

    def _opt_int(value: Any) -> Optional[int]:
        return None if value is None else int(value)

    try:
        buckets = tuple(
            aging.BucketDef(
                key=str(row["key"]),
                min_days=_opt_int(row.get("min_days")),
                max_days=_opt_int(row.get("max_days")),
                status=str(row["status"]),
            )
            for row in raw
        )
        aging.validate_buckets(buckets)
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid [aging] buckets: {exc}") from exc
    return buckets


def _parse_table(
    rows: Any, value_key: str, default: tuple[tuple[str, Decimal], ...]
) -> tuple[tuple[str, Decimal], ...]:
    if not rows:
        return default
    try:
        return tuple((str(r["status"]), to_decimal(r[value_key])) for r in rows)
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid threshold table ({value_key}): {rows!r}") from exc


def load_engine_config(config_path: Optional[str] = None) -> EngineConfig:
    """
    Load an engine configuration from a standard TOML file.

    Args:
        config_path: Path to the standard file. None loads the bundled
            Spanish PGC standard.

    Returns:
        A validated EngineConfig. The statement templates 'assets',
        'liabilities_and_equity' and 'income_statement' are required.

    Raises:
        FileNotFoundError: if a referenced file does not exist.
        ConfigError: if a file is invalid.
    """
    config_file = Path(config_path).resolve() if config_path else DEFAULT_STANDARD_FILE
    raw = load_toml(config_file)
    base_dir = config_file.parent

    standard_section = _section(raw, "standard")
    paths_section = _section(raw, "paths")

    try:
        statements_file = (base_dir / str(paths_section["statements"])).resolve()
        ratios_file = (base_dir / str(paths_section["ratios"])).resolve()
    except KeyError as exc:
        raise ConfigError(f"[paths] is missing {exc} in {config_file}") from exc

    templates = load_statement_templates(statements_file)
    missing = [k for k in REQUIRED_TEMPLATES if k not in templates]
    if missing:
        raise ConfigError(f"Missing statement templates in {statements_file}: {missing}")

    balance_section = _section(raw, "balance")
    validation_section = _section(raw, "validation")
    aging_section = _section(raw, "aging")
    variance_section = _section(raw, "variance")
    health_section = _section(raw, "budget_health")

    try:
        tolerance = to_decimal(balance_section.get("tolerance", "0.01"))
        trend_tolerance = to_decimal(
            variance_section.get("trend_tolerance", variance.DEFAULT_TREND_TOLERANCE)
        )
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    return EngineConfig(
        standard=str(standard_section.get("name") or "ES_PGC"),
        locale=str(standard_section.get("locale") or "es_ES"),
        currency=str(standard_section.get("currency") or "EUR"),
        balance_tolerance=tolerance,
        contra_ranges=_parse_contra_ranges(validation_section.get("contra_ranges")),
        templates=templates,
        ratio_rules=load_ratio_rules(ratios_file),
        aging_buckets=_parse_aging_buckets(aging_section.get("buckets")),
        variance_thresholds=_parse_table(
            variance_section.get("thresholds"), "max_percentage", variance.DEFAULT_THRESHOLDS
        ),
        variance_fallback=str(variance_section.get("fallback", variance.DEFAULT_FALLBACK)),
        trend_tolerance=trend_tolerance,
        budget_health_tiers=_parse_table(
            health_section.get("tiers"), "min_on_track_share", variance.DEFAULT_HEALTH_TIERS
        ),
        budget_health_fallback=str(
            health_section.get("fallback", variance.DEFAULT_HEALTH_FALLBACK)
        ),
    )
