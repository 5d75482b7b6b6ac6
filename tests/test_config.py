from decimal import Decimal

import pytest

from coa_finsight.aging import DEFAULT_BUCKETS
from coa_finsight.config import DATA_DIR, load_engine_config, load_toml
from coa_finsight.exceptions import ConfigError, TemplateError
from coa_finsight.variance import DEFAULT_THRESHOLDS

RATIOS_FILE = (DATA_DIR / "ratios_es_pgc.toml").as_posix()
STATEMENTS_FILE = (DATA_DIR / "statements_es_pgc.toml").as_posix()


def _write_standard(tmp_path, body: str):
    path = tmp_path / "standard.toml"
    path.write_text(body, encoding="utf-8")
    return path


def test_default_config_loads_bundled_pgc() -> None:
    config = load_engine_config()

    assert config.standard == "ES_PGC"
    assert config.locale == "es_ES"
    assert config.currency == "EUR"
    assert config.balance_tolerance == Decimal("0.01")
    assert ("28", "30") in config.contra_ranges
    assert set(config.templates) == {"assets", "liabilities_and_equity", "income_statement"}
    assert config.aging_buckets == DEFAULT_BUCKETS
    assert config.variance_thresholds == DEFAULT_THRESHOLDS
    assert config.trend_tolerance == Decimal("1")
    assert "current_ratio" in config.ratio_rules.definitions


def test_template_lookup() -> None:
    config = load_engine_config()
    assert config.template("assets").total_measure == "total_assets"
    with pytest.raises(ConfigError):
        config.template("cash_flow")


def test_minimal_standard_uses_defaults(tmp_path) -> None:
    path = _write_standard(
        tmp_path,
        f'[paths]\nstatements = "{STATEMENTS_FILE}"\nratios = "{RATIOS_FILE}"\n',
    )
    config = load_engine_config(str(path))

    assert config.standard == "ES_PGC"
    assert config.contra_ranges == ()
    assert config.aging_buckets == DEFAULT_BUCKETS


def test_custom_options(tmp_path) -> None:
    path = _write_standard(
        tmp_path,
        f"""
[standard]
name = "CUSTOM"
locale = "en_GB"
currency = "GBP"

[paths]
statements = "{STATEMENTS_FILE}"
ratios = "{RATIOS_FILE}"

[balance]
tolerance = "1"

[[aging.buckets]]
key = "ok"
max_days = 0
status = "current"

[[aging.buckets]]
key = "late"
min_days = 1
status = "critical"

[variance]
trend_tolerance = 2.5
thresholds = [{{ status = "on_track", max_percentage = 5 }}]
""",
    )
    config = load_engine_config(str(path))

    assert config.standard == "CUSTOM"
    assert config.currency == "GBP"
    assert config.balance_tolerance == Decimal("1")
    assert [b.key for b in config.aging_buckets] == ["ok", "late"]
    assert config.trend_tolerance == Decimal("2.5")
    assert config.variance_thresholds == (("on_track", Decimal("5")),)


def test_missing_paths_section(tmp_path) -> None:
    path = _write_standard(tmp_path, '[standard]\nname = "X"\n')
    with pytest.raises(ConfigError):
        load_engine_config(str(path))


def test_missing_referenced_file(tmp_path) -> None:
    path = _write_standard(
        tmp_path, f'[paths]\nstatements = "nope.toml"\nratios = "{RATIOS_FILE}"\n'
    )
    with pytest.raises(FileNotFoundError):
        load_engine_config(str(path))


def test_invalid_aging_buckets(tmp_path) -> None:
    path = _write_standard(
        tmp_path,
        f"""
[paths]
statements = "{STATEMENTS_FILE}"
ratios = "{RATIOS_FILE}"

[[aging.buckets]]
key = "a"
max_days = 10
status = "current"

[[aging.buckets]]
key = "b"
min_days = 20
status = "critical"
""",
    )
    with pytest.raises(ConfigError):
        load_engine_config(str(path))


def test_invalid_contra_range(tmp_path) -> None:
    path = _write_standard(
        tmp_path,
        f"""
[paths]
statements = "{STATEMENTS_FILE}"
ratios = "{RATIOS_FILE}"

[validation]
contra_ranges = [["5", "57"]]
""",
    )
    with pytest.raises(ConfigError):
        load_engine_config(str(path))


def test_overlapping_template_is_rejected(tmp_path) -> None:
    statements = tmp_path / "statements.toml"
    statements.write_text(
        """
[assets]
[[assets.sections]]
code = "A"
name = "A"
range = ["20", "30"]

[[assets.sections]]
code = "B"
name = "B"
range = ["25", "35"]
""",
        encoding="utf-8",
    )
    path = _write_standard(
        tmp_path, f'[paths]\nstatements = "statements.toml"\nratios = "{RATIOS_FILE}"\n'
    )
    with pytest.raises(TemplateError):
        load_engine_config(str(path))


def test_missing_required_template(tmp_path) -> None:
    statements = tmp_path / "statements.toml"
    statements.write_text(
        '[assets]\n[[assets.sections]]\ncode = "A"\nname = "A"\nrange = ["20", "30"]\n',
        encoding="utf-8",
    )
    path = _write_standard(
        tmp_path, f'[paths]\nstatements = "statements.toml"\nratios = "{RATIOS_FILE}"\n'
    )
    with pytest.raises(ConfigError, match="Missing statement templates"):
        load_engine_config(str(path))


def test_load_toml_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_toml(tmp_path / "missing.toml")
    broken = tmp_path / "broken.toml"
    broken.write_text("a = [", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_toml(broken)
