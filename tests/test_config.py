from pathlib import Path

import pytest

from mis_finsight.config import load_app_config, load_run_manifest
from mis_finsight.detectors import DEFAULT_SELF_ADJUSTMENT_PATTERNS
from mis_finsight.periods import MISPeriod

CONFIG = """
[company]
name = "Heatronics"
self_entity_keyword = "heatronics"
hub_state = "Maharashtra"
states = ["Maharashtra", "Karnataka"]

[classification]
auto_accept_threshold = 85
system_rules_file = "rules/system.csv"

[database]
path = "db/rules.sqlite"

[oracle]
enabled = true
model = "llama3"

[reconciliation]
threshold_pct = 3

[display]
mode = "both"
decimals = 0

[logging]
level = "info"
"""


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_load_app_config(tmp_path):
    cfg_path = write(tmp_path / "mis.toml", CONFIG)

    config = load_app_config(str(cfg_path))

    assert config.company.name == "Heatronics"
    assert config.company.hub_state == "Maharashtra"
    assert config.company.states == ("Maharashtra", "Karnataka")
    assert config.company.currency == "INR"
    assert config.classification.auto_accept_threshold == 85
    assert config.classification.system_rules_file == (tmp_path / "rules/system.csv").resolve()
    assert config.classification.ignore_rules_file is None
    assert config.classification.self_adjustment_patterns == DEFAULT_SELF_ADJUSTMENT_PATTERNS
    assert config.database.path == (tmp_path / "db/rules.sqlite").resolve()
    assert config.oracle.enabled is True
    assert config.oracle.model == "llama3"
    assert config.reconciliation_threshold_pct == 3
    assert config.display_mode == "both"
    assert config.decimals == 0
    assert config.log_level == "INFO"

    settings = config.engine_settings()
    assert settings.self_entity_keyword == "heatronics"
    assert settings.auto_accept_threshold == 85


def test_load_app_config_defaults(tmp_path):
    config = load_app_config(str(write(tmp_path / "empty.toml", "")))

    assert config.company.hub_state is None
    assert config.classification.auto_accept_threshold == 80
    assert config.classification.offset_tolerance == 0.01
    assert config.database.engine == "sqlite"
    assert config.oracle.enabled is False
    assert config.reconciliation_threshold_pct == 5.0
    assert config.display_mode == "table"
    assert config.log_level == "WARNING"


@pytest.mark.parametrize(
    "text, message",
    [
        ('[company]\nstates = ["UP"]\nhub_state = "Delhi"\n', "hub_state"),
        ("[classification]\nauto_accept_threshold = 120\n", "auto_accept_threshold"),
        ('[classification]\nauto_accept_threshold = "high"\n', "Expected a number"),
        ("[classification]\noffset_tolerance = -1\n", "offset_tolerance"),
        ("[reconciliation]\nthreshold_pct = 0\n", "threshold_pct"),
        ('[display]\nmode = "html"\n', "mode"),
        ('company = "oops"\n', "must be a table"),
        ("[company\n", "Failed to parse"),
    ],
)
def test_load_app_config_rejects_invalid_values(tmp_path, text, message):
    cfg_path = write(tmp_path / "bad.toml", text)
    with pytest.raises(ValueError, match=message):
        load_app_config(str(cfg_path))


def test_load_app_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_app_config(str(tmp_path / "nope.toml"))


def test_load_run_manifest(tmp_path):
    write(tmp_path / "2024-05/mh_journal.csv", "date,account,debit,credit\n")
    write(tmp_path / "2024-04/mh_journal.csv", "date,account,debit,credit\n")
    write(tmp_path / "2024-04/mh_sales.csv", "party,amount\n")
    manifest = write(
        tmp_path / "run.toml",
        """
[[periods]]
period = "2024-05"
[periods.states.Maharashtra]
ledger = "2024-05/mh_journal.csv"

[[periods]]
period = "2024-04"
[periods.states.Maharashtra]
ledger = "2024-04/mh_journal.csv"
sales = "2024-04/mh_sales.csv"
""",
    )

    periods = load_run_manifest(str(manifest))

    assert [p.period for p in periods] == [MISPeriod(2024, 4), MISPeriod(2024, 5)]
    april = periods[0].states[0]
    assert april.state == "Maharashtra"
    assert april.sales == (tmp_path / "2024-04/mh_sales.csv").resolve()
    assert april.snapshot is None


def test_load_run_manifest_errors(tmp_path):
    missing = write(
        tmp_path / "missing.toml",
        '[[periods]]\nperiod = "2024-04"\n[periods.states.UP]\nledger = "nope.csv"\n',
    )
    duplicate = write(
        tmp_path / "dup.toml",
        '[[periods]]\nperiod = "2024-04"\n\n[[periods]]\nperiod = "2024-04"\n',
    )
    bad_key = write(tmp_path / "bad.toml", '[[periods]]\nperiod = "April"\n')
    empty = write(tmp_path / "empty.toml", "")

    with pytest.raises(FileNotFoundError):
        load_run_manifest(str(missing))
    with pytest.raises(ValueError, match="listed twice"):
        load_run_manifest(str(duplicate))
    with pytest.raises(ValueError, match="YYYY-MM"):
        load_run_manifest(str(bad_key))
    with pytest.raises(ValueError, match="at least one"):
        load_run_manifest(str(empty))
