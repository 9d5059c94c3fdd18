# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for MIS FinSight.

This module is responsible for:
- loading the main application configuration from a TOML file,
- loading run manifests (which input files make up which period),
- exposing typed dataclasses used by the rest of the application.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

from .db import DatabaseConfig
from .detectors import DEFAULT_SELF_ADJUSTMENT_PATTERNS
from .engine import EngineSettings
from .oracle import (
    AUTO_ACCEPT_THRESHOLD,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT,
    OLLAMA_BASE_URL,
)
from .periods import MISPeriod
from .reconciliation import DEFAULT_THRESHOLD_PCT

DEFAULT_CONFIG_FILE = "mis_finsight_config.toml"


@dataclass(frozen=True)
class CompanyConfig:
    """
    Company-level settings.

    ``self_entity_keyword`` identifies the business itself in party names
    (stock transfers); ``hub_state`` is the only state whose transfers are
    counted.
    """

    name: str
    self_entity_keyword: str
    hub_state: Optional[str]
    states: tuple[str, ...]
    currency: str


@dataclass(frozen=True)
class ClassificationConfig:
    auto_accept_threshold: float
    offset_tolerance: float
    system_rules_file: Optional[Path]
    ignore_rules_file: Optional[Path]
    self_adjustment_patterns: tuple[str, ...]


@dataclass(frozen=True)
class OracleConfig:
    enabled: bool
    base_url: str
    model: str
    timeout: float


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for MIS FinSight.

    This aggregates:
    - the company definition (states, hub state, self-entity keyword),
    - classification options and optional rule files,
    - the database configuration (where rules are stored),
    - the AI oracle connection,
    - the reconciliation threshold,
    - display and logging options.
    """

    company: CompanyConfig
    classification: ClassificationConfig
    database: DatabaseConfig
    oracle: OracleConfig
    reconciliation_threshold_pct: float
    display_mode: str
    decimals: int
    log_level: str

    def engine_settings(self) -> EngineSettings:
        """Settings passed to ``engine.build_mis_record``."""
        return EngineSettings(
            self_entity_keyword=self.company.self_entity_keyword,
            hub_state=self.company.hub_state,
            auto_accept_threshold=self.classification.auto_accept_threshold,
            offset_tolerance=self.classification.offset_tolerance,
            self_adjustment_patterns=self.classification.self_adjustment_patterns,
        )


@dataclass(frozen=True)
class StateInputs:
    """Input files of one state for one period. Every file is optional."""

    state: str
    ledger: Optional[Path] = None
    sales: Optional[Path] = None
    snapshot: Optional[Path] = None


@dataclass(frozen=True)
class PeriodInputs:
    period: MISPeriod
    states: tuple[StateInputs, ...]


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Config section [{name}] must be a table.")
    return section


def _number(section: Mapping[str, Any], key: str, default: float, where: str) -> float:
    value = section.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Invalid value for '{where}.{key}' in the configuration. "
            "Expected a number."
        ) from exc


def _resolve_optional(base_dir: Path, rel: Optional[str]) -> Optional[Path]:
    if not rel:
        return None
    return (base_dir / str(rel)).resolve()


def _parse_company(raw: Mapping[str, Any]) -> CompanyConfig:
    section = _section(raw, "company")

    states_raw = section.get("states") or []
    if not isinstance(states_raw, list):
        raise ValueError("Config value [company].states must be a list of names.")
    states = tuple(str(s) for s in states_raw)

    hub_state = section.get("hub_state") or None
    if hub_state is not None:
        hub_state = str(hub_state)
        if states and hub_state not in states:
            raise ValueError(
                f"[company].hub_state {hub_state!r} is not one of the configured "
                f"states: {', '.join(states)}"
            )

    return CompanyConfig(
        name=str(section.get("name") or ""),
        self_entity_keyword=str(section.get("self_entity_keyword") or ""),
        hub_state=hub_state,
        states=states,
        currency=str(section.get("currency") or "INR"),
    )


def _parse_classification(
    raw: Mapping[str, Any], base_dir: Path
) -> ClassificationConfig:
    section = _section(raw, "classification")

    threshold = _number(
        section, "auto_accept_threshold", AUTO_ACCEPT_THRESHOLD, "classification"
    )
    if not 0 <= threshold <= 100:
        raise ValueError(
            "[classification].auto_accept_threshold must be between 0 and 100."
        )

    tolerance = _number(section, "offset_tolerance", 0.01, "classification")
    if tolerance < 0:
        raise ValueError("[classification].offset_tolerance cannot be negative.")

    patterns_raw = section.get("self_adjustment_patterns")
    if patterns_raw is None:
        patterns = DEFAULT_SELF_ADJUSTMENT_PATTERNS
    elif isinstance(patterns_raw, list):
        patterns = tuple(str(p) for p in patterns_raw)
    else:
        raise ValueError(
            "[classification].self_adjustment_patterns must be a list of strings."
        )

    return ClassificationConfig(
        auto_accept_threshold=threshold,
        offset_tolerance=tolerance,
        system_rules_file=_resolve_optional(base_dir, section.get("system_rules_file")),
        ignore_rules_file=_resolve_optional(base_dir, section.get("ignore_rules_file")),
        self_adjustment_patterns=patterns,
    )


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the MIS FinSight application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [company]
        Company name, self-entity keyword, hub state, states and currency.

    [classification]
        Auto-accept threshold of AI suggestions, offset tolerance, optional
        CSV rule files and self-adjustment patterns.

    [database]
        Database engine and SQLite file path of the rule store.

    [oracle]
        Optional connection to a local Ollama server.

    [reconciliation]
        Variance threshold (percent) for balance-sheet reconciliation.

    [display]
        Output mode ("table", "csv" or "both") and decimals.

    [logging]
        Root log level.

    Every section is optional. All file paths in the TOML are resolved
    relative to the directory of the TOML file itself.

    Parameters
    ----------
    config_path:
        Path to the TOML configuration file. Defaults to
        ``mis_finsight_config.toml`` in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If a value is invalid.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILE).resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Company and classification
    company = _parse_company(raw)
    classification = _parse_classification(raw, base_dir)

    # 2) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/mis_finsight.sqlite"
    database_config = DatabaseConfig(
        engine=db_engine, path=(base_dir / str(db_path_raw)).resolve()
    )

    # 3) Oracle section
    oracle_section = _section(raw, "oracle")
    oracle = OracleConfig(
        enabled=bool(oracle_section.get("enabled", False)),
        base_url=str(oracle_section.get("base_url") or OLLAMA_BASE_URL),
        model=str(oracle_section.get("model") or DEFAULT_MODEL),
        timeout=_number(oracle_section, "timeout", DEFAULT_TIMEOUT, "oracle"),
    )

    # 4) Reconciliation
    reconciliation_section = _section(raw, "reconciliation")
    threshold_pct = _number(
        reconciliation_section, "threshold_pct", DEFAULT_THRESHOLD_PCT, "reconciliation"
    )
    if threshold_pct <= 0:
        raise ValueError("[reconciliation].threshold_pct must be positive.")

    # 5) Display and logging
    display_section = _section(raw, "display")
    display_mode = str(display_section.get("mode", "table"))
    if display_mode not in {"table", "csv", "both"}:
        raise ValueError(
            f"Invalid [display].mode {display_mode!r}, expected table, csv or both."
        )
    try:
        decimals = int(display_section.get("decimals", 2))
    except (TypeError, ValueError):
        decimals = 2

    logging_section = _section(raw, "logging")
    log_level = str(logging_section.get("level", "WARNING")).upper()

    return AppConfig(
        company=company,
        classification=classification,
        database=database_config,
        oracle=oracle,
        reconciliation_threshold_pct=threshold_pct,
        display_mode=display_mode,
        decimals=decimals,
        log_level=log_level,
    )


def load_run_manifest(manifest_path: str) -> list[PeriodInputs]:
    """
    Load a run manifest listing the input files of each period.

    Expected layout::

        [[periods]]
        period = "2024-04"

        [periods.states.UP]
        ledger = "2024-04/up_journal.csv"
        sales = "2024-04/up_sales.csv"
        snapshot = "2024-04/up_balance_sheet.csv"

    File paths are resolved relative to the manifest's directory.

    Returns
    -------
    list[PeriodInputs]
        One entry per period, sorted chronologically.

    Raises
    ------
    FileNotFoundError
        If the manifest or one of the listed files does not exist.
    ValueError
        If a period key is invalid or listed twice.
    """
    manifest_file = Path(manifest_path).resolve()
    raw = _load_toml(manifest_file)
    base_dir = manifest_file.parent

    periods_raw = raw.get("periods") or []
    if not isinstance(periods_raw, list) or not periods_raw:
        raise ValueError(f"Manifest {manifest_file} must define at least one [[periods]].")

    result: list[PeriodInputs] = []
    seen: set[str] = set()
    for block in periods_raw:
        if not isinstance(block, Mapping) or "period" not in block:
            raise ValueError(f"Every [[periods]] entry in {manifest_file} needs a 'period'.")
        period = MISPeriod.from_key(str(block["period"]))
        if period.key in seen:
            raise ValueError(f"Period {period.key} is listed twice in {manifest_file}.")
        seen.add(period.key)

        states_raw = block.get("states") or {}
        if not isinstance(states_raw, Mapping):
            raise ValueError(f"[periods.states] of {period.key} must be a table.")

        states: list[StateInputs] = []
        for state, files in states_raw.items():
            if not isinstance(files, Mapping):
                raise ValueError(f"Inputs of {state} for {period.key} must be a table.")
            paths = {
                kind: _resolve_optional(base_dir, files.get(kind))
                for kind in ("ledger", "sales", "snapshot")
            }
            for kind, path in paths.items():
                if path is not None and not path.is_file():
                    raise FileNotFoundError(
                        f"{kind.capitalize()} file for {state} {period.key} not found: {path}"
                    )
            states.append(StateInputs(state=str(state), **paths))

        result.append(PeriodInputs(period=period, states=tuple(states)))

    return sorted(result, key=lambda p: p.period)
