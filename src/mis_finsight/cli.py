# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for MIS FinSight.

This module wires together the main building blocks of MIS FinSight:

- global configuration (company, classification, database, oracle,
  display options),
- the rule store (SQLite) and optional CSV rule files,
- input readers (ledgers, sales registers, balance-sheet snapshots),
- the MIS engine, multi-period combination and reconciliation,
- view helpers (statement and revenue tables).

The CLI is intentionally thin: it does not implement any accounting logic
itself. It orchestrates the underlying modules based on command-line
arguments and configuration files.


Commands
--------

- ``report --manifest PATH [--combine] [--view ...] [--export-dir DIR]``:
    Build one MIS record per period listed in the run manifest (see
    ``config.load_run_manifest``) and render the MIS statement, revenue by
    channel, reconciliation and review queue. With ``--combine``, all
    periods are combined into a single record first.

    Examples:

        python -m mis_finsight.cli report --manifest runs/fy2024.toml
        python -m mis_finsight.cli report --manifest runs/q1.toml --combine

- ``rules list [--origin ORIGIN]``, ``rules add``, ``rules delete RULE_ID``,
  ``rules seed``:
    Inspect and edit classification rules stored in the database. ``seed``
    inserts the bundled system rules and ignore rules into empty tables.

- ``ignore-rules list``, ``ignore-rules add``, ``ignore-rules delete ID``:
    Inspect and edit auto-ignore rules.

Rule sources
------------
A report classifies the ledger with the rules stored in the database, plus
the rules of ``[classification].system_rules_file`` when configured. When
neither provides a system rule, the bundled defaults are used. The same
applies to ignore rules.
"""

import argparse
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .categories import parse_category
from .config import AppConfig, PeriodInputs, load_app_config, load_run_manifest
from .db import (
    NewRule,
    add_ignore_rule,
    add_rule,
    delete_ignore_rule,
    delete_rule,
    increment_usage,
    init_database,
    list_ignore_rules,
    list_rules,
    seed_default_rules,
)
from .engine import MISRecord, build_mis_record
from .io import read_ledger_entries, read_sales_register, read_snapshot
from .models import Diagnostic, LedgerEntry, SalesLineItem
from .multi_periods import combine, combine_state_snapshots, records_to_long_dataframe
from .oracle import OllamaClassificationOracle
from .periods import filter_entries_by_period
from .reconciliation import reconcile
from .rules import (
    DEFAULT_IGNORE_RULES,
    DEFAULT_SYSTEM_RULES,
    MatchKind,
    RuleBook,
    RuleOrigin,
    load_ignore_rules_csv,
    load_rules_csv,
)
from .views import (
    mis_statement_dataframe,
    review_queue_dataframe,
    revenue_by_channel_dataframe,
    stock_transfers_dataframe,
    transactions_dataframe,
)

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m mis_finsight.cli",
        description=(
            "MIS FinSight - Multi-state MIS reporting application for SMBs. "
            "Classifies ledgers, aggregates sales registers by channel and "
            "renders the contribution-margin P&L, reconciled against the "
            "balance sheet."
        ),
    )

    # Generic options
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of mis_finsight and exit.",
    )

    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. "
            "If omitted, 'mis_finsight_config.toml' in the current directory is used."
        ),
    )

    subparsers = ap.add_subparsers(
        dest="command",
        metavar="command",
        help="One of 'report', 'rules', 'ignore-rules'.",
    )

    # ------------------------------------------------------------------
    # report
    # ------------------------------------------------------------------
    report = subparsers.add_parser(
        "report",
        help="Build and render MIS reports for the periods of a run manifest.",
    )
    report.add_argument(
        "--manifest",
        required=True,
        help="Path to the TOML run manifest listing input files per period.",
    )
    report.add_argument(
        "--combine",
        action="store_true",
        help="Combine every period of the manifest into a single MIS record.",
    )
    report.add_argument(
        "--view",
        choices=["simplified", "regular", "detailed"],
        default="regular",
        help=(
            "Level of detail of the MIS statement. "
            "simplified: margin lines only; regular: + cost heads; "
            "detailed: + channels and subcategories."
        ),
    )
    report.add_argument(
        "--display-mode",
        dest="display_mode",
        choices=["table", "csv", "both"],
        help="Override the display.mode setting from the configuration file.",
    )
    report.add_argument(
        "--export-dir",
        dest="export_dir",
        help=(
            "Directory where CSV files are written when the display mode "
            "includes 'csv'. If omitted, 'data/output' is used."
        ),
    )
    report.add_argument(
        "--no-ai",
        dest="no_ai",
        action="store_true",
        help="Disable the AI oracle even if it is enabled in the configuration.",
    )

    # ------------------------------------------------------------------
    # rules
    # ------------------------------------------------------------------
    rules_parser = subparsers.add_parser(
        "rules", help="Inspect and manage classification rules in the database."
    )
    rules_sub = rules_parser.add_subparsers(
        dest="rules_command", metavar="rules-command"
    )

    rules_list = rules_sub.add_parser("list", help="List stored rules.")
    rules_list.add_argument(
        "--origin",
        choices=[o.value for o in RuleOrigin],
        help="Only list rules of this origin.",
    )

    rules_add = rules_sub.add_parser("add", help="Add a classification rule.")
    rules_add.add_argument("--pattern", required=True, help="Pattern to match.")
    rules_add.add_argument(
        "--category",
        required=True,
        help="MIS head: identifier (cogm), label ('E. COGM') or letter (E).",
    )
    rules_add.add_argument("--subcategory", required=True, help="MIS subhead.")
    rules_add.add_argument(
        "--match-kind",
        dest="match_kind",
        choices=[k.value for k in MatchKind],
        default=MatchKind.REGEX.value,
    )
    rules_add.add_argument("--priority", type=int, default=100)
    rules_add.add_argument(
        "--origin",
        choices=[o.value for o in RuleOrigin],
        default=RuleOrigin.USER.value,
    )

    rules_delete = rules_sub.add_parser("delete", help="Delete a rule by id.")
    rules_delete.add_argument("rule_id", type=int)

    rules_sub.add_parser(
        "seed", help="Insert the bundled default rules into empty tables."
    )

    # ------------------------------------------------------------------
    # ignore-rules
    # ------------------------------------------------------------------
    ignore_parser = subparsers.add_parser(
        "ignore-rules", help="Inspect and manage auto-ignore rules."
    )
    ignore_sub = ignore_parser.add_subparsers(
        dest="ignore_command", metavar="ignore-command"
    )
    ignore_sub.add_parser("list", help="List stored ignore rules.")
    ignore_add = ignore_sub.add_parser("add", help="Add an ignore rule.")
    ignore_add.add_argument("--pattern", required=True)
    ignore_add.add_argument("--reason", required=True)
    ignore_delete = ignore_sub.add_parser("delete", help="Delete an ignore rule.")
    ignore_delete.add_argument("rule_id", type=int)

    return ap


# ---------------------------------------------------------------------------
# Report pipeline
# ---------------------------------------------------------------------------


def _load_rule_book(config: AppConfig) -> RuleBook:
    """Assemble the rule book from the database, optional CSVs and defaults."""
    rules = list_rules(config.database)
    if config.classification.system_rules_file is not None:
        rules.extend(
            load_rules_csv(config.classification.system_rules_file, RuleOrigin.SYSTEM)
        )
    if not any(r.origin is RuleOrigin.SYSTEM for r in rules):
        rules.extend(DEFAULT_SYSTEM_RULES)

    ignore_rules = list_ignore_rules(config.database)
    if config.classification.ignore_rules_file is not None:
        ignore_rules.extend(
            load_ignore_rules_csv(config.classification.ignore_rules_file)
        )
    if not ignore_rules:
        ignore_rules.extend(DEFAULT_IGNORE_RULES)

    return RuleBook.build(rules, ignore_rules)


def _build_period_record(
    inputs: PeriodInputs,
    config: AppConfig,
    rule_book: RuleBook,
    oracle: Optional[OllamaClassificationOracle],
) -> MISRecord:
    """Read the input files of one period and build its MIS record."""
    ledger: list[LedgerEntry] = []
    sales: dict[str, list[SalesLineItem]] = {}
    snapshots = []
    diagnostics: list[Diagnostic] = []

    for state_inputs in inputs.states:
        if state_inputs.ledger is not None:
            entries, diags = read_ledger_entries(state_inputs.ledger, state_inputs.state)
            in_period = filter_entries_by_period(entries, inputs.period)
            if len(in_period) != len(entries):
                logger.info(
                    "Dropped %d ledger row(s) of %s dated outside %s.",
                    len(entries) - len(in_period),
                    state_inputs.state,
                    inputs.period.label,
                )
            ledger.extend(in_period)
            diagnostics.extend(diags)
        if state_inputs.sales is not None:
            items, diags = read_sales_register(
                state_inputs.sales,
                state_inputs.state,
                config.company.self_entity_keyword,
            )
            sales[state_inputs.state] = items
            diagnostics.extend(diags)
        if state_inputs.snapshot is not None:
            snapshots.append(read_snapshot(state_inputs.snapshot))

    record = build_mis_record(
        inputs.period,
        ledger,
        sales,
        rule_book,
        snapshot=combine_state_snapshots(snapshots),
        settings=config.engine_settings(),
        oracle=oracle,
    )
    if diagnostics:
        record = replace(record, diagnostics=(*diagnostics, *record.diagnostics))
    return record


def _print_section(title: str, df: pd.DataFrame) -> None:
    print()
    print(f"=== {title} ===")
    if df.empty:
        print("(none)")
    else:
        print(df.to_string(index=False))


def _render_record(
    record: MISRecord,
    config: AppConfig,
    view: str,
    display_mode: str,
    output_dir: Path,
    timestamp: str,
) -> None:
    decimals = config.decimals
    statement = mis_statement_dataframe(record, view=view, decimals=decimals)
    revenue = revenue_by_channel_dataframe(record.revenue, decimals=decimals)
    transfers = stock_transfers_dataframe(record.revenue, decimals=decimals)
    review = review_queue_dataframe(record.transactions)

    reconciliation_df = None
    if record.snapshot is not None:
        result = reconcile(
            record, threshold_pct=config.reconciliation_threshold_pct
        )
        reconciliation_df = result.to_dataframe(decimals=decimals)
        for diag in result.diagnostics():
            logger.warning(diag.message)

    if display_mode in {"table", "both"}:
        company = config.company.name or "MIS"
        print()
        print(f"##### {company} - {record.label} ({', '.join(record.states)}) #####")
        _print_section("MIS statement", statement)
        _print_section("Revenue by channel", revenue)
        if not transfers.empty:
            _print_section("Stock transfers", transfers)
        if reconciliation_df is not None:
            _print_section("Balance-sheet reconciliation", reconciliation_df)
        print()
        print(
            f"Entries: {len(record.transactions)} | "
            f"needs review: {record.needs_review_count} | "
            f"auto-ignored: {record.auto_ignored_count} | "
            f"diagnostics: {len(record.diagnostics)}"
        )
        if not review.empty:
            _print_section("Review queue", review)

    if display_mode in {"csv", "both"}:
        output_dir.mkdir(parents=True, exist_ok=True)
        tag = record.period_key.replace("..", "_to_")
        outputs = {
            "mis_statement": statement,
            "revenue_by_channel": revenue,
            "transactions": transactions_dataframe(record.transactions),
            "review_queue": review,
        }
        if reconciliation_df is not None:
            outputs["reconciliation"] = reconciliation_df
        for name, df in outputs.items():
            path = output_dir / f"{name}_{tag}_{timestamp}.csv"
            df.to_csv(path, index=False)
            print(f"Wrote {path} ({len(df)} rows)")


def _handle_report(args: argparse.Namespace, config: AppConfig) -> None:
    """Handle the 'report' subcommand."""
    periods = load_run_manifest(args.manifest)
    rule_book = _load_rule_book(config)
    for err in rule_book.errors:
        print(f"Warning: skipped rule {err.pattern!r}: {err.message}")

    oracle = None
    if config.oracle.enabled and not args.no_ai:
        oracle = OllamaClassificationOracle(
            base_url=config.oracle.base_url,
            model=config.oracle.model,
            timeout=config.oracle.timeout,
        )

    records = []
    for inputs in periods:
        record = _build_period_record(inputs, config, rule_book, oracle)
        increment_usage(config.database, record.rule_hits)
        records.append(record)

    display_mode = args.display_mode or config.display_mode
    output_dir = Path(args.export_dir) if args.export_dir else Path("data/output")
    timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")

    to_render = [combine(records)] if args.combine else records
    for record in to_render:
        _render_record(record, config, args.view, display_mode, output_dir, timestamp)

    if len(records) > 1 and display_mode in {"csv", "both"}:
        trends = records_to_long_dataframe(records)
        path = output_dir / f"trends_{timestamp}.csv"
        trends.to_csv(path, index=False)
        print(f"Wrote {path} ({len(trends)} rows)")


# ---------------------------------------------------------------------------
# Rule store commands
# ---------------------------------------------------------------------------


def _handle_rules(
    args: argparse.Namespace, config: AppConfig, parser: argparse.ArgumentParser
) -> None:
    """Handle the 'rules' subcommands."""
    subcmd = getattr(args, "rules_command", None)

    if subcmd == "list":
        origin = RuleOrigin(args.origin) if args.origin else None
        rules = list_rules(config.database, origin)
        if not rules:
            print("No rules stored. Use 'rules seed' to load the defaults.")
            return
        df = pd.DataFrame(
            [
                {
                    "id": r.rule_id,
                    "origin": r.origin.value,
                    "priority": r.priority,
                    "match_kind": r.match_kind.value,
                    "pattern": r.pattern,
                    "category": r.category.value,
                    "subcategory": r.subcategory,
                    "times_used": r.times_used,
                }
                for r in rules
            ]
        )
        print(df.to_string(index=False))
    elif subcmd == "add":
        category = parse_category(args.category)
        if category is None:
            parser.error(f"Unknown category: {args.category!r}")
        try:
            rule = add_rule(
                config.database,
                NewRule(
                    pattern=args.pattern,
                    category=category,
                    subcategory=args.subcategory,
                    origin=RuleOrigin(args.origin),
                    match_kind=MatchKind(args.match_kind),
                    priority=args.priority,
                ),
            )
        except ValueError as exc:
            parser.error(str(exc))
        print(f"Added rule #{rule.rule_id}: {rule.pattern!r} -> {rule.subcategory}")
    elif subcmd == "delete":
        if delete_rule(config.database, args.rule_id):
            print(f"Deleted rule #{args.rule_id}.")
        else:
            print(f"Rule #{args.rule_id} not found.")
    elif subcmd == "seed":
        rules_count, ignore_count = seed_default_rules(config.database)
        print(f"Seeded {rules_count} rule(s) and {ignore_count} ignore rule(s).")
    else:
        print(
            "No rules subcommand specified. "
            "Available subcommands are: 'list', 'add', 'delete', 'seed'."
        )


def _handle_ignore_rules(
    args: argparse.Namespace, config: AppConfig, parser: argparse.ArgumentParser
) -> None:
    """Handle the 'ignore-rules' subcommands."""
    subcmd = getattr(args, "ignore_command", None)

    if subcmd == "list":
        rules = list_ignore_rules(config.database)
        if not rules:
            print("No ignore rules stored.")
            return
        df = pd.DataFrame(
            [{"id": r.rule_id, "pattern": r.pattern, "reason": r.reason} for r in rules]
        )
        print(df.to_string(index=False))
    elif subcmd == "add":
        try:
            rule = add_ignore_rule(config.database, args.pattern, args.reason)
        except ValueError as exc:
            parser.error(str(exc))
        print(f"Added ignore rule #{rule.rule_id}: {rule.pattern!r} ({rule.reason})")
    elif subcmd == "delete":
        if delete_ignore_rule(config.database, args.rule_id):
            print(f"Deleted ignore rule #{args.rule_id}.")
        else:
            print(f"Ignore rule #{args.rule_id} not found.")
    else:
        print(
            "No ignore-rules subcommand specified. "
            "Available subcommands are: 'list', 'add', 'delete'."
        )


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the MIS FinSight CLI.

    Parses command-line arguments, loads the application configuration,
    configures logging, initializes the rule store and dispatches to the
    requested command.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"mis_finsight version {__version__}")
        return

    if args.command is None:
        parser.print_help()
        return

    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    init_database(config.database)

    if args.command == "report":
        try:
            _handle_report(args, config)
        except (FileNotFoundError, ValueError) as exc:
            parser.error(str(exc))
    elif args.command == "rules":
        _handle_rules(args, config, parser)
    elif args.command == "ignore-rules":
        _handle_ignore_rules(args, config, parser)


if __name__ == "__main__":
    main()
