# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
MIS FinSight
------------

A Python-based MIS (Management Information System) reporting application for
multi-state Small and Medium-sized Businesses. It turns ledger exports into a
standardized Profit & Loss statement broken into layered contribution
margins, reconciled against authoritative balance-sheet figures.

Main capabilities:
- rule-based ledger classification with user/system rule precedence,
- offset-entry detection for self-adjusting marketplace entries,
- optional AI-assisted classification through a local LLM server,
- multi-state, multi-channel revenue aggregation (net of returns),
- the margin waterfall (Gross Margin, CM1, CM2, CM3, EBITDA, EBT, Net Income),
- multi-period combination and balance-sheet reconciliation,
- a SQLite-backed rule store and a command-line interface.

Usage:
    python -m mis_finsight.cli --help
"""

__all__ = ["engine", "classifier", "waterfall", "views", "io"]

__version__ = "0.1.0"
