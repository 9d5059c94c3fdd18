# MIS FinSight - Multi-state MIS reporting application for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Rule store for MIS FinSight.

This module provides a small persistence layer for classification rules on
top of SQLite. It is intentionally minimal and focused on the needs of the
rule editor and of the CLI.

Main concepts
-------------
- rules:
    One row per classification rule (user, system or ai-learned) with its
    category, subcategory, match kind, priority and an informational usage
    counter.

- ignore_rules:
    One row per auto-ignore pattern, with the human-readable reason shown
    on ignored entries.

Categories are stored by stable identifier (``CategoryId.value``), never by
display label, so that labels can be renamed without migrating data.

The usage counter (``times_used``) is informational only: it is updated
after a classification run by ``increment_usage`` and never influences
rule evaluation.
"""

import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .categories import CategoryId
from .rules import (
    DEFAULT_IGNORE_RULES,
    DEFAULT_SYSTEM_RULES,
    IgnoreRule,
    MatchKind,
    Rule,
    RuleOrigin,
)

# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for MIS FinSight.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


@dataclass(frozen=True)
class NewRule:
    """
    Data required to create a new classification rule.

    ``category`` is the stable identifier of the MIS head.
    """

    pattern: str
    category: CategoryId
    subcategory: str
    origin: RuleOrigin = RuleOrigin.USER
    match_kind: MatchKind = MatchKind.REGEX
    priority: int = 100
    confidence: float = 100.0


@dataclass(frozen=True)
class RuleUpdate:
    """
    Partial update of an existing rule.

    Only non-None fields are applied.
    """

    pattern: Optional[str] = None
    category: Optional[CategoryId] = None
    subcategory: Optional[str] = None
    match_kind: Optional[MatchKind] = None
    priority: Optional[int] = None
    confidence: Optional[float] = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes if they do not exist yet.

    This function is idempotent and can be called multiple times safely.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS rules (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            pattern      TEXT    NOT NULL,
            category     TEXT    NOT NULL,  -- CategoryId value, e.g. 'cogm'
            subcategory  TEXT    NOT NULL,
            origin       TEXT    NOT NULL,  -- 'user' | 'system' | 'ai-learned'
            match_kind   TEXT    NOT NULL DEFAULT 'regex',
            priority     INTEGER NOT NULL DEFAULT 100,
            confidence   REAL    NOT NULL DEFAULT 100,
            times_used   INTEGER NOT NULL DEFAULT 0,
            created_at   TEXT    NOT NULL,
            updated_at   TEXT
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS ignore_rules (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            pattern     TEXT    NOT NULL,
            reason      TEXT    NOT NULL,
            created_at  TEXT    NOT NULL
        );
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_rules_origin_priority
            ON rules(origin, priority);
        """
    )

    conn.commit()


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


_RULE_COLUMNS = """
    id, pattern, category, subcategory, origin, match_kind,
    priority, confidence, times_used, created_at
"""


def _row_to_rule(row: tuple) -> Rule:
    (
        rule_id,
        pattern,
        category,
        subcategory,
        origin,
        match_kind,
        priority,
        confidence,
        times_used,
        created_at,
    ) = row
    return Rule(
        pattern=pattern,
        category=CategoryId(category),
        subcategory=subcategory,
        origin=RuleOrigin(origin),
        match_kind=MatchKind(match_kind),
        priority=int(priority),
        confidence=float(confidence),
        rule_id=int(rule_id),
        times_used=int(times_used),
        created_at=datetime.fromisoformat(created_at) if created_at else None,
    )


def _validate_rule_text(pattern: Optional[str], subcategory: Optional[str]) -> None:
    if pattern is not None and not pattern.strip():
        raise ValueError("Rule pattern cannot be empty.")
    if subcategory is not None and not subcategory.strip():
        raise ValueError("Rule subcategory cannot be empty.")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file if it does not exist.
    - Creates the ``rules`` and ``ignore_rules`` tables if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


def get_rule_by_id(cfg: DatabaseConfig, rule_id: int) -> Optional[Rule]:
    """Return the rule with the given id, or None if it does not exist."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            f"SELECT {_RULE_COLUMNS} FROM rules WHERE id = ?;",
            (rule_id,),
        )
        row = cur.fetchone()
    finally:
        conn.close()

    return _row_to_rule(row) if row is not None else None


def list_rules(
    cfg: DatabaseConfig, origin: Optional[RuleOrigin] = None
) -> list[Rule]:
    """
    List stored classification rules.

    Parameters
    ----------
    cfg:
        Database configuration.
    origin:
        Optional filter on the rule origin.

    Returns
    -------
    list[Rule]
        Rules ordered by priority, then id (insertion order). The global
        origin order is applied by ``rules.RuleSet`` at evaluation time.
    """
    init_database(cfg)

    query = f"SELECT {_RULE_COLUMNS} FROM rules"
    params: list[object] = []
    if origin is not None:
        query += " WHERE origin = ?"
        params.append(origin.value)
    query += " ORDER BY priority ASC, id ASC;"

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(query, params)
        rows = cur.fetchall()
    finally:
        conn.close()

    return [_row_to_rule(row) for row in rows]


def add_rule(cfg: DatabaseConfig, new_rule: NewRule) -> Rule:
    """
    Insert a new classification rule.

    Raises
    ------
    ValueError
        If the pattern or the subcategory is empty.
    """
    _validate_rule_text(new_rule.pattern, new_rule.subcategory)
    init_database(cfg)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO rules (
                pattern,
                category,
                subcategory,
                origin,
                match_kind,
                priority,
                confidence,
                times_used,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, NULL);
            """,
            (
                new_rule.pattern,
                new_rule.category.value,
                new_rule.subcategory.strip(),
                new_rule.origin.value,
                new_rule.match_kind.value,
                int(new_rule.priority),
                float(new_rule.confidence),
                _now_utc_iso(),
            ),
        )
        rule_id = cur.lastrowid
        conn.commit()
    finally:
        conn.close()

    result = get_rule_by_id(cfg, rule_id)
    if result is None:
        msg = f"Rule #{rule_id} was just inserted but could not be reloaded."
        raise RuntimeError(msg)
    return result


def update_rule(cfg: DatabaseConfig, rule_id: int, update: RuleUpdate) -> Rule:
    """
    Apply a partial update to an existing rule.

    Raises
    ------
    ValueError
        If no fields are provided, if a text field is empty or if the rule
        does not exist.
    """
    _validate_rule_text(update.pattern, update.subcategory)
    init_database(cfg)

    fields: list[str] = []
    params: list[object] = []

    if update.pattern is not None:
        fields.append("pattern = ?")
        params.append(update.pattern)
    if update.category is not None:
        fields.append("category = ?")
        params.append(update.category.value)
    if update.subcategory is not None:
        fields.append("subcategory = ?")
        params.append(update.subcategory.strip())
    if update.match_kind is not None:
        fields.append("match_kind = ?")
        params.append(update.match_kind.value)
    if update.priority is not None:
        fields.append("priority = ?")
        params.append(int(update.priority))
    if update.confidence is not None:
        fields.append("confidence = ?")
        params.append(float(update.confidence))

    if not fields:
        raise ValueError("No fields to update in RuleUpdate.")

    fields.append("updated_at = ?")
    params.append(_now_utc_iso())
    params.append(rule_id)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            f"""
            UPDATE rules
               SET {", ".join(fields)}
             WHERE id = ?;
            """,
            params,
        )
        updated = cur.rowcount
        conn.commit()
    finally:
        conn.close()

    if updated == 0:
        raise ValueError(f"Rule #{rule_id} does not exist.")

    result = get_rule_by_id(cfg, rule_id)
    if result is None:
        msg = f"Rule #{rule_id} was updated but could not be reloaded."
        raise RuntimeError(msg)
    return result


def delete_rule(cfg: DatabaseConfig, rule_id: int) -> bool:
    """Delete a rule. Returns False when no rule had this id."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute("DELETE FROM rules WHERE id = ?;", (rule_id,))
        deleted = cur.rowcount
        conn.commit()
    finally:
        conn.close()

    return deleted > 0


def increment_usage(cfg: DatabaseConfig, hits: Mapping[int, int]) -> None:
    """
    Add classification-run hit counts to the ``times_used`` counters.

    ``hits`` maps a rule id to the number of entries it matched. Unknown
    ids are ignored.
    """
    if not hits:
        return
    init_database(cfg)

    conn = _connect(cfg)
    try:
        conn.executemany(
            "UPDATE rules SET times_used = times_used + ? WHERE id = ?;",
            [(int(count), int(rule_id)) for rule_id, count in hits.items() if count],
        )
        conn.commit()
    finally:
        conn.close()


def list_ignore_rules(cfg: DatabaseConfig) -> list[IgnoreRule]:
    """List stored auto-ignore rules in insertion order."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute("SELECT id, pattern, reason FROM ignore_rules ORDER BY id ASC;")
        rows = cur.fetchall()
    finally:
        conn.close()

    return [
        IgnoreRule(pattern=pattern, reason=reason, rule_id=int(rule_id))
        for rule_id, pattern, reason in rows
    ]


def add_ignore_rule(cfg: DatabaseConfig, pattern: str, reason: str) -> IgnoreRule:
    """
    Insert a new auto-ignore rule.

    Raises
    ------
    ValueError
        If the pattern or the reason is empty.
    """
    if not pattern.strip():
        raise ValueError("Ignore rule pattern cannot be empty.")
    if not reason.strip():
        raise ValueError("Ignore rule reason cannot be empty.")
    init_database(cfg)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO ignore_rules (pattern, reason, created_at)
            VALUES (?, ?, ?);
            """,
            (pattern, reason.strip(), _now_utc_iso()),
        )
        rule_id = cur.lastrowid
        conn.commit()
    finally:
        conn.close()

    return IgnoreRule(pattern=pattern, reason=reason.strip(), rule_id=rule_id)


def delete_ignore_rule(cfg: DatabaseConfig, rule_id: int) -> bool:
    """Delete an auto-ignore rule. Returns False when no rule had this id."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        cur = conn.cursor()
        cur.execute("DELETE FROM ignore_rules WHERE id = ?;", (rule_id,))
        deleted = cur.rowcount
        conn.commit()
    finally:
        conn.close()

    return deleted > 0


def seed_default_rules(cfg: DatabaseConfig) -> tuple[int, int]:
    """
    Insert the bundled system and ignore rules into empty tables.

    A table that already holds rows is left untouched, so calling this
    function twice does not duplicate the defaults.

    Returns
    -------
    tuple[int, int]
        Number of (rules, ignore rules) inserted.
    """
    init_database(cfg)
    now = _now_utc_iso()

    conn = _connect(cfg)
    try:
        cur = conn.cursor()

        rules_inserted = 0
        cur.execute("SELECT COUNT(*) FROM rules;")
        if cur.fetchone()[0] == 0:
            cur.executemany(
                """
                INSERT INTO rules (
                    pattern, category, subcategory, origin, match_kind,
                    priority, confidence, times_used, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, NULL);
                """,
                [
                    (
                        r.pattern,
                        r.category.value,
                        r.subcategory,
                        r.origin.value,
                        r.match_kind.value,
                        r.priority,
                        r.confidence,
                        now,
                    )
                    for r in DEFAULT_SYSTEM_RULES
                ],
            )
            rules_inserted = len(DEFAULT_SYSTEM_RULES)

        ignore_inserted = 0
        cur.execute("SELECT COUNT(*) FROM ignore_rules;")
        if cur.fetchone()[0] == 0:
            cur.executemany(
                """
                INSERT INTO ignore_rules (pattern, reason, created_at)
                VALUES (?, ?, ?);
                """,
                [(r.pattern, r.reason, now) for r in DEFAULT_IGNORE_RULES],
            )
            ignore_inserted = len(DEFAULT_IGNORE_RULES)

        conn.commit()
    finally:
        conn.close()

    return rules_inserted, ignore_inserted
