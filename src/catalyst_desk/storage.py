# src/catalyst_desk/storage.py
from __future__ import annotations

import pathlib
import sqlite3
from datetime import datetime
from typing import Optional

from .config import get_settings
from .time_utils import ensure_utc, parse_ts


def _ensure_dir(p: str):
    if p == ":memory:":
        return
    pathlib.Path(p).parent.mkdir(parents=True, exist_ok=True)


def connect(db_path: str | None = None) -> sqlite3.Connection:
    path = db_path or get_settings().db_path
    _ensure_dir(path)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA busy_timeout=4000;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def ts(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision UTC timestamp; lexicographic order matches time order."""
    if dt is None:
        return None
    return ensure_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")


def from_ts(value: Optional[str]) -> Optional[datetime]:
    return parse_ts(value)


def migrate(conn: sqlite3.Connection) -> None:
    """Create all catalyst tables if missing. Safe to run repeatedly."""
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS catalyst_signals (
                id TEXT PRIMARY KEY,
                keyword TEXT NOT NULL,
                ticker TEXT,
                headline TEXT NOT NULL,
                source TEXT,
                published_at TEXT,
                sentiment TEXT NOT NULL,
                impact_type TEXT NOT NULL,
                confidence INTEGER NOT NULL,
                summary TEXT,
                reasoning TEXT,
                is_catalyst INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT,
                acted_at TEXT,
                updated_at TEXT,
                technical TEXT
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_signals_status ON catalyst_signals(status, expires_at)"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS potential_catalysts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                headline TEXT NOT NULL,
                source TEXT,
                signal_id TEXT,
                detected_at TEXT NOT NULL,
                notes TEXT,
                status TEXT NOT NULL DEFAULT 'monitoring',
                watch_criteria TEXT,
                affected_symbols TEXT,
                validation_log TEXT,
                resolved_at TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS suggestions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                action TEXT NOT NULL,
                confidence INTEGER,
                entry_price REAL,
                target_price REAL,
                stop_loss REAL,
                quantity INTEGER,
                allocation_amount REAL,
                min_hold_hours REAL,
                max_hold_days INTEGER,
                trailing_stop INTEGER NOT NULL DEFAULT 0,
                entry_trigger TEXT,
                exit_plan TEXT,
                exit_state TEXT,
                risk_reward REAL,
                rationale TEXT,
                catalyst_id INTEGER REFERENCES potential_catalysts(id),
                signal_id TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TEXT NOT NULL,
                expires_at TEXT,
                reviewed_at TEXT,
                superseded_by INTEGER,
                superseded_reason TEXT
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_suggestions_symbol_status ON suggestions(symbol, status)"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS gate_decisions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                signal_id TEXT,
                symbol TEXT NOT NULL,
                action TEXT NOT NULL,
                rationale TEXT NOT NULL,
                payload TEXT NOT NULL,
                evaluated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS suggestion_transactions (
                suggestion_id INTEGER NOT NULL REFERENCES suggestions(id),
                transaction_id TEXT NOT NULL,
                confidence REAL NOT NULL,
                auto_linked INTEGER NOT NULL DEFAULT 0,
                linked_at TEXT NOT NULL,
                PRIMARY KEY (suggestion_id, transaction_id)
            )
            """
        )
        _add_missing_columns(conn, "catalyst_signals", {"technical": "TEXT"})
        _add_missing_columns(
            conn,
            "potential_catalysts",
            {
                "status": "TEXT NOT NULL DEFAULT 'monitoring'",
                "watch_criteria": "TEXT",
                "affected_symbols": "TEXT",
                "validation_log": "TEXT",
                "resolved_at": "TEXT",
            },
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_potential_status ON potential_catalysts(status)"
        )


def _add_missing_columns(conn: sqlite3.Connection, table: str, columns: dict) -> None:
    """Bring tables created by older versions up to the current schema."""
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
    for name, decl in columns.items():
        if name not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
