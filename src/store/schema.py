"""Database schema DDL for the risk action journal."""

from __future__ import annotations

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "data" / "risk_actions.db"

RISK_ACTIONS_SQL = """
CREATE TABLE IF NOT EXISTS risk_actions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_id    TEXT NOT NULL DEFAULT '',
    symbol      TEXT NOT NULL,
    position_id TEXT,
    rule        TEXT NOT NULL,
    action      TEXT NOT NULL,
    success     INTEGER NOT NULL,
    reason      TEXT NOT NULL DEFAULT '',
    stop_price  REAL,
    take_profit REAL,
    volume      REAL,
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_risk_actions_rule ON risk_actions(rule);
"""


def _connect(db_path: Path | str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    conn.executescript(RISK_ACTIONS_SQL)
    return conn
