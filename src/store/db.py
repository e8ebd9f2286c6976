"""SQLite journal of every gateway request the controller makes."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from src.store.models import ActionCounts, ActionRecord
from src.store.schema import DEFAULT_DB_PATH, _connect

__all__ = [
    "DEFAULT_DB_PATH",
    "_connect",
    "get_action_counts",
    "get_actions",
    "log_action",
]


def log_action(
    *,
    symbol: str,
    rule: str,
    action: str,
    success: bool,
    position_id: str | None = None,
    reason: str = "",
    stop_price: float | None = None,
    take_profit: float | None = None,
    volume: float | None = None,
    cycle_id: str = "",
    db_path: Path | str = DEFAULT_DB_PATH,
) -> int:
    """Insert one action row and return its id."""
    now = datetime.now(timezone.utc).isoformat()
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            """INSERT INTO risk_actions
               (cycle_id, symbol, position_id, rule, action, success, reason,
                stop_price, take_profit, volume, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                cycle_id,
                symbol,
                position_id,
                rule,
                action,
                int(success),
                reason,
                stop_price,
                take_profit,
                volume,
                now,
            ),
        )
        conn.commit()
        return cur.lastrowid  # type: ignore[return-value]
    finally:
        conn.close()


def get_actions(
    position_id: str | None = None,
    rule: str | None = None,
    limit: int | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[ActionRecord]:
    """Return journal rows (newest first), optionally filtered."""
    where: list[str] = []
    params: list = []
    if position_id is not None:
        where.append("position_id = ?")
        params.append(position_id)
    if rule is not None:
        where.append("rule = ?")
        params.append(rule)

    sql = "SELECT * FROM risk_actions"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    conn = _connect(db_path)
    try:
        rows = conn.execute(sql, params).fetchall()
        return [ActionRecord(**{**dict(r), "success": bool(r["success"])}) for r in rows]
    finally:
        conn.close()


def get_action_counts(
    since: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> ActionCounts:
    """Aggregate success/failure counts, optionally since an ISO timestamp."""
    sql = "SELECT rule, success, COUNT(*) AS n FROM risk_actions"
    params: list = []
    if since:
        sql += " WHERE created_at >= ?"
        params.append(since)
    sql += " GROUP BY rule, success"

    conn = _connect(db_path)
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()

    counts = ActionCounts()
    for r in rows:
        n = r["n"]
        counts.total += n
        if r["success"]:
            counts.succeeded += n
        else:
            counts.failed += n
        counts.by_rule[r["rule"]] = counts.by_rule.get(r["rule"], 0) + n
    return counts
