"""Data models for the SQLite store.

Dataclasses only, no DB access.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ActionRecord:
    id: int
    cycle_id: str
    symbol: str
    position_id: str | None
    rule: str  # 'trailing_stop'|'break_even'|'partial_close'|'timed_exit'|'entry'
    action: str  # 'modify'|'partial_close'|'close'|'open'
    success: bool
    reason: str
    stop_price: float | None
    take_profit: float | None
    volume: float | None
    created_at: str


@dataclass
class ActionCounts:
    """Per-rule success/failure counts for the statistics report."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    by_rule: dict[str, int] = field(default_factory=dict)
