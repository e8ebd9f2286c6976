"""Exposure aggregation: total money at risk and drawdown, recomputed every cycle.

Positions without a protective stop contribute 0 to total risk. This
undercounts tail risk; unprotected_count reports how many such positions exist.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from src.market.snapshot import InstrumentMetrics
from src.risk.models import AccountState, ExposureSnapshot, Position

logger = logging.getLogger(__name__)


def position_risk_money(position: Position, metrics: InstrumentMetrics) -> float:
    """|entry - stop| in points × money-per-point × size. 0 if no stop is set."""
    if not position.has_stop:
        return 0.0
    risk_points = metrics.price_to_points(abs(position.entry_price - position.stop_price))
    return risk_points * metrics.money_per_point * position.size


def compute_exposure(
    positions: Iterable[Position],
    metrics: InstrumentMetrics,
    account: AccountState,
) -> ExposureSnapshot:
    """Build a fresh ExposureSnapshot for the managed symbol."""
    total_risk = 0.0
    count = 0
    unprotected = 0

    for pos in positions:
        if pos.symbol != metrics.symbol:
            continue
        count += 1
        if not pos.has_stop:
            unprotected += 1
            continue
        total_risk += position_risk_money(pos, metrics)

    if unprotected:
        logger.debug("%d position(s) without stop on %s (risk counted as 0)", unprotected, metrics.symbol)

    return ExposureSnapshot(
        total_risk_money=total_risk,
        drawdown_pct=account.drawdown_pct,
        balance=account.balance,
        equity=account.equity,
        position_count=count,
        unprotected_count=unprotected,
    )
