"""Market data snapshot: one read of instrument metadata, quotes and ATR per cycle.

Every sizing and rule decision within a cycle uses the same InstrumentMetrics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Protocol

from src.risk.errors import DataUnavailable

logger = logging.getLogger(__name__)

DEFAULT_MIN_LOT = 0.01
DEFAULT_MAX_LOT = 100.0
DEFAULT_LOT_STEP = 0.01


@dataclass(frozen=True)
class InstrumentMetrics:
    """Read-only per-cycle snapshot of one instrument."""

    symbol: str
    tick_size: float
    tick_value: float  # money per tick per 1 lot
    point: float  # smallest quoted increment
    min_lot: float
    max_lot: float
    lot_step: float
    bid: float
    ask: float
    atr: float | None = None  # price units; None = unavailable this cycle

    @property
    def money_per_point(self) -> float:
        """Monetary value of a one-point move for 1 lot. <= 0 means unusable."""
        if self.tick_size <= 0:
            return 0.0
        return self.tick_value * self.point / self.tick_size

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2

    def lot_bounds(self) -> tuple[float, float, float]:
        """(min, max, step) with degenerate metadata replaced by defaults."""
        min_lot = self.min_lot if self.min_lot > 0 else DEFAULT_MIN_LOT
        max_lot = self.max_lot if self.max_lot > 0 else DEFAULT_MAX_LOT
        step = self.lot_step if self.lot_step > 0 else DEFAULT_LOT_STEP
        return min_lot, max_lot, step

    def price_to_points(self, distance: float) -> float:
        if self.point <= 0:
            return 0.0
        return distance / self.point


class MarketDataSource(Protocol):
    """Read-only market/account data consumed by the controller."""

    def get_account_balance(self) -> float: ...

    def get_account_equity(self) -> float: ...

    def get_instrument_metrics(self, symbol: str) -> InstrumentMetrics: ...

    def get_indicator(self, symbol: str, kind: str, period: int) -> float: ...


def take_snapshot(
    source: MarketDataSource,
    symbol: str,
    atr_period: int = 14,
) -> InstrumentMetrics:
    """Read metrics + ATR once. Raises DataUnavailable if the quote is missing.

    ATR failure is not fatal: the snapshot carries atr=None and ATR-dependent
    computations skip themselves for this cycle.
    """
    try:
        metrics = source.get_instrument_metrics(symbol)
    except DataUnavailable:
        raise
    except Exception as e:
        raise DataUnavailable(f"instrument metrics for {symbol}: {e}") from e

    if metrics.bid <= 0 or metrics.ask <= 0:
        raise DataUnavailable(f"no quote for {symbol} (bid={metrics.bid} ask={metrics.ask})")

    atr: float | None = None
    try:
        value = source.get_indicator(symbol, "atr", atr_period)
        if value is not None and value > 0:
            atr = float(value)
        else:
            logger.debug("ATR(%d) for %s not positive: %s", atr_period, symbol, value)
    except Exception:
        logger.warning("ATR(%d) unavailable for %s, skipping ATR rules", atr_period, symbol)

    return replace(metrics, atr=atr)
