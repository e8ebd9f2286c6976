"""Shared test helpers. Import in test files: from tests.helpers import make_position."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from src.connectors.gateway import GatewayResult
from src.market.snapshot import InstrumentMetrics
from src.risk.models import Direction, ExposureSnapshot, Position

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def make_metrics(**overrides) -> InstrumentMetrics:
    """XAUUSD-like metrics: point 0.01, 1.0 money per point per lot."""
    defaults = {
        "symbol": "XAUUSD",
        "tick_size": 0.01,
        "tick_value": 1.0,
        "point": 0.01,
        "min_lot": 0.01,
        "max_lot": 100.0,
        "lot_step": 0.01,
        "bid": 2000.00,
        "ask": 2000.20,
        "atr": None,
    }
    defaults.update(overrides)
    return InstrumentMetrics(**defaults)


def make_position(**overrides) -> Position:
    defaults = {
        "id": "1",
        "symbol": "XAUUSD",
        "direction": Direction.LONG,
        "entry_price": 1997.00,
        "stop_price": 0.0,
        "size": 0.5,
        "open_time": T0,
        "take_profit": 0.0,
        "initial_size": None,
    }
    defaults.update(overrides)
    return Position(**defaults)


def make_exposure(balance: float = 10_000.0, equity: float | None = None, **overrides) -> ExposureSnapshot:
    equity = balance if equity is None else equity
    dd = (balance - equity) / balance * 100 if balance > 0 else 0.0
    defaults = {"balance": balance, "equity": equity, "drawdown_pct": dd}
    defaults.update(overrides)
    return ExposureSnapshot(**defaults)


class FakeGateway:
    """Book of record double: applies accepted requests, records every call."""

    def __init__(self, positions: list[Position] | None = None, fail: dict[str, str] | None = None):
        self.positions = {p.id: p for p in positions or []}
        self.fail = fail or {}
        self.calls: list[tuple] = []

    def list_open_positions(self, symbol: str) -> list[Position]:
        return [p for p in self.positions.values() if p.symbol == symbol]

    def submit_order(self, symbol, direction, volume, stop_price, take_profit) -> GatewayResult:
        self.calls.append(("order", symbol, direction, volume, stop_price, take_profit))
        if "order" in self.fail:
            return GatewayResult.rejected(self.fail["order"])
        pid = str(len(self.positions) + 100)
        self.positions[pid] = make_position(
            id=pid,
            symbol=symbol,
            direction=direction,
            size=volume,
            stop_price=stop_price,
            take_profit=take_profit,
            initial_size=volume,
        )
        return GatewayResult.ok(pid)

    def submit_modification(self, position_id, new_stop, new_take_profit) -> GatewayResult:
        self.calls.append(("modify", position_id, new_stop, new_take_profit))
        if "modify" in self.fail:
            return GatewayResult.rejected(self.fail["modify"], position_id)
        pos = self.positions[position_id]
        self.positions[position_id] = replace(pos, stop_price=new_stop, take_profit=new_take_profit)
        return GatewayResult.ok(position_id)

    def submit_partial_close(self, position_id, volume) -> GatewayResult:
        self.calls.append(("partial_close", position_id, volume))
        if "partial_close" in self.fail:
            return GatewayResult.rejected(self.fail["partial_close"], position_id)
        pos = self.positions[position_id]
        self.positions[position_id] = replace(
            pos,
            size=round(pos.size - volume, 8),
            initial_size=pos.initial_size or pos.size,
        )
        return GatewayResult.ok(position_id)

    def submit_close(self, position_id) -> GatewayResult:
        self.calls.append(("close", position_id))
        if "close" in self.fail:
            return GatewayResult.rejected(self.fail["close"], position_id)
        self.positions.pop(position_id, None)
        return GatewayResult.ok(position_id)
