"""In-memory paper broker: book of record, quotes, bar history and account.

Implements both MarketDataSource and ExecutionGateway so the controller can
run end to end without a live broker (paper / dry-run modes, replay, tests).
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from src.connectors.gateway import GatewayResult
from src.market.indicators import compute_atr
from src.market.snapshot import InstrumentMetrics
from src.risk.errors import DataUnavailable
from src.risk.models import Direction, Position

logger = logging.getLogger(__name__)


@dataclass
class ClosedTrade:
    position_id: str
    direction: Direction
    size: float
    entry_price: float
    exit_price: float
    pnl: float
    reason: str  # 'close'|'partial_close'|'stop'|'take_profit'
    closed_at: datetime


class PaperBroker:
    """Single-symbol simulated broker."""

    def __init__(
        self,
        symbol: str = "XAUUSD",
        balance: float = 10_000.0,
        tick_size: float = 0.01,
        tick_value: float = 1.0,
        point: float = 0.01,
        min_lot: float = 0.01,
        max_lot: float = 100.0,
        lot_step: float = 0.01,
        spread_points: float = 20.0,
    ) -> None:
        self.symbol = symbol
        self.balance = balance
        self.tick_size = tick_size
        self.tick_value = tick_value
        self.point = point
        self.min_lot = min_lot
        self.max_lot = max_lot
        self.lot_step = lot_step
        self.spread_points = spread_points

        self.bid = 0.0
        self.ask = 0.0
        self.now = datetime.now(timezone.utc)
        self.highs: list[float] = []
        self.lows: list[float] = []
        self.closes: list[float] = []

        self.positions: dict[str, Position] = {}
        self.closed_trades: list[ClosedTrade] = []
        self.requests: list[tuple] = []
        # action ('order'|'modify'|'partial_close'|'close') → rejection reason
        self.reject_actions: dict[str, str] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Price feed
    # ------------------------------------------------------------------

    def update_price(self, bid: float, ask: float | None = None, at: datetime | None = None) -> None:
        """Set the current quote and trigger any stop / take-profit it crosses."""
        self.bid = bid
        self.ask = ask if ask is not None else bid + self.spread_points * self.point
        if at is not None:
            self.now = at
        self._check_exits(self.bid, self.bid, self.ask, self.ask)

    def add_bar(
        self,
        at: datetime,
        open_: float,
        high: float,
        low: float,
        close: float,
    ) -> None:
        """Append an OHLC bar (bid prices) and move the quote to its close."""
        self.highs.append(high)
        self.lows.append(low)
        self.closes.append(close)
        spread = self.spread_points * self.point
        self.now = at
        self.bid = close
        self.ask = close + spread
        self._check_exits(low, high, low + spread, high + spread)

    def _check_exits(self, bid_low: float, bid_high: float, ask_low: float, ask_high: float) -> None:
        for pos in list(self.positions.values()):
            if pos.is_long:
                if pos.has_stop and bid_low <= pos.stop_price:
                    self._close(pos, pos.size, pos.stop_price, "stop")
                elif pos.take_profit and bid_high >= pos.take_profit:
                    self._close(pos, pos.size, pos.take_profit, "take_profit")
            else:
                if pos.has_stop and ask_high >= pos.stop_price:
                    self._close(pos, pos.size, pos.stop_price, "stop")
                elif pos.take_profit and ask_low <= pos.take_profit:
                    self._close(pos, pos.size, pos.take_profit, "take_profit")

    # ------------------------------------------------------------------
    # MarketDataSource
    # ------------------------------------------------------------------

    def get_account_balance(self) -> float:
        return self.balance

    def get_account_equity(self) -> float:
        return self.balance + sum(self._unrealized(p) for p in self.positions.values())

    def get_instrument_metrics(self, symbol: str) -> InstrumentMetrics:
        if symbol != self.symbol:
            raise DataUnavailable(f"unknown symbol {symbol}")
        return InstrumentMetrics(
            symbol=self.symbol,
            tick_size=self.tick_size,
            tick_value=self.tick_value,
            point=self.point,
            min_lot=self.min_lot,
            max_lot=self.max_lot,
            lot_step=self.lot_step,
            bid=self.bid,
            ask=self.ask,
        )

    def get_indicator(self, symbol: str, kind: str, period: int) -> float:
        if symbol != self.symbol or kind.lower() != "atr":
            raise DataUnavailable(f"indicator {kind} not available for {symbol}")
        atr = compute_atr(self.highs, self.lows, self.closes, period)
        if atr is None:
            raise DataUnavailable(f"not enough bars for ATR({period}): {len(self.closes)}")
        return atr

    # ------------------------------------------------------------------
    # ExecutionGateway
    # ------------------------------------------------------------------

    def list_open_positions(self, symbol: str) -> list[Position]:
        return [p for p in self.positions.values() if p.symbol == symbol]

    def submit_order(
        self,
        symbol: str,
        direction: Direction,
        volume: float,
        stop_price: float,
        take_profit: float,
    ) -> GatewayResult:
        self.requests.append(("order", symbol, direction, volume, stop_price, take_profit))
        if "order" in self.reject_actions:
            return GatewayResult.rejected(self.reject_actions["order"])
        if symbol != self.symbol:
            return GatewayResult.rejected(f"unknown symbol {symbol}")
        if volume < self.min_lot or volume > self.max_lot:
            return GatewayResult.rejected(f"invalid volume {volume}")
        if self.bid <= 0:
            return GatewayResult.rejected("no quote")

        entry = self.ask if direction == Direction.LONG else self.bid
        pid = str(next(self._ids))
        self.positions[pid] = Position(
            id=pid,
            symbol=symbol,
            direction=direction,
            entry_price=entry,
            stop_price=stop_price,
            size=volume,
            open_time=self.now,
            take_profit=take_profit,
            initial_size=volume,
        )
        logger.info("Paper %s %s %.2f @ %.5f (#%s)", direction, symbol, volume, entry, pid)
        return GatewayResult.ok(pid)

    def submit_modification(self, position_id: str, new_stop: float, new_take_profit: float) -> GatewayResult:
        self.requests.append(("modify", position_id, new_stop, new_take_profit))
        if "modify" in self.reject_actions:
            return GatewayResult.rejected(self.reject_actions["modify"], position_id)
        pos = self.positions.get(position_id)
        if pos is None:
            return GatewayResult.rejected("position not found", position_id)
        # ブローカー同様、現在値の内側の stop は拒否
        if new_stop:
            if pos.is_long and new_stop >= self.bid:
                return GatewayResult.rejected("invalid stops", position_id)
            if not pos.is_long and new_stop <= self.ask:
                return GatewayResult.rejected("invalid stops", position_id)
        self.positions[position_id] = replace(pos, stop_price=new_stop, take_profit=new_take_profit)
        return GatewayResult.ok(position_id)

    def submit_partial_close(self, position_id: str, volume: float) -> GatewayResult:
        self.requests.append(("partial_close", position_id, volume))
        if "partial_close" in self.reject_actions:
            return GatewayResult.rejected(self.reject_actions["partial_close"], position_id)
        pos = self.positions.get(position_id)
        if pos is None:
            return GatewayResult.rejected("position not found", position_id)
        if volume <= 0 or volume > pos.size + 1e-9:
            return GatewayResult.rejected(f"invalid volume {volume}", position_id)
        self._close(pos, volume, self._exit_price(pos), "partial_close")
        return GatewayResult.ok(position_id)

    def submit_close(self, position_id: str) -> GatewayResult:
        self.requests.append(("close", position_id))
        if "close" in self.reject_actions:
            return GatewayResult.rejected(self.reject_actions["close"], position_id)
        pos = self.positions.get(position_id)
        if pos is None:
            return GatewayResult.rejected("position not found", position_id)
        self._close(pos, pos.size, self._exit_price(pos), "close")
        return GatewayResult.ok(position_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _exit_price(self, pos: Position) -> float:
        return self.bid if pos.is_long else self.ask

    def _money_per_point(self) -> float:
        return self.tick_value * self.point / self.tick_size if self.tick_size > 0 else 0.0

    def _pnl(self, pos: Position, exit_price: float, volume: float) -> float:
        diff = exit_price - pos.entry_price if pos.is_long else pos.entry_price - exit_price
        return diff / self.point * self._money_per_point() * volume

    def _unrealized(self, pos: Position) -> float:
        return self._pnl(pos, self._exit_price(pos), pos.size)

    def _close(self, pos: Position, volume: float, exit_price: float, reason: str) -> None:
        pnl = self._pnl(pos, exit_price, volume)
        self.balance += pnl
        self.closed_trades.append(
            ClosedTrade(
                position_id=pos.id,
                direction=pos.direction,
                size=volume,
                entry_price=pos.entry_price,
                exit_price=exit_price,
                pnl=pnl,
                reason=reason,
                closed_at=self.now,
            )
        )
        remaining = round(pos.size - volume, 8)
        if remaining <= 0:
            del self.positions[pos.id]
        else:
            self.positions[pos.id] = replace(pos, size=remaining)
        logger.info("Paper %s #%s %.2f @ %.5f pnl=%.2f", reason, pos.id, volume, exit_price, pnl)
