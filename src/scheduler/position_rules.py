"""Per-position protective rules: trailing stop, break-even, partial close, timed exit.

Each rule is a pure decision function. It looks at one position, the cycle's
InstrumentMetrics and the RiskConfig, and returns the request to make (or None).
Nothing is remembered between cycles; a rule that already fired simply finds
nothing strictly better to do on the next pass.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from src.market.snapshot import InstrumentMetrics
from src.risk.models import Position, RiskConfig
from src.sizing.lot_sizer import floor_to_step

_PRICE_EPS = 1e-9


@dataclass(frozen=True)
class RuleDecision:
    """A gateway request the rule engine wants to make for one position."""

    rule: str  # 'trailing_stop'|'break_even'|'partial_close'|'timed_exit'
    action: str  # 'modify'|'partial_close'|'close'
    position_id: str
    new_stop: float | None = None
    take_profit: float | None = None
    volume: float | None = None
    reason: str = ""


def current_price(position: Position, metrics: InstrumentMetrics) -> float:
    """Exit-side price: bid closes a long, ask closes a short."""
    return metrics.bid if position.is_long else metrics.ask


def profit_points(position: Position, metrics: InstrumentMetrics) -> float:
    """Direction-aware unrealized profit in points."""
    price = current_price(position, metrics)
    diff = price - position.entry_price if position.is_long else position.entry_price - price
    return metrics.price_to_points(diff)


def is_better_stop(position: Position, new_stop: float) -> bool:
    """True if new_stop tightens the current stop (or no stop is set)."""
    if not position.has_stop:
        return True
    if position.is_long:
        return new_stop > position.stop_price + _PRICE_EPS
    return new_stop < position.stop_price - _PRICE_EPS


def evaluate_trailing_stop(
    position: Position,
    metrics: InstrumentMetrics,
    config: RiskConfig,
) -> RuleDecision | None:
    if not config.use_trailing_stop or config.trailing_stop_points <= 0:
        return None
    profit = profit_points(position, metrics)
    if profit < config.trailing_activation_points:
        return None

    distance = config.trailing_stop_points * metrics.point
    price = current_price(position, metrics)
    new_stop = price - distance if position.is_long else price + distance
    if new_stop <= 0 or not is_better_stop(position, new_stop):
        return None

    return RuleDecision(
        rule="trailing_stop",
        action="modify",
        position_id=position.id,
        new_stop=new_stop,
        take_profit=position.take_profit,
        reason=f"profit={profit:.1f}pt trail={config.trailing_stop_points:.1f}pt",
    )


def evaluate_break_even(
    position: Position,
    metrics: InstrumentMetrics,
    config: RiskConfig,
) -> RuleDecision | None:
    if not config.use_break_even:
        return None
    profit = profit_points(position, metrics)
    if profit < config.break_even_activation_points:
        return None
    if not is_better_stop(position, position.entry_price):
        return None

    return RuleDecision(
        rule="break_even",
        action="modify",
        position_id=position.id,
        new_stop=position.entry_price,
        take_profit=position.take_profit,
        reason=f"profit={profit:.1f}pt",
    )


def already_reduced(position: Position) -> bool:
    """True when the book of record shows the position smaller than it opened."""
    if position.initial_size is None:
        return False
    return position.size < position.initial_size - _PRICE_EPS


def evaluate_partial_close(
    position: Position,
    metrics: InstrumentMetrics,
    config: RiskConfig,
) -> RuleDecision | None:
    if not config.use_partial_close:
        return None
    if already_reduced(position):
        return None
    profit = profit_points(position, metrics)
    if profit < config.partial_close_activation_points:
        return None

    min_lot, _, _ = metrics.lot_bounds()
    volume = floor_to_step(position.size * config.partial_close_percent / 100.0, metrics)
    if volume < min_lot - _PRICE_EPS:
        return None

    return RuleDecision(
        rule="partial_close",
        action="partial_close",
        position_id=position.id,
        volume=volume,
        reason=f"profit={profit:.1f}pt close={config.partial_close_percent:.0f}%",
    )


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def evaluate_timed_exit(
    position: Position,
    now: datetime,
    config: RiskConfig,
) -> RuleDecision | None:
    """Full close once holding time >= max_holding_minutes. Ignores profit."""
    if config.max_holding_minutes <= 0:
        return None
    held = as_utc(now) - as_utc(position.open_time)
    if held < timedelta(minutes=config.max_holding_minutes):
        return None

    return RuleDecision(
        rule="timed_exit",
        action="close",
        position_id=position.id,
        reason=f"held={held.total_seconds() / 60:.0f}min max={config.max_holding_minutes}min",
    )
