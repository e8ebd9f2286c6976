"""Risk management data models.

RiskConfig, risk model variants, AccountState, Position, and ExposureSnapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import StrEnum
from typing import ClassVar

from src.risk.errors import ConfigurationError


class Direction(StrEnum):
    LONG = "long"
    SHORT = "short"


class RiskModelKind(StrEnum):
    FIXED_PERCENT = "fixed_percent"
    KELLY = "kelly"
    VOLATILITY = "volatility"
    MARTINGALE = "martingale"
    ANTI_MARTINGALE = "anti_martingale"


# --- Risk model variants (one per model, each carrying only its own inputs) ---


@dataclass(frozen=True)
class FixedPercent:
    kind: ClassVar[RiskModelKind] = RiskModelKind.FIXED_PERCENT


@dataclass(frozen=True)
class Kelly:
    kind: ClassVar[RiskModelKind] = RiskModelKind.KELLY

    win_rate: float = 0.55
    win_loss_ratio: float = 200.0 / 150.0  # avg win / avg loss


@dataclass(frozen=True)
class VolatilityScaled:
    kind: ClassVar[RiskModelKind] = RiskModelKind.VOLATILITY

    reference_volatility_pct: float = 1.0


@dataclass(frozen=True)
class Martingale:
    kind: ClassVar[RiskModelKind] = RiskModelKind.MARTINGALE


@dataclass(frozen=True)
class AntiMartingale:
    kind: ClassVar[RiskModelKind] = RiskModelKind.ANTI_MARTINGALE


RiskModel = FixedPercent | Kelly | VolatilityScaled | Martingale | AntiMartingale


def risk_model_from_name(
    name: str,
    win_rate: float = 0.55,
    win_loss_ratio: float = 200.0 / 150.0,
    reference_volatility_pct: float = 1.0,
) -> RiskModel:
    """Build a risk model variant from its config name (case-insensitive)."""
    try:
        kind = RiskModelKind(name.strip().lower().replace("-", "_"))
    except ValueError:
        raise ConfigurationError(f"unknown risk model: {name!r}") from None

    if kind == RiskModelKind.KELLY:
        return Kelly(win_rate=win_rate, win_loss_ratio=win_loss_ratio)
    if kind == RiskModelKind.VOLATILITY:
        return VolatilityScaled(reference_volatility_pct=reference_volatility_pct)
    if kind == RiskModelKind.MARTINGALE:
        return Martingale()
    if kind == RiskModelKind.ANTI_MARTINGALE:
        return AntiMartingale()
    return FixedPercent()


_DISTANCE_FIELDS = (
    "default_stop_loss_points",
    "default_take_profit_points",
    "trailing_stop_points",
    "trailing_activation_points",
    "break_even_activation_points",
    "partial_close_activation_points",
)


@dataclass(frozen=True)
class RiskConfig:
    """Per-session risk parameters. Replace fields via with_changes(), never in place."""

    risk_percent: float = 1.0
    use_fixed_lot_size: bool = False
    fixed_lot_size: float = 0.01
    risk_model: RiskModel = FixedPercent()

    default_stop_loss_points: float = 200.0
    default_take_profit_points: float = 0.0
    risk_reward_ratio: float = 2.0
    use_atr_stop_loss: bool = False
    atr_period: int = 14
    atr_multiplier: float = 1.5

    use_trailing_stop: bool = True
    trailing_stop_points: float = 150.0
    trailing_activation_points: float = 200.0
    use_break_even: bool = True
    break_even_activation_points: float = 100.0
    use_partial_close: bool = False
    partial_close_percent: float = 50.0
    partial_close_activation_points: float = 300.0
    max_holding_minutes: int = 0

    max_drawdown_pct: float = 10.0
    max_open_positions: int = 3
    signal_threshold: float = 0.5

    def validate(self) -> None:
        """Raise ConfigurationError if any bound is violated."""
        errors: list[str] = []
        if not 0 < self.risk_percent <= 100:
            errors.append(f"risk_percent={self.risk_percent} not in (0, 100]")
        if not 0 < self.max_drawdown_pct <= 100:
            errors.append(f"max_drawdown_pct={self.max_drawdown_pct} not in (0, 100]")
        for name in _DISTANCE_FIELDS:
            if getattr(self, name) < 0:
                errors.append(f"{name}={getattr(self, name)} < 0")
        if self.use_fixed_lot_size and self.fixed_lot_size <= 0:
            errors.append(f"fixed_lot_size={self.fixed_lot_size} <= 0")
        if not 0 < self.partial_close_percent <= 100:
            errors.append(f"partial_close_percent={self.partial_close_percent} not in (0, 100]")
        if self.risk_reward_ratio < 0:
            errors.append(f"risk_reward_ratio={self.risk_reward_ratio} < 0")
        if self.use_atr_stop_loss and (self.atr_period <= 0 or self.atr_multiplier <= 0):
            errors.append("ATR stop enabled with non-positive period/multiplier")
        if self.max_holding_minutes < 0:
            errors.append(f"max_holding_minutes={self.max_holding_minutes} < 0")
        if self.max_open_positions < 1:
            errors.append(f"max_open_positions={self.max_open_positions} < 1")
        if errors:
            raise ConfigurationError("; ".join(errors))

    def with_changes(self, **changes) -> RiskConfig:
        """Return a validated copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(f"unknown config field(s): {sorted(unknown)}")
        updated = replace(self, **changes)
        updated.validate()
        return updated


@dataclass(frozen=True)
class AccountState:
    balance: float
    equity: float

    @property
    def drawdown_pct(self) -> float:
        """(balance - equity) / balance × 100; 0 when balance <= 0."""
        if self.balance <= 0:
            return 0.0
        return (self.balance - self.equity) / self.balance * 100


@dataclass(frozen=True)
class Position:
    """One open trade as reported by the gateway's book of record."""

    id: str
    symbol: str
    direction: Direction
    entry_price: float
    stop_price: float  # 0 = 未設定
    size: float
    open_time: datetime
    take_profit: float = 0.0  # 0 = 未設定
    initial_size: float | None = None  # None = unknown (treated as never reduced)

    @property
    def has_stop(self) -> bool:
        return self.stop_price != 0

    @property
    def is_long(self) -> bool:
        return self.direction == Direction.LONG


@dataclass(frozen=True)
class ExposureSnapshot:
    """Aggregate risk across open positions, rebuilt from scratch every cycle."""

    total_risk_money: float = 0.0
    drawdown_pct: float = 0.0
    balance: float = 0.0
    equity: float = 0.0
    position_count: int = 0
    unprotected_count: int = 0  # stop 無し (risk 0 として集計)
