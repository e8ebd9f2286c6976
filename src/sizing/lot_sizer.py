"""Lot-size policy: risk model → money at risk → lots, quantized to the instrument.

lots = risk_amount / (stop_points × money_per_point), floored to lot_step,
clamped into [min_lot, max_lot].
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from src.market.snapshot import InstrumentMetrics
from src.risk.errors import NoPointValue
from src.risk.models import (
    AntiMartingale,
    ExposureSnapshot,
    Kelly,
    Martingale,
    RiskConfig,
    VolatilityScaled,
)

logger = logging.getLogger(__name__)

KELLY_MIN_FRACTION = 0.01
KELLY_MAX_FRACTION = 0.25
MIN_ATR_STOP_POINTS = 10.0
_STEP_EPS = 1e-9


@dataclass
class SizingResult:
    """Result of lot sizing with the rule that decided it."""

    lots: float
    stop_loss_points: float
    risk_amount: float
    raw_lots: float  # quantize 前
    binding: str  # "fixed_lot" | "drawdown" | "no_point_value" | "no_stop" | "risk_model" | "min_lot" | "max_lot"


def kelly_fraction(win_rate: float, win_loss_ratio: float) -> float:
    """Kelly fraction clamped to [0.01, 0.25]; 0.01 when inputs are non-positive."""
    if win_rate <= 0 or win_loss_ratio <= 0:
        logger.warning(
            "Kelly inputs non-positive (win_rate=%.3f ratio=%.3f), using %.2f",
            win_rate,
            win_loss_ratio,
            KELLY_MIN_FRACTION,
        )
        return KELLY_MIN_FRACTION
    f = win_rate - (1 - win_rate) / win_loss_ratio
    return min(max(f, KELLY_MIN_FRACTION), KELLY_MAX_FRACTION)


def resolve_stop_distance(
    stop_loss_points: float,
    config: RiskConfig,
    metrics: InstrumentMetrics,
) -> float:
    """Caller value if > 0, else default; ATR × multiplier overrides when enabled."""
    distance = stop_loss_points if stop_loss_points > 0 else config.default_stop_loss_points

    if config.use_atr_stop_loss:
        if metrics.atr is None:
            logger.warning("ATR stop enabled but ATR unavailable, using %.1f points", distance)
        else:
            atr_points = metrics.price_to_points(metrics.atr * config.atr_multiplier)
            distance = max(atr_points, MIN_ATR_STOP_POINTS)

    return distance


def quantize_lots(lots: float, metrics: InstrumentMetrics) -> float:
    """Floor to a lot_step multiple, then clamp into [min_lot, max_lot]."""
    min_lot, max_lot, step = metrics.lot_bounds()
    stepped = math.floor(lots / step + _STEP_EPS) * step
    clamped = min(max(stepped, min_lot), max_lot)
    return round(clamped, 8)


def floor_to_step(volume: float, metrics: InstrumentMetrics) -> float:
    """Floor a volume to the lot step without clamping."""
    _, _, step = metrics.lot_bounds()
    return round(math.floor(volume / step + _STEP_EPS) * step, 8)


def require_point_value(metrics: InstrumentMetrics) -> float:
    """Money per point for 1 lot. Raises NoPointValue when non-positive."""
    ppv = metrics.money_per_point
    if ppv <= 0:
        raise NoPointValue(
            f"money per point {ppv} for {metrics.symbol} "
            f"(tick_size={metrics.tick_size} tick_value={metrics.tick_value})"
        )
    return ppv


def _fixed_percent_lots(balance: float, config: RiskConfig, stop_points: float, ppv: float) -> tuple[float, float]:
    risk_amount = balance * config.risk_percent / 100.0
    return risk_amount, risk_amount / (stop_points * ppv)


def compute_size(
    stop_loss_points: float,
    config: RiskConfig,
    metrics: InstrumentMetrics,
    exposure: ExposureSnapshot,
) -> SizingResult:
    """Compute a position size for the given stop distance.

    Args:
        stop_loss_points: Requested stop distance in points. <= 0 uses the default.
        config: Session risk configuration.
        metrics: This cycle's instrument snapshot.
        exposure: This cycle's exposure (balance + drawdown).
    """
    if config.use_fixed_lot_size:
        return SizingResult(
            lots=config.fixed_lot_size,
            stop_loss_points=stop_loss_points,
            risk_amount=0.0,
            raw_lots=config.fixed_lot_size,
            binding="fixed_lot",
        )

    min_lot, _, _ = metrics.lot_bounds()

    # ドローダウン超過 → 最小ロット (取引停止ではない)
    if exposure.drawdown_pct > config.max_drawdown_pct:
        logger.warning(
            "Drawdown %.2f%% > limit %.2f%%: sizing at min lot %.2f",
            exposure.drawdown_pct,
            config.max_drawdown_pct,
            min_lot,
        )
        return SizingResult(
            lots=min_lot,
            stop_loss_points=stop_loss_points,
            risk_amount=0.0,
            raw_lots=min_lot,
            binding="drawdown",
        )

    stop_points = resolve_stop_distance(stop_loss_points, config, metrics)

    try:
        ppv = require_point_value(metrics)
    except NoPointValue as e:
        logger.warning("%s, falling back to fixed lot %.2f", e, config.fixed_lot_size)
        return SizingResult(
            lots=config.fixed_lot_size,
            stop_loss_points=stop_points,
            risk_amount=0.0,
            raw_lots=config.fixed_lot_size,
            binding="no_point_value",
        )

    if stop_points <= 0:
        logger.warning("No stop distance for %s, sizing at min lot %.2f", metrics.symbol, min_lot)
        return SizingResult(
            lots=min_lot,
            stop_loss_points=0.0,
            risk_amount=0.0,
            raw_lots=min_lot,
            binding="no_stop",
        )

    balance = exposure.balance
    model = config.risk_model

    if isinstance(model, Kelly):
        fraction = kelly_fraction(model.win_rate, model.win_loss_ratio)
        risk_amount = balance * fraction
        raw_lots = risk_amount / (stop_points * ppv)
    elif isinstance(model, VolatilityScaled):
        risk_amount, raw_lots = _fixed_percent_lots(balance, config, stop_points, ppv)
        price = metrics.mid
        if metrics.atr is not None and price > 0 and model.reference_volatility_pct > 0:
            volatility_pct = metrics.atr / price * 100
            raw_lots *= model.reference_volatility_pct / volatility_pct
        else:
            logger.warning("Volatility sizing without ATR for %s, using unscaled size", metrics.symbol)
    else:
        if isinstance(model, (Martingale, AntiMartingale)):
            # TODO: doubling/halving progression needs trade-result history from the gateway
            logger.debug("%s sizing falls back to fixed percent", model.kind)
        risk_amount, raw_lots = _fixed_percent_lots(balance, config, stop_points, ppv)

    lots = quantize_lots(raw_lots, metrics)
    _, max_lot, _ = metrics.lot_bounds()
    binding = "risk_model"
    if lots <= min_lot and raw_lots < min_lot:
        binding = "min_lot"
    elif lots >= max_lot and raw_lots > max_lot:
        binding = "max_lot"

    logger.info(
        "Size %s: %.2f lots (raw=%.4f risk=$%.2f sl=%.1fpt model=%s bind=%s)",
        metrics.symbol,
        lots,
        raw_lots,
        risk_amount,
        stop_points,
        model.kind,
        binding,
    )

    return SizingResult(
        lots=lots,
        stop_loss_points=stop_points,
        risk_amount=risk_amount,
        raw_lots=raw_lots,
        binding=binding,
    )
