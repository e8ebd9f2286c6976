"""Combine the two external directional opinions into one entry decision.

technical_score: numeric opinion in [-1, 1] (positive = long) from the
technical/statistical producer.
structural_bias: discrete opinion (long/short/None) from the
support/resistance/order-block analyzer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.risk.models import Direction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalOpinion:
    technical_score: float = 0.0
    structural_bias: Direction | None = None


def combine_signals(opinion: SignalOpinion, threshold: float = 0.5) -> Direction | None:
    """Return the entry direction, or None when the opinions don't warrant a trade.

    The technical score must reach the threshold in magnitude. When the
    structural analyzer has an opinion it must agree.
    """
    score = max(-1.0, min(1.0, opinion.technical_score))
    if abs(score) < threshold or score == 0:
        return None

    direction = Direction.LONG if score > 0 else Direction.SHORT
    if opinion.structural_bias is not None and opinion.structural_bias != direction:
        logger.debug(
            "Signal conflict: technical=%s (%.2f) structural=%s",
            direction,
            score,
            opinion.structural_bias,
        )
        return None
    return direction
