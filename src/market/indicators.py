"""Indicator helpers used by the paper broker (numpy)."""

from __future__ import annotations

import numpy as np


def true_range(highs, lows, closes) -> np.ndarray:
    """True range per bar. First bar uses high - low."""
    h = np.asarray(highs, dtype=float)
    lo = np.asarray(lows, dtype=float)
    c = np.asarray(closes, dtype=float)
    if len(h) == 0:
        return np.array([], dtype=float)
    prev_close = np.concatenate(([c[0]], c[:-1]))
    tr = np.maximum(h - lo, np.maximum(np.abs(h - prev_close), np.abs(lo - prev_close)))
    tr[0] = h[0] - lo[0]
    return tr


def compute_atr(highs, lows, closes, period: int = 14) -> float | None:
    """Simple-average ATR over the last `period` bars. None if not enough bars."""
    if period <= 0:
        return None
    tr = true_range(highs, lows, closes)
    if len(tr) < period:
        return None
    return float(np.mean(tr[-period:]))
