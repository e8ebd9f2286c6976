#!/usr/bin/env python3
"""Replay OHLC bars through the risk controller on the in-memory paper broker.

Usage:
    # CSV columns: time,open,high,low,close (ISO time, bid prices)
    python scripts/run_paper.py --bars data/xauusd_m5.csv

    # Override risk settings for the run
    python scripts/run_paper.py --bars data/xauusd_m5.csv --risk-model kelly --max-holding 120

    # Report every N bars (timer trigger)
    python scripts/run_paper.py --bars data/xauusd_m5.csv --timer-every 12
"""

import argparse
import csv
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import logging

import numpy as np

log = logging.getLogger(__name__)


def load_bars(path: Path) -> list[tuple[datetime, float, float, float, float]]:
    bars = []
    with path.open(newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            try:
                at = datetime.fromisoformat(row["time"].replace("Z", "+00:00"))
                if at.tzinfo is None:
                    at = at.replace(tzinfo=timezone.utc)
                bars.append(
                    (at, float(row["open"]), float(row["high"]), float(row["low"]), float(row["close"]))
                )
            except (KeyError, ValueError):
                log.warning("Bad bar row skipped: %s", row)
    return bars


def momentum_score(closes: list[float], atr: float | None, lookback: int = 20) -> float:
    """Stand-in technical signal: distance from the moving average in ATR units."""
    if atr is None or atr <= 0 or len(closes) < lookback:
        return 0.0
    sma = float(np.mean(closes[-lookback:]))
    return float(np.clip((closes[-1] - sma) / atr, -1.0, 1.0))


def main() -> None:
    from src.config import build_risk_config, settings
    from src.connectors.paper_broker import PaperBroker
    from src.logging_config import setup_logging
    from src.market.indicators import compute_atr
    from src.risk.errors import ConfigurationError
    from src.scheduler.controller import RiskController
    from src.store.db_path import resolve_db_path
    from src.strategy.signal_combiner import SignalOpinion

    parser = argparse.ArgumentParser(description="Paper replay of the risk controller")
    parser.add_argument("--bars", type=Path, required=True, help="OHLC CSV file")
    parser.add_argument("--balance", type=float, default=10_000.0, help="Starting balance")
    parser.add_argument("--risk-model", default=None, help="Override settings.risk_model")
    parser.add_argument("--max-holding", type=int, default=None, help="Max holding minutes")
    parser.add_argument("--timer-every", type=int, default=12, help="Bars between timer triggers")
    parser.add_argument("--db", default=None, help="Journal DB path (default: resolved from mode)")
    parser.add_argument("--no-journal", action="store_true", help="Disable the action journal")
    args = parser.parse_args()

    setup_logging()

    overrides = {}
    if args.risk_model:
        overrides["risk_model"] = args.risk_model
    if args.max_holding is not None:
        overrides["max_holding_minutes"] = args.max_holding
    run_settings = settings.model_copy(update=overrides)

    try:
        config = build_risk_config(run_settings)
    except ConfigurationError as e:
        log.error("Invalid configuration: %s", e)
        sys.exit(2)

    bars = load_bars(args.bars)
    if not bars:
        log.error("No bars loaded from %s", args.bars)
        sys.exit(1)

    broker = PaperBroker(symbol=run_settings.symbol, balance=args.balance)
    db_path = None
    if run_settings.journal_enabled and not args.no_journal:
        db_path = resolve_db_path(execution_mode="paper", explicit_db_path=args.db)

    controller = RiskController(run_settings.symbol, config, broker, broker, db_path=db_path)
    log.info(
        "=== Paper replay: %d bars %s, balance=%.2f, model=%s ===",
        len(bars),
        run_settings.symbol,
        args.balance,
        config.risk_model.kind,
    )

    for i, (at, open_, high, low, close) in enumerate(bars, 1):
        broker.add_bar(at, open_, high, low, close)
        atr = compute_atr(broker.highs, broker.lows, broker.closes, config.atr_period)
        opinion = SignalOpinion(technical_score=momentum_score(broker.closes, atr))
        controller.on_price_update(opinion, now=at)
        if args.timer_every > 0 and i % args.timer_every == 0:
            controller.on_timer()

    print(controller.statistics_report())
    wins = [t for t in broker.closed_trades if t.pnl > 0]
    print()
    print(f"Closed trades: {len(broker.closed_trades)} | Wins: {len(wins)}")
    print(f"Final balance: {broker.balance:,.2f} (start {args.balance:,.2f})")


if __name__ == "__main__":
    main()
