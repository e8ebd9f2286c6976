"""Risk controller: the library surface a host scheduler calls once per tick / timer.

Each evaluation pass reads one fresh snapshot (quote, ATR, account, open
positions), recomputes exposure, runs the rule engine and, when a signal
asks for it, opens a new position. At most one pass runs at a time: a tick or
timer trigger that arrives while a pass is running is dropped.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from src.connectors.gateway import ExecutionGateway, call_gateway
from src.logging_config import CycleAdapter, new_cycle_id
from src.market.snapshot import InstrumentMetrics, MarketDataSource, take_snapshot
from src.risk.errors import DataUnavailable
from src.risk.exposure import compute_exposure
from src.risk.models import AccountState, Direction, ExposureSnapshot, Position, RiskConfig
from src.scheduler.position_manager import PositionTickSummary, manage_all_positions
from src.scheduler.position_rules import as_utc, profit_points
from src.sizing.lot_sizer import SizingResult, compute_size
from src.strategy.signal_combiner import SignalOpinion, combine_signals

logger = logging.getLogger(__name__)


@dataclass
class CycleSnapshot:
    """Everything one pass reads, read once and shared by every decision in it."""

    metrics: InstrumentMetrics
    account: AccountState
    positions: list[Position]
    exposure: ExposureSnapshot


@dataclass
class OpenResult:
    success: bool
    direction: Direction
    lots: float = 0.0
    entry_price: float = 0.0
    stop_price: float = 0.0
    take_profit: float = 0.0
    position_id: str | None = None
    reason: str = ""
    sizing: SizingResult | None = None


@dataclass
class CycleResult:
    """Outcome of one tick-driven evaluation pass."""

    cycle_id: str
    positions: PositionTickSummary = field(default_factory=PositionTickSummary)
    exposure: ExposureSnapshot | None = None
    opened: OpenResult | None = None
    skipped_reason: str = ""

    @property
    def action_taken(self) -> bool:
        return self.positions.action_taken or bool(self.opened and self.opened.success)


class RiskController:
    """Sizing, exposure and position-rule engine for one instrument."""

    def __init__(
        self,
        symbol: str,
        config: RiskConfig,
        market: MarketDataSource,
        gateway: ExecutionGateway,
        db_path: Path | str | None = None,
        notify: bool = False,
    ) -> None:
        config.validate()
        self.symbol = symbol
        self._config = config
        self.market = market
        self.gateway = gateway
        self.db_path = db_path
        self.notify = notify
        # API calls wait on _lock; _in_pass marks an evaluation pass so a
        # trigger re-entering on the same thread (gateway callback) is dropped
        self._lock = threading.RLock()
        self._in_pass = False
        self._breaker_alerted = False
        self._last_metrics: InstrumentMetrics | None = None

    @classmethod
    def from_settings(
        cls,
        market: MarketDataSource,
        gateway: ExecutionGateway,
        source=None,
        db_path: Path | str | None = None,
    ) -> RiskController:
        """Build from Settings. Raises ConfigurationError on invalid bounds."""
        from src.config import build_risk_config, settings

        s = source or settings
        notify = bool(s.telegram_bot_token and s.telegram_chat_id)
        return cls(s.symbol, build_risk_config(s), market, gateway, db_path=db_path, notify=notify)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> RiskConfig:
        return self._config

    def update_config(self, **changes) -> RiskConfig:
        """Replace config fields atomically. Waits for a running pass to finish."""
        with self._lock:
            self._config = self._config.with_changes(**changes)
            logger.info("Config updated: %s", ", ".join(f"{k}={v}" for k, v in changes.items()))
            return self._config

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def read_snapshot(self) -> CycleSnapshot:
        """Read metrics, account and positions once. Raises DataUnavailable."""
        config = self._config
        metrics = take_snapshot(self.market, self.symbol, config.atr_period)
        try:
            account = AccountState(
                balance=self.market.get_account_balance(),
                equity=self.market.get_account_equity(),
            )
        except Exception as e:
            raise DataUnavailable(f"account state: {e}") from e
        try:
            positions = [p for p in self.gateway.list_open_positions(self.symbol) if p.symbol == self.symbol]
        except Exception as e:
            raise DataUnavailable(f"open positions for {self.symbol}: {e}") from e

        exposure = compute_exposure(positions, metrics, account)
        self._last_metrics = metrics
        return CycleSnapshot(metrics, account, positions, exposure)

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    def compute_size(self, stop_loss_points: float = 0.0) -> float:
        """Lots for a new position with the given stop distance (points).

        Raises:
            DataUnavailable: No quote, account state or position list this
                cycle. Callers skip the entry and ask again next cycle.
        """
        with self._lock:
            snap = self.read_snapshot()
            return compute_size(stop_loss_points, self._config, snap.metrics, snap.exposure).lots

    def get_exposure_summary(self) -> ExposureSnapshot:
        """total_risk_money + drawdown_pct (and counts) from a fresh read.

        Raises:
            DataUnavailable: Market or account data could not be read; retry
                next cycle.
        """
        with self._lock:
            return self.read_snapshot().exposure

    def manage_all_positions(self, now: datetime | None = None) -> bool:
        """Run the rule engine once. Returns whether any action was taken.

        Returns False without evaluating when called from inside a running pass.
        """
        with self._evaluation_pass(blocking=True) as entered:
            if not entered:
                logger.warning("Rule pass requested while a pass is running, skipped")
                return False
            cycle_id = new_cycle_id()
            try:
                snap = self.read_snapshot()
            except DataUnavailable as e:
                logger.warning("Skipping rule pass: %s", e)
                return False
            return self._run_rules(snap, cycle_id, now).action_taken

    def open_position(
        self,
        direction: Direction,
        stop_loss_points: float = 0.0,
        snapshot: CycleSnapshot | None = None,
        cycle_id: str = "",
    ) -> OpenResult:
        """Size and submit a market order with stop-loss and take-profit attached."""
        with self._lock:
            config = self._config
            snap = snapshot or self.read_snapshot()
            metrics = snap.metrics

            if len(snap.positions) >= config.max_open_positions:
                return OpenResult(
                    False,
                    direction,
                    reason=f"max open positions reached ({len(snap.positions)})",
                )

            sizing = compute_size(stop_loss_points, config, metrics, snap.exposure)
            if sizing.lots <= 0:
                return OpenResult(False, direction, reason="size is zero", sizing=sizing)

            stop_points = sizing.stop_loss_points
            if config.default_take_profit_points > 0:
                tp_points = config.default_take_profit_points
            else:
                tp_points = stop_points * config.risk_reward_ratio

            if direction == Direction.LONG:
                entry = metrics.ask
                stop = entry - stop_points * metrics.point if stop_points > 0 else 0.0
                tp = entry + tp_points * metrics.point if tp_points > 0 else 0.0
            else:
                entry = metrics.bid
                stop = entry + stop_points * metrics.point if stop_points > 0 else 0.0
                tp = entry - tp_points * metrics.point if tp_points > 0 else 0.0

            result = call_gateway(self.gateway.submit_order, self.symbol, direction, sizing.lots, stop, tp)
            self._journal_entry(direction, sizing.lots, stop, tp, result, cycle_id)

            if not result.success:
                logger.warning("Order %s %s %.2f rejected: %s", direction, self.symbol, sizing.lots, result.reason)
                if self.notify:
                    from src.notifications.telegram import send_error_alert

                    send_error_alert("order rejected", f"{direction} {self.symbol} {sizing.lots:.2f}: {result.reason}")
                return OpenResult(
                    False,
                    direction,
                    lots=sizing.lots,
                    entry_price=entry,
                    stop_price=stop,
                    take_profit=tp,
                    reason=result.reason,
                    sizing=sizing,
                )

            logger.info(
                "Opened %s %s %.2f @ %.5f sl=%.5f tp=%.5f (#%s)",
                direction,
                self.symbol,
                sizing.lots,
                entry,
                stop,
                tp,
                result.position_id,
            )
            if self.notify:
                from src.notifications.telegram import notify_position_opened

                notify_position_opened(
                    symbol=self.symbol,
                    direction=str(direction),
                    lots=sizing.lots,
                    entry_price=entry,
                    stop_price=stop,
                    take_profit=tp,
                    position_id=result.position_id,
                )

            return OpenResult(
                True,
                direction,
                lots=sizing.lots,
                entry_price=entry,
                stop_price=stop,
                take_profit=tp,
                position_id=result.position_id,
                sizing=sizing,
            )

    def statistics_report(self) -> str:
        """Human-readable report from current config and a fresh snapshot."""
        with self._lock:
            try:
                snap = self.read_snapshot()
            except DataUnavailable as e:
                logger.warning("Report without market data: %s", e)
                snap = None
            return self._render_report(snap)

    def _render_report(self, snap: CycleSnapshot | None) -> str:
        from src.analysis.report_generator import generate_statistics_report

        if snap is None:
            exposure, metrics = ExposureSnapshot(), self._last_metrics
        else:
            exposure, metrics = snap.exposure, snap.metrics
        return generate_statistics_report(self._config, exposure, metrics, self._action_counts())

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def on_price_update(
        self,
        opinion: SignalOpinion | None = None,
        now: datetime | None = None,
    ) -> CycleResult | None:
        """Tick trigger. Returns None when dropped because a pass is running."""
        with self._evaluation_pass(blocking=False) as entered:
            if not entered:
                logger.debug("Tick dropped: evaluation pass already running")
                return None
            cycle_id = new_cycle_id()
            log = CycleAdapter(logger, {"cycle_id": cycle_id})
            result = CycleResult(cycle_id=cycle_id)

            try:
                snap = self.read_snapshot()
            except DataUnavailable as e:
                log.warning("Skipping cycle: %s", e)
                result.skipped_reason = str(e)
                return result

            result.exposure = snap.exposure
            result.positions = self._run_rules(snap, cycle_id, now)

            if opinion is None:
                return result
            direction = combine_signals(opinion, self._config.signal_threshold)
            if direction is None:
                return result

            # rule pass may have closed positions; entry uses a fresh read
            try:
                snap = self.read_snapshot()
            except DataUnavailable as e:
                log.warning("Skipping entry: %s", e)
                result.skipped_reason = str(e)
                return result
            result.exposure = snap.exposure
            result.opened = self.open_position(direction, snapshot=snap, cycle_id=cycle_id)
            if not result.opened.success:
                log.info("Entry %s skipped: %s", direction, result.opened.reason)
            return result

    def on_timer(self) -> str | None:
        """Timer trigger: log the statistics report and raise drawdown alerts.

        One snapshot feeds both the report and the breaker check.
        """
        with self._evaluation_pass(blocking=False) as entered:
            if not entered:
                logger.debug("Timer dropped: evaluation pass already running")
                return None
            try:
                snap = self.read_snapshot()
            except DataUnavailable as e:
                logger.warning("Report without market data: %s", e)
                snap = None
            report = self._render_report(snap)
            logger.info("Statistics\n%s", report)
            if snap is not None:
                self._check_drawdown_alert(snap.exposure)
            return report

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _evaluation_pass(self, blocking: bool):
        """Yield True when this caller owns the pass, False when it must back off.

        False covers both another thread holding the lock (non-blocking only)
        and a re-entrant call on the thread already running a pass.
        """
        if not self._lock.acquire(blocking=blocking):
            yield False
            return
        try:
            if self._in_pass:
                yield False
                return
            self._in_pass = True
            try:
                yield True
            finally:
                self._in_pass = False
        finally:
            self._lock.release()

    def _run_rules(self, snap: CycleSnapshot, cycle_id: str, now: datetime | None) -> PositionTickSummary:
        now = now or datetime.now(timezone.utc)
        summary = manage_all_positions(
            self.gateway,
            snap.metrics,
            self._config,
            now=now,
            positions=snap.positions,
            cycle_id=cycle_id,
            db_path=self.db_path,
        )
        if self.notify:
            self._notify_timed_exits(summary, snap, now)
        return summary

    def _notify_timed_exits(self, summary: PositionTickSummary, snap: CycleSnapshot, now: datetime) -> None:
        from src.notifications.telegram import notify_timed_exit

        by_id = {p.id: p for p in snap.positions}
        for r in summary.results:
            if r.rule != "timed_exit" or not r.success or r.position_id not in by_id:
                continue
            pos = by_id[r.position_id]
            notify_timed_exit(
                symbol=self.symbol,
                position_id=pos.id,
                held_min=(as_utc(now) - as_utc(pos.open_time)).total_seconds() / 60,
                profit_points=profit_points(pos, snap.metrics),
            )

    def _check_drawdown_alert(self, exposure: ExposureSnapshot) -> None:
        breached = exposure.drawdown_pct > self._config.max_drawdown_pct
        if breached and not self._breaker_alerted:
            logger.warning(
                "Drawdown breaker active: %.2f%% > %.2f%%",
                exposure.drawdown_pct,
                self._config.max_drawdown_pct,
            )
            if self.notify:
                from src.notifications.telegram import send_drawdown_alert

                send_drawdown_alert(
                    self.symbol,
                    exposure.drawdown_pct,
                    self._config.max_drawdown_pct,
                    exposure.equity,
                )
        self._breaker_alerted = breached

    def _journal_entry(self, direction, lots, stop, tp, result, cycle_id: str) -> None:
        if self.db_path is None:
            return
        try:
            from src.store.db import log_action

            log_action(
                symbol=self.symbol,
                rule="entry",
                action="open",
                success=result.success,
                position_id=result.position_id,
                reason=result.reason or str(direction),
                stop_price=stop,
                take_profit=tp,
                volume=lots,
                cycle_id=cycle_id,
                db_path=self.db_path,
            )
        except Exception:
            logger.warning("Journal write failed for entry", exc_info=True)

    def _action_counts(self):
        if self.db_path is None:
            return None
        try:
            from src.store.db import get_action_counts

            return get_action_counts(db_path=self.db_path)
        except Exception:
            logger.warning("Action counts unavailable", exc_info=True)
            return None
