"""Position rule engine: apply protective rules to every open position, once per cycle.

Rule order per position is fixed: trailing stop → break-even → partial close
→ timed exit. Each rule makes at most one gateway call. A rejected call is
logged and skipped; the next cycle retries naturally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path

from src.connectors.gateway import ExecutionGateway, GatewayResult, call_gateway
from src.logging_config import CycleAdapter
from src.market.snapshot import InstrumentMetrics
from src.risk.models import Position, RiskConfig
from src.scheduler.position_rules import (
    RuleDecision,
    evaluate_break_even,
    evaluate_partial_close,
    evaluate_timed_exit,
    evaluate_trailing_stop,
    profit_points,
)

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Result of one gateway request issued by the rule engine."""

    position_id: str
    rule: str
    action: str  # 'modify'|'partial_close'|'close'|'evaluate' (rule raised)
    success: bool
    reason: str = ""
    new_stop: float | None = None
    volume: float | None = None


@dataclass
class PositionTickSummary:
    """Summary of one rule-engine pass."""

    checked: int = 0
    modified: int = 0
    partially_closed: int = 0
    closed: int = 0
    errors: int = 0
    results: list[ActionResult] = field(default_factory=list)

    @property
    def action_taken(self) -> bool:
        return any(r.success for r in self.results)


def _submit(decision: RuleDecision, gateway: ExecutionGateway) -> GatewayResult:
    if decision.action == "modify":
        return call_gateway(
            gateway.submit_modification,
            decision.position_id,
            decision.new_stop,
            decision.take_profit or 0.0,
        )
    if decision.action == "partial_close":
        return call_gateway(gateway.submit_partial_close, decision.position_id, decision.volume)
    return call_gateway(gateway.submit_close, decision.position_id)


def _journal(
    decision: RuleDecision,
    result: GatewayResult,
    symbol: str,
    cycle_id: str,
    db_path: Path | str | None,
) -> None:
    if db_path is None:
        return
    try:
        from src.store.db import log_action

        log_action(
            symbol=symbol,
            rule=decision.rule,
            action=decision.action,
            success=result.success,
            position_id=decision.position_id,
            reason=result.reason or decision.reason,
            stop_price=decision.new_stop,
            take_profit=decision.take_profit,
            volume=decision.volume,
            cycle_id=cycle_id,
            db_path=db_path,
        )
    except Exception:
        logger.warning("Journal write failed for %s/%s", decision.rule, decision.position_id, exc_info=True)


def apply_rules(
    position: Position,
    metrics: InstrumentMetrics,
    config: RiskConfig,
    gateway: ExecutionGateway,
    now: datetime,
    cycle_id: str = "",
    db_path: Path | str | None = None,
) -> list[ActionResult]:
    """Evaluate the four rules for one position, in order.

    After an accepted modification or partial close the local copy is updated,
    so later rules in the same pass compare against the new stop/size. A rule
    that raises is recorded as a failed action and the next rule still runs.
    """
    log = CycleAdapter(logger, {"cycle_id": cycle_id})
    results: list[ActionResult] = []
    pos = position

    rules = (
        ("trailing_stop", lambda p: evaluate_trailing_stop(p, metrics, config)),
        ("break_even", lambda p: evaluate_break_even(p, metrics, config)),
        ("partial_close", lambda p: evaluate_partial_close(p, metrics, config)),
        ("timed_exit", lambda p: evaluate_timed_exit(p, now, config)),
    )

    for name, evaluate in rules:
        try:
            decision = evaluate(pos)
        except Exception as e:
            log.warning("%s evaluation failed for position %s", name, pos.id, exc_info=True)
            results.append(
                ActionResult(
                    position_id=pos.id,
                    rule=name,
                    action="evaluate",
                    success=False,
                    reason=f"{type(e).__name__}: {e}",
                )
            )
            continue
        if decision is None:
            continue

        result = _submit(decision, gateway)
        _journal(decision, result, metrics.symbol, cycle_id, db_path)
        results.append(
            ActionResult(
                position_id=pos.id,
                rule=decision.rule,
                action=decision.action,
                success=result.success,
                reason=result.reason or decision.reason,
                new_stop=decision.new_stop,
                volume=decision.volume,
            )
        )

        if not result.success:
            log.warning(
                "%s rejected for position %s: %s",
                decision.rule,
                pos.id,
                result.reason or "unknown",
            )
            continue

        log.info("%s applied to position %s (%s)", decision.rule, pos.id, decision.reason)
        if decision.action == "modify":
            pos = replace(pos, stop_price=decision.new_stop)
        elif decision.action == "partial_close":
            pos = replace(pos, size=round(pos.size - decision.volume, 8))
        else:
            break

    return results


def manage_all_positions(
    gateway: ExecutionGateway,
    metrics: InstrumentMetrics,
    config: RiskConfig,
    now: datetime | None = None,
    positions: list[Position] | None = None,
    cycle_id: str = "",
    db_path: Path | str | None = None,
) -> PositionTickSummary:
    """Run the rule engine over every open position on metrics.symbol.

    Args:
        gateway: Book of record; positions are re-read unless passed in.
        metrics: This cycle's snapshot (bid/ask, point, lot bounds).
        config: Session risk configuration.
        now: Evaluation time. Defaults to the current UTC time; naive values are read as UTC.
        positions: Positions already read this cycle (avoids a second read).
        cycle_id: Tag for journal rows and log records.
        db_path: Journal DB. None disables journaling.
    """
    now = now or datetime.now(timezone.utc)
    log = CycleAdapter(logger, {"cycle_id": cycle_id})
    summary = PositionTickSummary()

    if positions is None:
        try:
            positions = gateway.list_open_positions(metrics.symbol)
        except Exception:
            log.warning("Failed to list positions for %s, skipping cycle", metrics.symbol, exc_info=True)
            return summary

    for pos in positions:
        if pos.symbol != metrics.symbol:
            continue
        summary.checked += 1
        try:
            log.debug(
                "Position %s %s size=%.2f entry=%.5f stop=%.5f profit=%.1fpt",
                pos.id,
                pos.direction,
                pos.size,
                pos.entry_price,
                pos.stop_price,
                profit_points(pos, metrics),
            )
            results = apply_rules(pos, metrics, config, gateway, now, cycle_id, db_path)
        except Exception:
            log.warning("Rule pass failed for position %s, continuing", pos.id, exc_info=True)
            summary.errors += 1
            continue

        for r in results:
            summary.results.append(r)
            if not r.success:
                summary.errors += 1
            elif r.action == "modify":
                summary.modified += 1
            elif r.action == "partial_close":
                summary.partially_closed += 1
            else:
                summary.closed += 1

    if summary.results:
        log.info(
            "Rule pass %s: checked=%d modified=%d partial=%d closed=%d errors=%d",
            metrics.symbol,
            summary.checked,
            summary.modified,
            summary.partially_closed,
            summary.closed,
            summary.errors,
        )
    return summary
