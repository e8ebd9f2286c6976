"""Human-readable statistics report for dashboards and logs.

Assembled from the current RiskConfig and this cycle's computed metrics.
The format is informational only.
"""

from __future__ import annotations

from datetime import datetime, timezone

from src.market.snapshot import InstrumentMetrics
from src.risk.models import ExposureSnapshot, RiskConfig
from src.store.models import ActionCounts


def _on_off(flag: bool) -> str:
    return "on" if flag else "off"


def generate_statistics_report(
    config: RiskConfig,
    exposure: ExposureSnapshot,
    metrics: InstrumentMetrics | None = None,
    actions: ActionCounts | None = None,
    now: datetime | None = None,
) -> str:
    """Generate a plain-text statistics report."""
    now = now or datetime.now(timezone.utc)
    out: list[str] = []

    symbol = metrics.symbol if metrics else "-"
    out.append(f"=== Risk Controller: {symbol} ({now.strftime('%Y-%m-%d %H:%M')} UTC) ===")
    out.append("")

    out.append("-- Account --")
    out.append(f"Balance:   {exposure.balance:,.2f}")
    out.append(f"Equity:    {exposure.equity:,.2f}")
    dd_flag = " (BREAKER)" if exposure.drawdown_pct > config.max_drawdown_pct else ""
    out.append(f"Drawdown:  {exposure.drawdown_pct:.2f}% / {config.max_drawdown_pct:.2f}%{dd_flag}")
    out.append("")

    out.append("-- Exposure --")
    out.append(f"Open positions: {exposure.position_count} (max {config.max_open_positions})")
    out.append(f"Risk at stops:  {exposure.total_risk_money:,.2f}")
    if exposure.balance > 0:
        out.append(f"Risk / balance: {exposure.total_risk_money / exposure.balance * 100:.2f}%")
    if exposure.unprotected_count:
        out.append(f"Without stop:   {exposure.unprotected_count} (not counted in risk)")
    out.append("")

    if metrics is not None:
        out.append("-- Market --")
        out.append(f"Bid/Ask: {metrics.bid:.5f} / {metrics.ask:.5f}")
        spread_pts = metrics.price_to_points(metrics.ask - metrics.bid)
        out.append(f"Spread:  {spread_pts:.1f} pt")
        atr = f"{metrics.atr:.5f}" if metrics.atr is not None else "n/a"
        out.append(f"ATR({config.atr_period}): {atr}")
        out.append("")

    out.append("-- Configuration --")
    if config.use_fixed_lot_size:
        out.append(f"Sizing: fixed {config.fixed_lot_size:.2f} lots")
    else:
        out.append(f"Sizing: {config.risk_model.kind} @ {config.risk_percent:.2f}% risk")
    sl = "ATR x%.2f" % config.atr_multiplier if config.use_atr_stop_loss else f"{config.default_stop_loss_points:.0f}pt"
    out.append(f"Stop loss: {sl} | R:R {config.risk_reward_ratio:.2f}")
    out.append(
        f"Trailing: {_on_off(config.use_trailing_stop)}"
        f" ({config.trailing_stop_points:.0f}pt after {config.trailing_activation_points:.0f}pt)"
    )
    out.append(
        f"Break-even: {_on_off(config.use_break_even)}"
        f" (after {config.break_even_activation_points:.0f}pt)"
    )
    out.append(
        f"Partial close: {_on_off(config.use_partial_close)}"
        f" ({config.partial_close_percent:.0f}% after {config.partial_close_activation_points:.0f}pt)"
    )
    if config.max_holding_minutes > 0:
        out.append(f"Max holding: {config.max_holding_minutes} min")
    else:
        out.append("Max holding: off")

    if actions is not None:
        out.append("")
        out.append("-- Actions --")
        out.append(f"Total: {actions.total} | OK: {actions.succeeded} | Failed: {actions.failed}")
        for rule, n in sorted(actions.by_rule.items()):
            out.append(f"  {rule}: {n}")

    return "\n".join(out)
