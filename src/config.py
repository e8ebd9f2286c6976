from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Instrument
    symbol: str = "XAUUSD"

    # === Execution ===
    execution_mode: str = "paper"  # "paper" | "live" | "dry-run"

    # Telegram (optional)
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # === Sizing ===
    risk_percent: float = 1.0  # balance の N% per trade
    use_fixed_lot_size: bool = False
    fixed_lot_size: float = 0.01
    risk_model: str = "fixed_percent"  # fixed_percent | kelly | volatility | martingale | anti_martingale
    kelly_win_rate: float = 0.55
    kelly_win_loss_ratio: float = 200.0 / 150.0  # avg win / avg loss
    volatility_reference_pct: float = 1.0  # ATR/price % at which size is unscaled

    # === Stops (price points) ===
    default_stop_loss_points: float = 200.0
    default_take_profit_points: float = 0.0  # 0 → stop × risk_reward_ratio
    risk_reward_ratio: float = 2.0
    use_atr_stop_loss: bool = False
    atr_period: int = 14
    atr_multiplier: float = 1.5

    # === Position rules ===
    use_trailing_stop: bool = True
    trailing_stop_points: float = 150.0
    trailing_activation_points: float = 200.0
    use_break_even: bool = True
    break_even_activation_points: float = 100.0
    use_partial_close: bool = False
    partial_close_percent: float = 50.0
    partial_close_activation_points: float = 300.0
    max_holding_minutes: int = 0  # 0 = 無効

    # === Circuit breaker ===
    max_drawdown_pct: float = 10.0
    max_open_positions: int = 3

    # === Signals ===
    signal_threshold: float = 0.5  # |technical score| >= threshold

    # === Journal ===
    journal_enabled: bool = True
    journal_db_path: str = ""  # 空 → data/risk_actions.db


settings = Settings()


def build_risk_config(source: Settings | None = None):
    """Convert Settings into a validated RiskConfig.

    Raises ConfigurationError on out-of-range values so the host refuses to start.
    """
    from src.risk.models import RiskConfig, risk_model_from_name

    s = source or settings
    config = RiskConfig(
        risk_percent=s.risk_percent,
        use_fixed_lot_size=s.use_fixed_lot_size,
        fixed_lot_size=s.fixed_lot_size,
        risk_model=risk_model_from_name(
            s.risk_model,
            win_rate=s.kelly_win_rate,
            win_loss_ratio=s.kelly_win_loss_ratio,
            reference_volatility_pct=s.volatility_reference_pct,
        ),
        default_stop_loss_points=s.default_stop_loss_points,
        default_take_profit_points=s.default_take_profit_points,
        risk_reward_ratio=s.risk_reward_ratio,
        use_atr_stop_loss=s.use_atr_stop_loss,
        atr_period=s.atr_period,
        atr_multiplier=s.atr_multiplier,
        use_trailing_stop=s.use_trailing_stop,
        trailing_stop_points=s.trailing_stop_points,
        trailing_activation_points=s.trailing_activation_points,
        use_break_even=s.use_break_even,
        break_even_activation_points=s.break_even_activation_points,
        use_partial_close=s.use_partial_close,
        partial_close_percent=s.partial_close_percent,
        partial_close_activation_points=s.partial_close_activation_points,
        max_holding_minutes=s.max_holding_minutes,
        max_drawdown_pct=s.max_drawdown_pct,
        max_open_positions=s.max_open_positions,
        signal_threshold=s.signal_threshold,
    )
    config.validate()
    return config
