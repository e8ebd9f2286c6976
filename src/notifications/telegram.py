"""Telegram notification sender."""

from __future__ import annotations

import logging

import httpx

from src.config import settings

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"


def send_message(text: str, parse_mode: str = "Markdown") -> bool:
    """Send a message via Telegram bot API. Returns True on success.

    Falls back to plain text if Markdown parsing fails (HTTP 400).
    """
    if not settings.telegram_bot_token or not settings.telegram_chat_id:
        logger.debug("Telegram not configured, skipping notification")
        return False

    url = TELEGRAM_API.format(token=settings.telegram_bot_token)

    try:
        resp = httpx.post(
            url,
            json={
                "chat_id": settings.telegram_chat_id,
                "text": text,
                "parse_mode": parse_mode,
            },
            timeout=10,
        )
        resp.raise_for_status()
        return True
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 400 and parse_mode:
            # Markdown パースエラー → plain text でリトライ
            logger.warning("Telegram Markdown parse failed, retrying as plain text")
            try:
                resp2 = httpx.post(
                    url,
                    json={
                        "chat_id": settings.telegram_chat_id,
                        "text": text,
                    },
                    timeout=10,
                )
                resp2.raise_for_status()
                return True
            except Exception:
                logger.exception("Telegram plain text fallback also failed")
                return False
        logger.error("Telegram HTTP error %d: %s", e.response.status_code, e)
        return False
    except httpx.TimeoutException:
        logger.warning("Telegram request timed out")
        return False
    except Exception:
        logger.exception("Failed to send Telegram message")
        return False


# ---------------------------------------------------------------------------
# Markdown V1 escape helper
# ---------------------------------------------------------------------------

# Telegram Markdown V1 special characters that can cause parse errors
_MD_V1_SPECIAL = str.maketrans(
    {"_": "\\_", "[": "\\[", "]": "\\]", "(": "\\(", ")": "\\)"}
)


def escape_md(text: str) -> str:
    """Escape Telegram Markdown V1 special characters in data strings."""
    return str(text).translate(_MD_V1_SPECIAL)


_SEP = "─" * 13  # ─────────────


def format_open_notification(
    symbol: str,
    direction: str,
    lots: float,
    entry_price: float,
    stop_price: float,
    take_profit: float,
    position_id: str | None = None,
) -> str:
    pid = f" #{escape_md(position_id)}" if position_id else ""
    lines = [
        f"*{direction.upper()} {escape_md(symbol)}*{pid}",
        _SEP,
        f"Size: `{lots:.2f}` lots @ `{entry_price:.5f}`",
        f"SL: `{stop_price:.5f}` | TP: `{take_profit:.5f}`",
    ]
    return "\n".join(lines)


def notify_position_opened(**kwargs) -> bool:
    """Send instant notification for a newly opened position."""
    try:
        return send_message(format_open_notification(**kwargs))
    except Exception:
        logger.debug("notify_position_opened failed", exc_info=True)
        return False


def notify_timed_exit(symbol: str, position_id: str, held_min: float, profit_points: float) -> bool:
    """Send notification for a position closed by the max-holding rule."""
    try:
        lines = [
            f"*Timed exit {escape_md(symbol)}* #{escape_md(position_id)}",
            _SEP,
            f"Held: {held_min:.0f} min | Profit: `{profit_points:+.1f}` pt",
        ]
        return send_message("\n".join(lines))
    except Exception:
        logger.debug("notify_timed_exit failed", exc_info=True)
        return False


def send_drawdown_alert(symbol: str, drawdown_pct: float, limit_pct: float, equity: float) -> bool:
    """Send drawdown circuit breaker alert."""
    text = (
        f"*Risk Alert: drawdown {escape_md(symbol)}*\n"
        f"Drawdown: {drawdown_pct:.2f}% (limit {limit_pct:.2f}%)\n"
        f"Equity: ${equity:,.2f}\n"
        "New entries are sized at the minimum lot."
    )
    return send_message(text)


def send_error_alert(error_type: str, message: str) -> bool:
    """Send error notification (gateway rejection, etc.)."""
    text = f"*Error: {escape_md(error_type)}*\n{escape_md(message)}"
    return send_message(text)
