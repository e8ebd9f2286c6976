"""Structured logging configuration.

JSON formatter + TimedRotatingFileHandler for controller logs.
The controller tags each evaluation pass with a cycle_id through a
LoggerAdapter; the process-level id returned here tags startup messages.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import uuid
from pathlib import Path

LOG_DIR = Path(__file__).resolve().parent.parent / "data" / "logs"


class JSONFormatter(logging.Formatter):
    """JSON structured log formatter with cycle_id support."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "ts": self.formatTime(record),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "cycle_id": getattr(record, "cycle_id", ""),
            },
            ensure_ascii=False,
        )


class CycleAdapter(logging.LoggerAdapter):
    """Attach cycle_id to every record logged during one evaluation pass."""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("cycle_id", self.extra.get("cycle_id", ""))
        return msg, kwargs


def new_cycle_id() -> str:
    return uuid.uuid4().hex[:12]


def setup_logging(
    structured: bool = False,
    log_dir: Path | str | None = None,
    level: int = logging.INFO,
) -> str:
    """Configure root logger. Returns the cycle_id for this run.

    Args:
        structured: If True, use JSON format. Controlled by STRUCTURED_LOGGING env var.
        log_dir: Override log directory. Defaults to data/logs/.
        level: Root log level.
    """
    cycle_id = new_cycle_id()
    log_path = Path(log_dir) if log_dir else LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # 既存ハンドラをクリア (重複防止)
    root.handlers.clear()

    # Console handler (human-readable)
    console = logging.StreamHandler()
    console.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(console)

    # File handler (daily rotation, 30 days retention)
    use_structured = structured or os.environ.get("STRUCTURED_LOGGING", "").lower() in ("true", "1")
    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_path / "controller.log",
        when="midnight",
        backupCount=30,
        encoding="utf-8",
    )
    if use_structured:
        file_handler.setFormatter(JSONFormatter())
    else:
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.addHandler(file_handler)

    return cycle_id
