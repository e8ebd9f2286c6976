"""Database path resolver for execution modes."""

from __future__ import annotations

from pathlib import Path

from src.config import settings
from src.store.schema import DEFAULT_DB_PATH

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _normalize_db_path(path_str: str) -> str:
    p = Path(path_str).expanduser()
    if p.is_absolute():
        return str(p)
    return str((PROJECT_ROOT / p).resolve())


def resolve_db_path(
    *,
    execution_mode: str | None = None,
    explicit_db_path: str | None = None,
) -> str:
    """Resolve the journal DB path.

    Priority:
    1) explicit_db_path
    2) settings.journal_db_path
    3) DEFAULT_DB_PATH, with a mode suffix for non-live modes
    """
    if explicit_db_path:
        return _normalize_db_path(explicit_db_path)
    if settings.journal_db_path:
        return _normalize_db_path(settings.journal_db_path)

    mode = (execution_mode or settings.execution_mode or "paper").strip().lower()
    if mode == "live":
        return str(DEFAULT_DB_PATH)
    return str(DEFAULT_DB_PATH.with_name(f"risk_actions_{mode.replace('-', '_')}.db"))
