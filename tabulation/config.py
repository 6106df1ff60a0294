from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

# Persisted file next to the package unless overridden
DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), "judging.sqlite")


@dataclass(frozen=True)
class Settings:
    db_path: str = DEFAULT_DB_PATH
    log_level: str = "INFO"
    log_file: Optional[str] = None
    judge_poll_seconds: float = 3.0
    monitor_poll_seconds: float = 10.0
    default_trim_percentage: float = 20.0


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    """Read settings from ``TABULATION_*`` environment variables."""
    return Settings(
        db_path=os.environ.get("TABULATION_DB_PATH") or DEFAULT_DB_PATH,
        log_level=(os.environ.get("TABULATION_LOG_LEVEL") or "INFO").upper(),
        log_file=os.environ.get("TABULATION_LOG_FILE") or None,
        judge_poll_seconds=_float_env("TABULATION_JUDGE_POLL_SECONDS", 3.0),
        monitor_poll_seconds=_float_env("TABULATION_MONITOR_POLL_SECONDS", 10.0),
        default_trim_percentage=_float_env("TABULATION_DEFAULT_TRIM", 20.0),
    )
