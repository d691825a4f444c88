from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("DRC_DB_PATH", "drc.db")
    declarations_path: str = os.getenv("DRC_DECLARATIONS_PATH", "declarations.json")
    daemon_timeout_s: int = _env_int("DRC_DAEMON_TIMEOUT_S", 30)

    # Event journal
    keep_events: int = _env_int("DRC_KEEP_EVENTS", 1000)

    # Safety knobs
    # When off, resources that disappeared from the declarations are left running.
    allow_delete: bool = _env_bool("DRC_ALLOW_DELETE", True)


settings = Settings()
