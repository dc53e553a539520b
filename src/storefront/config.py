"""Environment driven settings for the storefront application.

Every setting can be overridden through an environment variable so the
interactive client, the tests and any deployment can point at their own
database file and log directory without code changes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

_THIS_FILE = Path(__file__).resolve()
_DEFAULT_DB_PATH = (_THIS_FILE.parent / ".." / ".." / "db" / "storefront.db").resolve()


@dataclass(frozen=True)
class Settings:
    db_path: str
    log_dir: str
    log_level: int
    admin_email: str
    admin_password: str


def resolve_db_path() -> str:
    return os.environ.get("STOREFRONT_DB_PATH", str(_DEFAULT_DB_PATH))


def _resolve_log_level(raw: str) -> int:
    level = logging.getLevelName(raw.strip().upper())
    # getLevelName returns a string for unknown names
    return level if isinstance(level, int) else logging.INFO


def load_settings() -> Settings:
    """Read the current settings from the environment."""
    return Settings(
        db_path=resolve_db_path(),
        log_dir=os.environ.get("STOREFRONT_LOG_DIR", "logs"),
        log_level=_resolve_log_level(os.environ.get("STOREFRONT_LOG_LEVEL", "INFO")),
        admin_email=os.environ.get("STOREFRONT_ADMIN_EMAIL", "admin@storefront.local"),
        admin_password=os.environ.get("STOREFRONT_ADMIN_PASSWORD", "admin"),
    )
