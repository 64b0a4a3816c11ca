# config.py

#============================================================#
#                         Relevo-PM                          #
#============================================================#
# Purpose     : Settings and logging for the Relevo-PM work  #
#               item engine. Values come from Streamlit      #
#               secrets, then environment, then defaults.    #
#============================================================#

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Optional, Tuple

from loguru import logger

try:
    import streamlit as st
    _secrets = getattr(st, "secrets", {})
except Exception:
    _secrets = {}


def _lookup(key: str) -> Optional[str]:
    # st.secrets raises when no secrets.toml exists
    try:
        value = _secrets.get(key)
    except Exception:
        value = None
    if value is None:
        value = os.getenv(key)
    return value


def _as_int(key: str, default: int) -> int:
    raw = _lookup(key)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed {}={!r}, using {}", key, raw, default)
        return default


def _as_float(key: str, default: float) -> float:
    raw = _lookup(key)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed {}={!r}, using {}", key, raw, default)
        return default


def _as_list(key: str) -> Tuple[str, ...]:
    raw = _lookup(key) or ""
    if not isinstance(raw, str):
        # secrets.toml may hold a real list
        return tuple(str(v).strip().lower() for v in raw if str(v).strip())
    return tuple(v.strip().lower() for v in raw.split(",") if v.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///relevo.db"
    notify_webhook_url: Optional[str] = None
    notify_timeout_seconds: float = 5.0
    notify_queue_size: int = 256
    approval_window_days: int = 30
    overdue_warn_threshold: int = 3
    overdue_high_threshold: int = 5
    log_level: str = "INFO"
    admin_emails: Tuple[str, ...] = ()


def load_settings() -> Settings:
    return Settings(
        database_url=_lookup("DATABASE_URL") or Settings.database_url,
        notify_webhook_url=_lookup("NOTIFY_WEBHOOK_URL") or None,
        notify_timeout_seconds=_as_float("NOTIFY_TIMEOUT_SECONDS", Settings.notify_timeout_seconds),
        notify_queue_size=_as_int("NOTIFY_QUEUE_SIZE", Settings.notify_queue_size),
        approval_window_days=_as_int("APPROVAL_WINDOW_DAYS", Settings.approval_window_days),
        overdue_warn_threshold=_as_int("OVERDUE_WARN_THRESHOLD", Settings.overdue_warn_threshold),
        overdue_high_threshold=_as_int("OVERDUE_HIGH_THRESHOLD", Settings.overdue_high_threshold),
        log_level=(_lookup("LOG_LEVEL") or Settings.log_level).upper(),
        admin_emails=_as_list("ADMIN_EMAILS"),
    )


def setup_logging(level: Optional[str] = None) -> None:
    """Replace loguru's default sink with a single stderr sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or settings.log_level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
        backtrace=False,
    )


settings = load_settings()
