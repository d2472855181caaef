"""
Shared configuration for the Peony core.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import timedelta

logger = logging.getLogger("peony")
logger.addHandler(logging.NullHandler())


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Seconds per unit
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration string such as "18h", "2h30m", "90s" or "0".

    Units: h, m, s, ms, us, ns. A bare "0" is accepted; negative
    durations are rejected.
    """
    if not isinstance(value, str):
        raise ValueError("duration must be a string")
    text = value.strip()
    if not text:
        raise ValueError("duration is empty")
    if text.startswith("-"):
        raise ValueError(f"duration must not be negative: {value!r}")
    if text.startswith("+"):
        text = text[1:]
    if text == "0":
        return timedelta(0)

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return timedelta(seconds=total)


def _get_duration(env_name: str, default: str) -> timedelta:
    value = os.environ.get(env_name)
    if value is None:
        return parse_duration(default)
    try:
        return parse_duration(value)
    except ValueError:
        return parse_duration(default)


def _default_db_path() -> str:
    data_home = os.environ.get("XDG_DATA_HOME") or os.path.join(
        os.path.expanduser("~"), ".local", "share"
    )
    return os.path.join(data_home, "peony", "peony.db")


# Database settings
DB_PATH = os.environ.get("PEONY_DB_PATH") or _default_db_path()
DATABASE_URL = os.environ.get("DATABASE_URL")
BUSY_TIMEOUT_MS = _get_int("PEONY_BUSY_TIMEOUT_MS", 5000)
SQL_ECHO = _get_bool("PEONY_SQL_ECHO", False)

# Lifecycle settings
DEFAULT_SETTLE_DURATION = "18h"
SETTLE_DURATION_RAW = os.environ.get("PEONY_SETTLE_DURATION", DEFAULT_SETTLE_DURATION)
SETTLE_DURATION = _get_duration("PEONY_SETTLE_DURATION", DEFAULT_SETTLE_DURATION)

# Input limits
MAX_CONTENT_LENGTH = _get_int("PEONY_MAX_CONTENT_LENGTH", 100_000)
MAX_NOTE_LENGTH = _get_int("PEONY_MAX_NOTE_LENGTH", 10_000)
MAX_KIND_LENGTH = _get_int("PEONY_MAX_KIND_LENGTH", 100)
MAX_PAGE_LIMIT = _get_int("PEONY_MAX_PAGE_LIMIT", 1000)

# app_state keys
TEND_READY_COUNT_KEY = "tend_ready_count"


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, SETTLE_DURATION

    errors = []
    try:
        SETTLE_DURATION = parse_duration(SETTLE_DURATION_RAW)
    except ValueError as exc:
        errors.append(f"PEONY_SETTLE_DURATION is invalid ({exc})")

    if not DATABASE_URL:
        if not DB_PATH:
            errors.append("PEONY_DB_PATH must not be empty")
        else:
            DATABASE_URL = f"sqlite:///{DB_PATH}"
    elif not DATABASE_URL.lower().startswith("sqlite"):
        errors.append("DATABASE_URL must be a sqlite URL")

    if BUSY_TIMEOUT_MS < 0:
        errors.append("PEONY_BUSY_TIMEOUT_MS must be >= 0")
    if MAX_PAGE_LIMIT <= 0:
        errors.append("PEONY_MAX_PAGE_LIMIT must be positive")
    if MAX_CONTENT_LENGTH <= 0:
        errors.append("PEONY_MAX_CONTENT_LENGTH must be positive")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
