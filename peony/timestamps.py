"""
UTC timestamp helpers.

Timestamps are persisted as fixed-width text, e.g.
``2026-01-11T09:30:00.123456000Z``: nine fractional digits, always UTC, so
that string order equals chronological order.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d{1,9}))?(Z|[+-]\d{2}:\d{2})$"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond:06d}000Z"


def parse_timestamp(value: str) -> datetime:
    """
    Parse a stored timestamp back into an aware UTC datetime.

    Accepts the fixed-width form written by ``format_timestamp`` and the
    shorter RFC 3339 variants (fewer fractional digits, numeric offsets).
    Digits past microseconds are truncated.
    """
    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    base, fraction, zone = match.groups()
    micros = int((fraction or "0")[:6].ljust(6, "0"))
    offset = "+00:00" if zone == "Z" else zone
    parsed = datetime.fromisoformat(f"{base}.{micros:06d}{offset}")
    return parsed.astimezone(timezone.utc)
