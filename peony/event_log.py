"""
Event log helpers (append-only).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import peony.config as config
from peony.models import Event, ThoughtState
from peony.records import EventRecord
from peony.validators import normalize_note, validate_optional_text, validate_required_text


def log_event(
    db,
    *,
    thought_id: int,
    kind: str,
    at: datetime,
    previous_state: Optional[ThoughtState] = None,
    next_state: Optional[ThoughtState] = None,
    note: Optional[str] = None,
) -> Event:
    """
    Append one event row to the session. The caller owns the transaction.
    """
    validate_required_text(kind, "kind", config.MAX_KIND_LENGTH)
    validate_optional_text(note, "note", config.MAX_NOTE_LENGTH)

    event = Event(
        thought_id=thought_id,
        kind=kind.strip(),
        at=at,
        previous_state=previous_state,
        next_state=next_state,
        note=normalize_note(note),
    )
    db.add(event)
    return event


def list_thought_events(db, thought_id: int) -> list[EventRecord]:
    rows = (
        db.query(Event)
        .filter(Event.thought_id == thought_id)
        .order_by(Event.at.asc(), Event.id.asc())
        .all()
    )
    return [EventRecord.from_row(row) for row in rows]


__all__ = [
    "log_event",
    "list_thought_events",
]
