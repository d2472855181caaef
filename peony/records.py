"""
Detached, read-only views of thoughts and events.

Service functions return these instead of live ORM rows so callers never
touch session state after the transaction that produced them has ended.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from peony.models import Event, TERMINAL_STATES, TEND_READY_STATES, Thought, ThoughtState


@dataclass(frozen=True)
class ThoughtSnapshot:
    id: int
    content: str
    current_state: ThoughtState
    tend_counter: int
    created_at: datetime
    updated_at: datetime
    last_tended_at: Optional[datetime]
    eligibility_at: datetime
    valence: Optional[int] = None
    energy: Optional[int] = None

    @staticmethod
    def from_row(row: Thought) -> "ThoughtSnapshot":
        return ThoughtSnapshot(
            id=row.id,
            content=row.content,
            current_state=ThoughtState(row.current_state),
            tend_counter=row.tend_counter,
            created_at=row.created_at,
            updated_at=row.updated_at,
            last_tended_at=row.last_tended_at,
            eligibility_at=row.eligibility_at,
            valence=row.valence,
            energy=row.energy,
        )

    @property
    def is_terminal(self) -> bool:
        return self.current_state in TERMINAL_STATES

    def is_tend_eligible(self, now: datetime) -> bool:
        return self.current_state in TEND_READY_STATES and self.eligibility_at <= now


@dataclass(frozen=True)
class EventRecord:
    id: int
    thought_id: int
    kind: str
    at: datetime
    previous_state: Optional[ThoughtState] = None
    next_state: Optional[ThoughtState] = None
    note: Optional[str] = None

    @staticmethod
    def from_row(row: Event) -> "EventRecord":
        return EventRecord(
            id=row.id,
            thought_id=row.thought_id,
            kind=row.kind,
            at=row.at,
            previous_state=ThoughtState(row.previous_state) if row.previous_state is not None else None,
            next_state=ThoughtState(row.next_state) if row.next_state is not None else None,
            note=row.note,
        )


@dataclass(frozen=True)
class ThoughtPage:
    """One page of a listing; ``has_more`` is True when another page follows."""

    items: tuple[ThoughtSnapshot, ...]
    limit: int
    offset: int
    has_more: bool = False

    def __iter__(self) -> Iterator[ThoughtSnapshot]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def next_offset(self) -> Optional[int]:
        if not self.has_more:
            return None
        return self.offset + self.limit
