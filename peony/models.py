"""
Peony Database Models
SQLite schema for thoughts and their append-only event log
"""

from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, Text, ForeignKey, CheckConstraint, Index, Enum, event
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from peony.errors import ValidationIssue
from peony.timestamps import format_timestamp, parse_timestamp

Base = declarative_base()

# =============================================================================
# Enums
# =============================================================================

class ThoughtState(str, PyEnum):
    captured = "captured"
    resting = "resting"
    tended = "tended"
    evolved = "evolved"
    released = "released"
    archived = "archived"


TERMINAL_STATES = frozenset({ThoughtState.evolved, ThoughtState.released, ThoughtState.archived})

# States from which a thought may be tended once eligible
TEND_READY_STATES = (ThoughtState.captured, ThoughtState.resting)


def _state_type() -> Enum:
    return Enum(
        ThoughtState,
        native_enum=False,
        length=16,
        validate_strings=True,
        values_callable=lambda states: [state.value for state in states],
    )


def _state_check(column: str, table: str) -> CheckConstraint:
    allowed = ", ".join(f"'{state.value}'" for state in ThoughtState)
    return CheckConstraint(f"{column} IN ({allowed})", name=f"ck_{table}_{column}")


# =============================================================================
# Column types
# =============================================================================

class UTCTimestamp(TypeDecorator):
    """Aware datetimes stored as fixed-width, lexically sortable UTC text."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = parse_timestamp(value)
        return format_timestamp(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_timestamp(value)


# =============================================================================
# Thoughts
# =============================================================================

class Thought(Base):
    __tablename__ = "thoughts"

    id = Column(Integer, primary_key=True)
    content = Column(Text, nullable=False)
    current_state = Column(_state_type(), nullable=False, default=ThoughtState.captured)
    tend_counter = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(UTCTimestamp, nullable=False)
    updated_at = Column(UTCTimestamp, nullable=False)
    last_tended_at = Column(UTCTimestamp)
    eligibility_at = Column(UTCTimestamp, nullable=False)

    # Free-form annotation, untouched by the lifecycle
    valence = Column(Integer)
    energy = Column(Integer)

    __table_args__ = (
        _state_check("current_state", "thoughts"),
        CheckConstraint("tend_counter >= 0", name="ck_thoughts_tend_counter_non_negative"),
        Index("idx_thoughts_state_eligibility", "current_state", "eligibility_at"),
        {"sqlite_autoincrement": True},
    )


# =============================================================================
# Events (append-only)
# =============================================================================

class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True)
    thought_id = Column(Integer, ForeignKey("thoughts.id"), nullable=False)
    kind = Column(Text, nullable=False)  # "captured", "state_change", ...
    at = Column(UTCTimestamp, nullable=False)
    previous_state = Column(_state_type())
    next_state = Column(_state_type())
    note = Column(Text)

    __table_args__ = (
        _state_check("previous_state", "events"),
        _state_check("next_state", "events"),
        Index("idx_events_thought_id_at", "thought_id", "at"),
        {"sqlite_autoincrement": True},
    )


# =============================================================================
# Bookkeeping
# =============================================================================

class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    version = Column(Integer, primary_key=True, autoincrement=False)


class AppState(Base):
    __tablename__ = "app_state"

    key = Column(Text, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(UTCTimestamp, nullable=False)


@event.listens_for(Event, "before_update")
def _reject_event_update(mapper, connection, target) -> None:
    raise ValidationIssue(
        "events are append-only and cannot be modified",
        field="events",
        error_type="immutable",
    )
