"""
Shared helpers for the Peony services.
"""

from __future__ import annotations

from datetime import datetime
from functools import wraps
from typing import Callable, Optional, TypeVar

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError

import peony.config as config
from peony.db import DB
from peony.errors import PeonyError, StoreError, ThoughtNotFound
from peony.models import TEND_READY_STATES, Thought
from peony.validators import validate_thought_id as _validate_thought_id

logger = config.logger

F = TypeVar("F", bound=Callable)


# =============================================================================
# Service wrapper
# =============================================================================

def _log_store_error(operation: str, exc: SQLAlchemyError) -> None:
    logger.warning(
        "store_error",
        extra={
            "operation": operation,
            "error_class": exc.__class__.__name__,
            "detail": str(exc),
        },
    )


def store_operation(operation: str) -> Callable[[F], F]:
    """
    Name a service entry point and translate database failures.

    Core errors pass through untouched; anything raised by SQLAlchemy
    becomes a StoreError tagged with the operation name.
    """
    def decorator(fn: F) -> F:
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except PeonyError:
                raise
            except SQLAlchemyError as exc:
                _log_store_error(operation, exc)
                raise StoreError(f"{operation}: {exc}", operation=operation) from exc
        return wrapper
    return decorator


# =============================================================================
# Sessions
# =============================================================================

def _require_session_factory(factory, operation: str):
    if factory is None:
        raise StoreError(f"{operation}: database is not initialized (call init_db first)", operation=operation)
    return factory


def read_transaction(operation: str):
    """
    Session scope for reads; one consistent snapshot for every query inside.

    The snapshot holds a SHARED lock, so writers block until the scope exits.
    """
    return _require_session_factory(DB.SessionLocal, operation).begin()


def write_transaction(operation: str):
    """Session scope for writes: commit on success, roll back on any exception."""
    return _require_session_factory(DB.WriteSessionLocal, operation).begin()


# =============================================================================
# Helper Functions
# =============================================================================

def validate_thought_id(thought_id: int, operation: str) -> None:
    _validate_thought_id(thought_id, operation=operation)


def load_thought(db, thought_id: int, operation: str) -> Thought:
    row = db.get(Thought, thought_id)
    if row is None:
        raise ThoughtNotFound(thought_id, operation=operation)
    return row


def touch(row: Thought, now: datetime) -> datetime:
    """Set updated_at, never moving it backwards. Returns the stamp used."""
    stamp = now if row.updated_at is None or now >= row.updated_at else row.updated_at
    row.updated_at = stamp
    return stamp


def tend_ready_clause(now: datetime, extra: Optional[list] = None):
    conditions = [
        Thought.current_state.in_(TEND_READY_STATES),
        Thought.eligibility_at <= now,
    ]
    if extra:
        conditions.extend(extra)
    return and_(*conditions)
