"""
Tend-ready counter: how many thoughts can be tended right now, and whether
that number moved since the last time anyone asked.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func

import peony.config as config
from peony.context import StoreContext, resolve_store_context
from peony.errors import ValidationIssue
from peony.models import AppState, Thought
from peony.services.shared import logger, read_transaction, store_operation, tend_ready_clause, write_transaction

OP_COUNT = "count tend thoughts"
OP_COUNT_CHANGED = "check tend count"


@store_operation(OP_COUNT)
def count_tend_eligible(*, context: Optional[StoreContext] = None) -> int:
    ctx = resolve_store_context(context)
    with read_transaction(OP_COUNT) as db:
        return db.query(func.count(Thought.id)).filter(tend_ready_clause(ctx.now())).scalar() or 0


@store_operation(OP_COUNT_CHANGED)
def did_count_change(count: int, *, context: Optional[StoreContext] = None) -> bool:
    """
    Record ``count`` as the latest tend-ready count.

    Returns True when it differs from the stored value, or when nothing
    usable was stored yet. The stored value is overwritten either way.
    """
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ValidationIssue(
            f"count must be a non-negative integer (got {count!r})",
            field="count",
            error_type="invalid_type",
            operation=OP_COUNT_CHANGED,
        )
    ctx = resolve_store_context(context)

    with write_transaction(OP_COUNT_CHANGED) as db:
        row = db.get(AppState, config.TEND_READY_COUNT_KEY)
        now = ctx.now()
        if row is None:
            previous = None
            db.add(AppState(key=config.TEND_READY_COUNT_KEY, value=str(count), updated_at=now))
        else:
            try:
                previous = int(row.value)
            except ValueError:
                previous = None
            row.value = str(count)
            row.updated_at = now

    changed = previous != count
    if changed:
        logger.debug("tend_count_changed", extra={"previous": previous, "count": count})
    return changed


__all__ = [
    "count_tend_eligible",
    "did_count_change",
]
