"""
Thought persistence services.

Every mutating function here is one transaction: load the row, let
``peony.lifecycle`` approve the move, write the new snapshot and append
exactly one event. Any exception rolls the whole unit back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

import peony.config as config
from peony.context import StoreContext, resolve_store_context
from peony.errors import ThoughtNotFound, ValidationIssue
from peony.event_kinds import (
    EVENT_ANNOTATED,
    EVENT_CAPTURED,
    EVENT_CONTENT_UPDATED,
    EVENT_STATE_CHANGE,
)
from peony.event_log import list_thought_events, log_event
from peony.lifecycle import (
    Operation,
    TransitionPlan,
    check_resolution_target,
    coerce_state,
    plan_transition,
)
from peony.models import Event, Thought, ThoughtState
from peony.records import EventRecord, ThoughtPage, ThoughtSnapshot
from peony.services.shared import (
    load_thought,
    logger,
    read_transaction,
    store_operation,
    tend_ready_clause,
    touch,
    validate_thought_id,
    write_transaction,
)
from peony.validators import (
    validate_optional_int as _validate_optional_int,
    validate_optional_text as _validate_optional_text,
    validate_pagination as _validate_pagination,
    validate_required_text as _validate_required_text,
)

StateLike = Union[ThoughtState, str]

OP_CREATE = "create thought"
OP_APPEND_EVENT = "append event"
OP_GET = "get thought"
OP_GET_TEND = "get tend thought"
OP_LIST = "list thoughts"
OP_LIST_TEND = "list tend thoughts"
OP_LIST_BY_STATE = "list thoughts by state"
OP_UPDATE_CONTENT = "update thought content"
OP_MARK_TENDED = "mark thought tended"
OP_RESOLVE = "post-tend transition"
OP_EVOLVE = "evolve thought"
OP_DELETE = "delete thought"
OP_ANNOTATE = "annotate thought"


# =============================================================================
# Helpers
# =============================================================================

def _apply_plan(
    db,
    row: Thought,
    plan: TransitionPlan,
    now: datetime,
    ctx: StoreContext,
    note: Optional[str] = None,
) -> None:
    stamp = touch(row, now)
    row.current_state = plan.next_state
    if plan.increments_tend_counter:
        row.tend_counter = (row.tend_counter or 0) + 1
    if plan.sets_last_tended_at:
        row.last_tended_at = now
    if plan.recomputes_eligibility:
        row.eligibility_at = ctx.eligibility_from(stamp)

    log_event(
        db,
        thought_id=row.id,
        kind=EVENT_STATE_CHANGE,
        at=stamp,
        previous_state=plan.previous_state,
        next_state=plan.next_state,
        note=note,
    )
    logger.debug(
        "thought_transition",
        extra={
            "thought_id": row.id,
            "operation": plan.operation.value,
            "previous_state": plan.previous_state.value if plan.previous_state else None,
            "next_state": plan.next_state.value,
        },
    )


def _transition(
    operation_name: str,
    operation: Operation,
    thought_id: int,
    ctx: StoreContext,
    target: Optional[ThoughtState] = None,
    note: Optional[str] = None,
) -> None:
    with write_transaction(operation_name) as db:
        row = load_thought(db, thought_id, operation_name)
        now = ctx.now()
        plan = plan_transition(
            ThoughtState(row.current_state),
            operation,
            target,
            eligibility_at=row.eligibility_at,
            now=now,
            thought_id=thought_id,
        )
        _apply_plan(db, row, plan, now, ctx, note)


def _page(query, limit: int, offset: int) -> ThoughtPage:
    rows = query.offset(offset).limit(limit + 1).all()
    return ThoughtPage(
        items=tuple(ThoughtSnapshot.from_row(row) for row in rows[:limit]),
        limit=limit,
        offset=offset,
        has_more=len(rows) > limit,
    )


# =============================================================================
# Writes
# =============================================================================

@store_operation(OP_CREATE)
def create_thought(content: str, *, context: Optional[StoreContext] = None) -> int:
    """
    Capture a new thought and its initial ``captured`` event.

    Returns the new thought id.
    """
    _validate_required_text(content, "content", config.MAX_CONTENT_LENGTH, operation=OP_CREATE)
    ctx = resolve_store_context(context)
    plan = plan_transition(None, Operation.create)

    with write_transaction(OP_CREATE) as db:
        now = ctx.now()
        row = Thought(
            content=content,
            current_state=plan.next_state,
            tend_counter=0,
            created_at=now,
            updated_at=now,
            last_tended_at=None,
            eligibility_at=ctx.eligibility_from(now),
        )
        db.add(row)
        db.flush()
        log_event(
            db,
            thought_id=row.id,
            kind=EVENT_CAPTURED,
            at=now,
            previous_state=None,
            next_state=plan.next_state,
        )
        thought_id = row.id

    logger.debug("thought_created", extra={"thought_id": thought_id})
    return thought_id


@store_operation(OP_APPEND_EVENT)
def append_event(
    thought_id: int,
    kind: str,
    previous_state: Optional[StateLike] = None,
    next_state: Optional[StateLike] = None,
    note: Optional[str] = None,
    *,
    context: Optional[StoreContext] = None,
) -> None:
    """Append a free-form event to a thought's history without touching its snapshot."""
    validate_thought_id(thought_id, OP_APPEND_EVENT)
    _validate_required_text(kind, "kind", config.MAX_KIND_LENGTH, operation=OP_APPEND_EVENT)
    _validate_optional_text(note, "note", config.MAX_NOTE_LENGTH, operation=OP_APPEND_EVENT)
    previous = coerce_state(previous_state, "previous_state", OP_APPEND_EVENT) if previous_state is not None else None
    following = coerce_state(next_state, "next_state", OP_APPEND_EVENT) if next_state is not None else None
    ctx = resolve_store_context(context)

    with write_transaction(OP_APPEND_EVENT) as db:
        load_thought(db, thought_id, OP_APPEND_EVENT)
        log_event(
            db,
            thought_id=thought_id,
            kind=kind,
            at=ctx.now(),
            previous_state=previous,
            next_state=following,
            note=note,
        )


@store_operation(OP_UPDATE_CONTENT)
def update_thought_content(thought_id: int, content: str, *, context: Optional[StoreContext] = None) -> None:
    validate_thought_id(thought_id, OP_UPDATE_CONTENT)
    _validate_required_text(content, "content", config.MAX_CONTENT_LENGTH, operation=OP_UPDATE_CONTENT)
    ctx = resolve_store_context(context)

    with write_transaction(OP_UPDATE_CONTENT) as db:
        row = load_thought(db, thought_id, OP_UPDATE_CONTENT)
        stamp = touch(row, ctx.now())
        row.content = content
        log_event(db, thought_id=thought_id, kind=EVENT_CONTENT_UPDATED, at=stamp)


@store_operation(OP_MARK_TENDED)
def mark_thought_tended(
    thought_id: int,
    note: Optional[str] = None,
    *,
    context: Optional[StoreContext] = None,
) -> None:
    """
    Move an eligible ``captured``/``resting`` thought to ``tended``.

    Increments ``tend_counter`` and stamps ``last_tended_at``.
    """
    validate_thought_id(thought_id, OP_MARK_TENDED)
    _validate_optional_text(note, "note", config.MAX_NOTE_LENGTH, operation=OP_MARK_TENDED)
    _transition(OP_MARK_TENDED, Operation.mark_tended, thought_id, resolve_store_context(context), note=note)


@store_operation(OP_RESOLVE)
def resolve_tended_thought(
    thought_id: int,
    next_state: StateLike,
    note: Optional[str] = None,
    *,
    context: Optional[StoreContext] = None,
) -> None:
    """
    Settle a ``tended`` thought into ``resting`` or a terminal state.

    Resolving to ``released`` is a soft terminal state; it does not delete
    the thought (see ``delete_thought`` for that).
    """
    validate_thought_id(thought_id, OP_RESOLVE)
    target = check_resolution_target(
        coerce_state(next_state, "next_state", OP_RESOLVE),
        thought_id=thought_id,
    )
    _validate_optional_text(note, "note", config.MAX_NOTE_LENGTH, operation=OP_RESOLVE)
    _transition(OP_RESOLVE, Operation.resolve, thought_id, resolve_store_context(context), target=target, note=note)


@store_operation(OP_EVOLVE)
def evolve_thought(thought_id: int, *, context: Optional[StoreContext] = None) -> None:
    """Move any non-terminal thought straight to ``evolved``, skipping the tend."""
    validate_thought_id(thought_id, OP_EVOLVE)
    _transition(OP_EVOLVE, Operation.evolve, thought_id, resolve_store_context(context))


@store_operation(OP_ANNOTATE)
def annotate_thought(
    thought_id: int,
    valence: Optional[int] = None,
    energy: Optional[int] = None,
    *,
    context: Optional[StoreContext] = None,
) -> None:
    validate_thought_id(thought_id, OP_ANNOTATE)
    _validate_optional_int(valence, "valence", operation=OP_ANNOTATE)
    _validate_optional_int(energy, "energy", operation=OP_ANNOTATE)
    if valence is None and energy is None:
        raise ValidationIssue(
            "valence or energy is required",
            field="valence",
            error_type="required",
            operation=OP_ANNOTATE,
            thought_id=thought_id,
        )
    ctx = resolve_store_context(context)

    with write_transaction(OP_ANNOTATE) as db:
        row = load_thought(db, thought_id, OP_ANNOTATE)
        stamp = touch(row, ctx.now())
        changes = []
        if valence is not None:
            row.valence = valence
            changes.append(f"valence={valence}")
        if energy is not None:
            row.energy = energy
            changes.append(f"energy={energy}")
        log_event(db, thought_id=thought_id, kind=EVENT_ANNOTATED, at=stamp, note=" ".join(changes))


@store_operation(OP_DELETE)
def delete_thought(thought_id: int) -> None:
    """
    Permanently remove a thought and its whole event history.

    Ids are left sparse; callers that want dense ids follow up with
    ``peony.services.reindex.reindex_thought_ids``.
    """
    validate_thought_id(thought_id, OP_DELETE)

    with write_transaction(OP_DELETE) as db:
        row = load_thought(db, thought_id, OP_DELETE)
        db.query(Event).filter(Event.thought_id == thought_id).delete(synchronize_session=False)
        db.delete(row)

    logger.debug("thought_deleted", extra={"thought_id": thought_id})


# =============================================================================
# Reads
# =============================================================================

@store_operation(OP_GET)
def get_thought(thought_id: int) -> tuple[ThoughtSnapshot, list[EventRecord]]:
    validate_thought_id(thought_id, OP_GET)
    with read_transaction(OP_GET) as db:
        row = load_thought(db, thought_id, OP_GET)
        return ThoughtSnapshot.from_row(row), list_thought_events(db, thought_id)


@store_operation(OP_GET_TEND)
def get_tend_eligible_thought(
    thought_id: int,
    *,
    context: Optional[StoreContext] = None,
) -> tuple[ThoughtSnapshot, list[EventRecord]]:
    """Like ``get_thought``, but only if the thought can be tended right now."""
    validate_thought_id(thought_id, OP_GET_TEND)
    ctx = resolve_store_context(context)

    with read_transaction(OP_GET_TEND) as db:
        row = (
            db.query(Thought)
            .filter(tend_ready_clause(ctx.now(), [Thought.id == thought_id]))
            .one_or_none()
        )
        if row is None:
            exists = db.get(Thought, thought_id) is not None
            raise ThoughtNotFound(
                thought_id,
                operation=OP_GET_TEND,
                reason="not_tend_eligible" if exists else "not_found",
            )
        return ThoughtSnapshot.from_row(row), list_thought_events(db, thought_id)


@store_operation(OP_LIST)
def list_thoughts(limit: int, offset: int = 0) -> ThoughtPage:
    """Page through every non-archived thought, least recently updated first."""
    _validate_pagination(limit, offset, config.MAX_PAGE_LIMIT, operation=OP_LIST)
    with read_transaction(OP_LIST) as db:
        query = (
            db.query(Thought)
            .filter(Thought.current_state != ThoughtState.archived)
            .order_by(Thought.updated_at.asc(), Thought.id.asc())
        )
        return _page(query, limit, offset)


@store_operation(OP_LIST_TEND)
def list_tend_eligible_thoughts(
    limit: int,
    offset: int = 0,
    *,
    context: Optional[StoreContext] = None,
) -> ThoughtPage:
    _validate_pagination(limit, offset, config.MAX_PAGE_LIMIT, operation=OP_LIST_TEND)
    ctx = resolve_store_context(context)
    with read_transaction(OP_LIST_TEND) as db:
        query = (
            db.query(Thought)
            .filter(tend_ready_clause(ctx.now()))
            .order_by(Thought.eligibility_at.asc(), Thought.id.asc())
        )
        return _page(query, limit, offset)


@store_operation(OP_LIST_BY_STATE)
def list_thoughts_by_state(limit: int, offset: int, state: StateLike) -> ThoughtPage:
    _validate_pagination(limit, offset, config.MAX_PAGE_LIMIT, operation=OP_LIST_BY_STATE)
    wanted = coerce_state(state, "state", OP_LIST_BY_STATE)
    with read_transaction(OP_LIST_BY_STATE) as db:
        query = (
            db.query(Thought)
            .filter(Thought.current_state == wanted)
            .order_by(Thought.updated_at.asc(), Thought.id.asc())
        )
        return _page(query, limit, offset)


__all__ = [
    "create_thought",
    "append_event",
    "update_thought_content",
    "mark_thought_tended",
    "resolve_tended_thought",
    "evolve_thought",
    "annotate_thought",
    "delete_thought",
    "get_thought",
    "get_tend_eligible_thought",
    "list_thoughts",
    "list_tend_eligible_thoughts",
    "list_thoughts_by_state",
]
