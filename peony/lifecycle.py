"""
Thought lifecycle: legal transitions and their guards.

    captured --mark_tended--> tended --resolve--> resting | evolved | released | archived
    resting  --mark_tended--> tended
    captured | resting | tended --evolve--> evolved

``plan_transition`` is the only place guards are evaluated. It is pure: the
persistence layer loads the row, asks for a plan, then applies it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from peony.errors import InvalidTransition, ValidationIssue
from peony.models import TERMINAL_STATES, ThoughtState


class Operation(str, PyEnum):
    create = "create"
    mark_tended = "mark_tended"
    resolve = "resolve"
    evolve = "evolve"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


RESOLUTION_TARGETS = frozenset({
    ThoughtState.resting,
    ThoughtState.evolved,
    ThoughtState.released,
    ThoughtState.archived,
})

# operation -> {from_state: allowed targets}; None is "no thought yet"
TRANSITIONS: dict[Operation, dict[Optional[ThoughtState], frozenset[ThoughtState]]] = {
    Operation.create: {
        None: frozenset({ThoughtState.captured}),
    },
    Operation.mark_tended: {
        ThoughtState.captured: frozenset({ThoughtState.tended}),
        ThoughtState.resting: frozenset({ThoughtState.tended}),
    },
    Operation.resolve: {
        ThoughtState.tended: RESOLUTION_TARGETS,
    },
    Operation.evolve: {
        ThoughtState.captured: frozenset({ThoughtState.evolved}),
        ThoughtState.resting: frozenset({ThoughtState.evolved}),
        ThoughtState.tended: frozenset({ThoughtState.evolved}),
    },
}


@dataclass(frozen=True)
class TransitionPlan:
    operation: Operation
    previous_state: Optional[ThoughtState]
    next_state: ThoughtState

    @property
    def increments_tend_counter(self) -> bool:
        return self.operation is Operation.mark_tended

    @property
    def sets_last_tended_at(self) -> bool:
        return self.operation is Operation.mark_tended

    @property
    def recomputes_eligibility(self) -> bool:
        return self.next_state in (ThoughtState.captured, ThoughtState.resting)


def coerce_state(value, field: str = "state", operation: Optional[str] = None) -> ThoughtState:
    if isinstance(value, ThoughtState):
        return value
    if isinstance(value, str):
        try:
            return ThoughtState(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(state.value for state in ThoughtState)
    raise ValidationIssue(
        f"{field} must be one of: {allowed} (got {value!r})",
        field=field,
        error_type="invalid_state",
        operation=operation,
    )


def is_terminal(state: ThoughtState) -> bool:
    return state in TERMINAL_STATES


def allowed_targets(current: Optional[ThoughtState], operation: Operation) -> frozenset[ThoughtState]:
    return TRANSITIONS[operation].get(current, frozenset())


def check_resolution_target(target: Optional[ThoughtState], thought_id: Optional[int] = None) -> ThoughtState:
    op_name = Operation.resolve.label
    if target is None:
        raise ValidationIssue(
            f"{op_name}: next state is required",
            field="next_state",
            error_type="required",
            operation=op_name,
            thought_id=thought_id,
        )
    if target not in RESOLUTION_TARGETS:
        raise ValidationIssue(
            f"{op_name}: invalid next state {target.value!r}",
            field="next_state",
            error_type="invalid_state",
            operation=op_name,
            thought_id=thought_id,
        )
    return target


def plan_transition(
    current: Optional[ThoughtState],
    operation: Operation,
    target: Optional[ThoughtState] = None,
    *,
    eligibility_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
    thought_id: Optional[int] = None,
) -> TransitionPlan:
    """
    Validate ``operation`` against ``current`` and return the resulting plan.

    Raises InvalidTransition when the state (or the eligibility guard)
    forbids the move, ValidationIssue when the requested target is not a
    resolution target at all.
    """
    op_name = operation.label

    if operation is Operation.resolve:
        check_resolution_target(target, thought_id=thought_id)

    targets = allowed_targets(current, operation)
    if not targets:
        state_value = current.value if current is not None else None
        if current is not None and is_terminal(current):
            message = f"{op_name}: thought is in terminal state ({state_value})"
            reason = "terminal_state"
        elif operation is Operation.resolve:
            message = f"{op_name}: thought is not in tended state (currently {state_value})"
            reason = "not_tended"
        else:
            message = f"{op_name}: not allowed from state {state_value}"
            reason = "invalid_state"
        raise InvalidTransition(
            message,
            current_state=state_value,
            operation=op_name,
            thought_id=thought_id,
            reason=reason,
        )

    if target is None:
        if len(targets) != 1:
            raise ValidationIssue(
                f"{op_name}: next state is required",
                field="next_state",
                error_type="required",
                operation=op_name,
                thought_id=thought_id,
            )
        (target,) = targets
    elif target not in targets:
        raise InvalidTransition(
            f"{op_name}: cannot move from {current.value if current else None} to {target.value}",
            current_state=current.value if current is not None else None,
            operation=op_name,
            thought_id=thought_id,
        )

    if operation is Operation.mark_tended:
        if eligibility_at is None or now is None:
            raise ValueError("mark_tended requires eligibility_at and now")
        if eligibility_at > now:
            raise InvalidTransition(
                f"{op_name}: thought is not yet eligible for tending "
                f"(eligible at {eligibility_at.isoformat()})",
                current_state=current.value,
                operation=op_name,
                thought_id=thought_id,
                reason="not_eligible",
            )

    return TransitionPlan(operation=operation, previous_state=current, next_state=target)
