from datetime import timedelta

import pytest

import peony.services.thoughts as thoughts
from peony.db import DB
from peony.errors import InvalidTransition, StoreError, ThoughtNotFound, ValidationIssue
from peony.models import Event, Thought, ThoughtState


def _state_changes(events):
    return [event for event in events if event.kind == "state_change"]


def test_create_then_get_round_trip(server_db, store_context, clock):
    ctx = store_context(timedelta(hours=18))
    thought_id = thoughts.create_thought("  water the peonies  ", context=ctx)

    snapshot, events = thoughts.get_thought(thought_id)
    assert snapshot.id == thought_id
    assert snapshot.content == "  water the peonies  "
    assert snapshot.current_state is ThoughtState.captured
    assert snapshot.tend_counter == 0
    assert snapshot.last_tended_at is None
    assert snapshot.created_at == clock()
    assert snapshot.updated_at == snapshot.created_at
    assert snapshot.eligibility_at == snapshot.created_at + timedelta(hours=18)

    assert len(events) == 1
    assert events[0].kind == "captured"
    assert events[0].previous_state is None
    assert events[0].next_state is ThoughtState.captured
    assert events[0].at == snapshot.created_at


def test_tend_and_rest_scenario(server_db, store_context, clock):
    ctx = store_context(timedelta(0))
    thought_id = thoughts.create_thought("Call the plumber", context=ctx)

    clock.advance(minutes=1)
    tended_at = clock()
    thoughts.mark_thought_tended(thought_id, context=ctx)

    snapshot, _ = thoughts.get_thought(thought_id)
    assert snapshot.current_state is ThoughtState.tended
    assert snapshot.tend_counter == 1
    assert snapshot.last_tended_at == tended_at

    clock.advance(minutes=1)
    thoughts.resolve_tended_thought(thought_id, "resting", context=ctx)

    snapshot, events = thoughts.get_thought(thought_id)
    assert snapshot.current_state is ThoughtState.resting
    assert snapshot.tend_counter == 1
    assert snapshot.eligibility_at == clock()
    assert snapshot.updated_at == clock()
    assert [(event.previous_state, event.next_state) for event in _state_changes(events)] == [
        (ThoughtState.captured, ThoughtState.tended),
        (ThoughtState.tended, ThoughtState.resting),
    ]


def test_resting_recomputes_eligibility_with_settle(server_db, store_context, clock):
    ctx = store_context(timedelta(hours=2))
    thought_id = thoughts.create_thought("Plan the garden", context=ctx)

    with pytest.raises(InvalidTransition) as excinfo:
        thoughts.mark_thought_tended(thought_id, context=ctx)
    assert excinfo.value.reason == "not_eligible"

    clock.advance(hours=2)
    thoughts.mark_thought_tended(thought_id, note="first look", context=ctx)
    clock.advance(minutes=5)
    thoughts.resolve_tended_thought(thought_id, "resting", note="later", context=ctx)

    snapshot, events = thoughts.get_thought(thought_id)
    assert snapshot.eligibility_at == clock() + timedelta(hours=2)
    assert [event.note for event in _state_changes(events)] == ["first look", "later"]

    with pytest.raises(InvalidTransition):
        thoughts.mark_thought_tended(thought_id, context=ctx)

    clock.advance(hours=2)
    thoughts.mark_thought_tended(thought_id, context=ctx)
    snapshot, _ = thoughts.get_thought(thought_id)
    assert snapshot.tend_counter == 2


def test_state_change_events_match_successful_transitions(server_db, store_context, clock):
    ctx = store_context(timedelta(0))
    thought_id = thoughts.create_thought("Count my transitions", context=ctx)

    thoughts.mark_thought_tended(thought_id, context=ctx)
    thoughts.resolve_tended_thought(thought_id, "resting", context=ctx)
    with pytest.raises(InvalidTransition):
        thoughts.resolve_tended_thought(thought_id, "archived", context=ctx)
    thoughts.mark_thought_tended(thought_id, context=ctx)
    thoughts.evolve_thought(thought_id, context=ctx)
    with pytest.raises(InvalidTransition):
        thoughts.evolve_thought(thought_id, context=ctx)

    _, events = thoughts.get_thought(thought_id)
    assert len(_state_changes(events)) == 4
    assert events[-1].next_state is ThoughtState.evolved


def test_guards_reject_illegal_operations(server_db, store_context):
    ctx = store_context(timedelta(0))
    evolved_id = thoughts.create_thought("Evolve me", context=ctx)
    thoughts.evolve_thought(evolved_id, context=ctx)

    with pytest.raises(InvalidTransition) as excinfo:
        thoughts.mark_thought_tended(evolved_id, context=ctx)
    assert excinfo.value.current_state == "evolved"
    assert excinfo.value.reason == "terminal_state"

    captured_id = thoughts.create_thought("Leave me captured", context=ctx)
    with pytest.raises(InvalidTransition) as excinfo:
        thoughts.resolve_tended_thought(captured_id, "resting", context=ctx)
    assert excinfo.value.reason == "not_tended"

    snapshot, events = thoughts.get_thought(captured_id)
    assert snapshot.current_state is ThoughtState.captured
    assert len(events) == 1


def test_released_is_soft_terminal(server_db, store_context):
    ctx = store_context(timedelta(0))
    thought_id = thoughts.create_thought("Let it go", context=ctx)
    thoughts.mark_thought_tended(thought_id, context=ctx)
    thoughts.resolve_tended_thought(thought_id, "released", context=ctx)

    snapshot, _ = thoughts.get_thought(thought_id)
    assert snapshot.current_state is ThoughtState.released
    assert snapshot.is_terminal


@pytest.mark.parametrize("target", ["tended", "captured", "wilted"])
def test_resolve_rejects_bad_target_before_lookup(server_db, target):
    with pytest.raises(ValidationIssue) as excinfo:
        thoughts.resolve_tended_thought(999, target)
    assert excinfo.value.field == "next_state"


def test_failed_transition_rolls_back(server_db, store_context, monkeypatch):
    ctx = store_context(timedelta(0))
    thought_id = thoughts.create_thought("Stay captured", context=ctx)

    def _broken_log_event(*args, **kwargs):
        raise RuntimeError("event log unavailable")

    monkeypatch.setattr(thoughts, "log_event", _broken_log_event)
    with pytest.raises(RuntimeError):
        thoughts.mark_thought_tended(thought_id, context=ctx)
    monkeypatch.undo()

    snapshot, events = thoughts.get_thought(thought_id)
    assert snapshot.current_state is ThoughtState.captured
    assert snapshot.tend_counter == 0
    assert snapshot.last_tended_at is None
    assert len(events) == 1


def test_update_content_keeps_updated_at_monotonic(server_db, store_context, clock):
    ctx = store_context(timedelta(hours=1))
    thought_id = thoughts.create_thought("Draft", context=ctx)
    created, _ = thoughts.get_thought(thought_id)

    clock.advance(minutes=-10)
    thoughts.update_thought_content(thought_id, "Second draft", context=ctx)

    snapshot, events = thoughts.get_thought(thought_id)
    assert snapshot.content == "Second draft"
    assert snapshot.updated_at == created.updated_at
    assert snapshot.eligibility_at == created.eligibility_at
    assert snapshot.current_state is ThoughtState.captured
    assert [event.kind for event in events] == ["captured", "content_updated"]


def test_annotate_records_values(server_db, store_context):
    ctx = store_context()
    thought_id = thoughts.create_thought("How do I feel about this?", context=ctx)

    thoughts.annotate_thought(thought_id, valence=2, energy=-1, context=ctx)
    thoughts.annotate_thought(thought_id, energy=3, context=ctx)

    snapshot, events = thoughts.get_thought(thought_id)
    assert (snapshot.valence, snapshot.energy) == (2, 3)
    assert [event.note for event in events if event.kind == "annotated"] == ["valence=2 energy=-1", "energy=3"]

    with pytest.raises(ValidationIssue):
        thoughts.annotate_thought(thought_id, context=ctx)
    with pytest.raises(ValidationIssue):
        thoughts.annotate_thought(thought_id, valence="high", context=ctx)


def test_append_event(server_db, store_context):
    ctx = store_context()
    thought_id = thoughts.create_thought("Annotated by hand", context=ctx)

    thoughts.append_event(thought_id, " reminder ", note="   ", context=ctx)
    thoughts.append_event(thought_id, "imported", previous_state="captured", next_state="resting", context=ctx)

    snapshot, events = thoughts.get_thought(thought_id)
    assert snapshot.current_state is ThoughtState.captured
    assert [event.kind for event in events] == ["captured", "reminder", "imported"]
    assert events[1].note is None
    assert events[2].next_state is ThoughtState.resting

    with pytest.raises(ValidationIssue):
        thoughts.append_event(thought_id, "   ", context=ctx)
    with pytest.raises(ThoughtNotFound):
        thoughts.append_event(thought_id + 100, "reminder", context=ctx)


def test_delete_removes_thought_and_events(server_db, db_session, store_context):
    ctx = store_context()
    keep_id = thoughts.create_thought("Keep", context=ctx)
    drop_id = thoughts.create_thought("Drop", context=ctx)
    thoughts.append_event(drop_id, "reminder", context=ctx)

    thoughts.delete_thought(drop_id)

    with pytest.raises(ThoughtNotFound):
        thoughts.get_thought(drop_id)
    assert db_session.query(Event).filter(Event.thought_id == drop_id).count() == 0
    assert db_session.query(Thought).count() == 1
    db_session.rollback()
    assert thoughts.get_thought(keep_id)[0].content == "Keep"

    with pytest.raises(ThoughtNotFound):
        thoughts.delete_thought(drop_id)


def test_events_are_immutable(server_db, db_session, store_context):
    thought_id = thoughts.create_thought("Immutable history", context=store_context())
    event = db_session.query(Event).filter(Event.thought_id == thought_id).one()
    event.note = "rewritten"

    with pytest.raises(ValidationIssue) as excinfo:
        db_session.flush()
    assert excinfo.value.error_type == "immutable"


def test_list_thoughts_order_and_paging(server_db, store_context, clock):
    ctx = store_context()
    first = thoughts.create_thought("first", context=ctx)
    clock.advance(seconds=1)
    second = thoughts.create_thought("second", context=ctx)
    clock.advance(seconds=1)
    third = thoughts.create_thought("third", context=ctx)
    clock.advance(seconds=1)
    thoughts.update_thought_content(first, "first, edited", context=ctx)

    page = thoughts.list_thoughts(limit=2)
    assert [item.id for item in page] == [second, third]
    assert page.has_more
    assert page.next_offset == 2

    page = thoughts.list_thoughts(limit=2, offset=2)
    assert [item.id for item in page] == [first]
    assert not page.has_more
    assert page.next_offset is None


def test_list_thoughts_excludes_archived(server_db, store_context):
    ctx = store_context()
    shown = thoughts.create_thought("shown", context=ctx)
    hidden = thoughts.create_thought("hidden", context=ctx)
    thoughts.mark_thought_tended(hidden, context=ctx)
    thoughts.resolve_tended_thought(hidden, "archived", context=ctx)

    assert [item.id for item in thoughts.list_thoughts(limit=10)] == [shown]
    assert [item.id for item in thoughts.list_thoughts_by_state(10, 0, "archived")] == [hidden]
    assert [item.id for item in thoughts.list_thoughts_by_state(10, 0, ThoughtState.captured)] == [shown]
    assert len(thoughts.list_thoughts_by_state(10, 0, "tended")) == 0


@pytest.mark.parametrize(
    "call",
    [
        lambda: thoughts.create_thought("   "),
        lambda: thoughts.create_thought(""),
        lambda: thoughts.get_thought(0),
        lambda: thoughts.get_thought(-3),
        lambda: thoughts.get_thought(True),
        lambda: thoughts.list_thoughts(0),
        lambda: thoughts.list_thoughts(10, -1),
        lambda: thoughts.list_thoughts(100_000),
        lambda: thoughts.list_thoughts_by_state(10, 0, "wilted"),
        lambda: thoughts.update_thought_content(1, "  "),
        lambda: thoughts.mark_thought_tended(0),
        lambda: thoughts.evolve_thought(-1),
        lambda: thoughts.delete_thought(0),
        lambda: thoughts.create_thought("bad \ud800 text"),
        lambda: thoughts.update_thought_content(1, "half a pair \udc00"),
        lambda: thoughts.append_event(1, "kind \ud800"),
        lambda: thoughts.mark_thought_tended(1, note="note \udfff"),
        lambda: thoughts.resolve_tended_thought(1, "resting", note="\ud83d"),
    ],
)
def test_invalid_arguments(server_db, call):
    with pytest.raises(ValidationIssue):
        call()


def test_missing_thought(server_db):
    with pytest.raises(ThoughtNotFound) as excinfo:
        thoughts.get_thought(42)
    assert excinfo.value.thought_id == 42
    assert excinfo.value.reason == "not_found"

    with pytest.raises(ThoughtNotFound):
        thoughts.mark_thought_tended(42)
    with pytest.raises(ThoughtNotFound):
        thoughts.update_thought_content(42, "anything")


def test_store_error_without_database():
    assert DB.SessionLocal is None
    with pytest.raises(StoreError):
        thoughts.get_thought(1)


def test_unencodable_text_is_a_validation_issue(server_db):
    with pytest.raises(ValidationIssue) as excinfo:
        thoughts.create_thought("bad \ud800 text")
    assert excinfo.value.error_type == "invalid_encoding"
    assert excinfo.value.operation == "create thought"


def test_writers_proceed_once_read_session_ends(server_db, db_session, store_context):
    assert db_session.query(Thought).count() == 0
    db_session.rollback()

    assert thoughts.create_thought("after the read", context=store_context()) == 1


def test_last_tended_at_is_the_tend_time_after_clock_step_back(server_db, store_context, clock):
    ctx = store_context(timedelta(0))
    thought_id = thoughts.create_thought("Tend me late", context=ctx)
    clock.advance(hours=1)
    thoughts.update_thought_content(thought_id, "Tend me later", context=ctx)
    edited_at = clock()

    clock.advance(minutes=-30)
    thoughts.mark_thought_tended(thought_id, context=ctx)

    snapshot, _ = thoughts.get_thought(thought_id)
    assert snapshot.last_tended_at == clock()
    assert snapshot.updated_at == edited_at
