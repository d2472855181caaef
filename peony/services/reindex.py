"""
Thought id compaction.

After deletions the ``thoughts`` ids can be sparse (1, 2, 4). Reindexing
renumbers them 1..N in their existing order and moves every event's
``thought_id`` along with its thought, all in one transaction.
"""

from __future__ import annotations

from sqlalchemy import text

from peony.errors import IntegrityViolation
from peony.models import Event, Thought
from peony.services.shared import logger, read_transaction, store_operation, write_transaction

OP_REINDEX = "reindex thought ids"
OP_INTEGRITY_CHECK = "check referential integrity"


def _orphan_event_ids(db) -> list[int]:
    rows = (
        db.query(Event.id)
        .outerjoin(Thought, Event.thought_id == Thought.id)
        .filter(Thought.id.is_(None))
        .order_by(Event.id.asc())
        .all()
    )
    return [row[0] for row in rows]


def _reset_id_sequence(db) -> None:
    # AUTOINCREMENT keeps its high-water mark in sqlite_sequence; pull it back
    # to MAX(id) so the next thought continues right after the last one.
    max_id = "(SELECT COALESCE(MAX(id), 0) FROM thoughts)"
    updated = db.execute(
        text(f"UPDATE sqlite_sequence SET seq = {max_id} WHERE name = 'thoughts'")
    )
    if updated.rowcount == 0:
        db.execute(
            text(f"INSERT INTO sqlite_sequence(name, seq) SELECT 'thoughts', {max_id}")
        )


@store_operation(OP_INTEGRITY_CHECK)
def find_orphan_events() -> list[int]:
    """Ids of events whose thought no longer exists (empty when consistent)."""
    with read_transaction(OP_INTEGRITY_CHECK) as db:
        return _orphan_event_ids(db)


@store_operation(OP_REINDEX)
def reindex_thought_ids() -> dict[int, int]:
    """
    Renumber thoughts densely as 1..N, preserving their order by old id.

    Returns ``{old_id: new_id}`` for every thought whose id changed. The
    whole operation rolls back (raising IntegrityViolation) if any event
    would be left pointing at a missing thought.
    """
    with write_transaction(OP_REINDEX) as db:
        # Parent and child ids move in separate statements; check the FK at commit.
        db.execute(text("PRAGMA defer_foreign_keys = ON"))

        old_ids = [row[0] for row in db.query(Thought.id).order_by(Thought.id.asc()).all()]
        mapping = {
            old_id: new_id
            for new_id, old_id in enumerate(old_ids, start=1)
            if old_id != new_id
        }

        # Park moved rows on negative ids so no new id collides with an old one.
        for old_id, new_id in mapping.items():
            db.query(Thought).filter(Thought.id == old_id).update(
                {Thought.id: -new_id}, synchronize_session=False
            )
            db.query(Event).filter(Event.thought_id == old_id).update(
                {Event.thought_id: -new_id}, synchronize_session=False
            )

        if mapping:
            db.query(Thought).filter(Thought.id < 0).update(
                {Thought.id: -Thought.id}, synchronize_session=False
            )
            db.query(Event).filter(Event.thought_id < 0).update(
                {Event.thought_id: -Event.thought_id}, synchronize_session=False
            )

        _reset_id_sequence(db)

        orphans = _orphan_event_ids(db)
        if orphans:
            raise IntegrityViolation(
                f"{OP_REINDEX}: {len(orphans)} event(s) reference missing thoughts",
                orphan_event_ids=orphans,
                operation=OP_REINDEX,
            )

    logger.debug("reindex_applied", extra={"moved": len(mapping), "total": len(old_ids)})
    return mapping


__all__ = [
    "find_orphan_events",
    "reindex_thought_ids",
]
