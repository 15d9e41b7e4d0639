"""
Transactional store adapter

The four primitives the engines are written against:

- get_for_update(db, Model, id)  -> row | None, locked until commit
- insert_if_absent(db, row)      -> (row, created)
- update(row, patch)             -> row, with updated_at bumped
- run_in_transaction(db, fn)     -> fn(db) committed atomically

Engines never call db.commit() themselves; they run inside
@transactional (or run_in_transaction) so that the lock, the ledger check
and the mutation share one transaction.
"""
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Type

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from core.locks import with_battle_lock, with_contest_lock, with_vote_state_lock
from database import transactional
from models import Battle, BattleVoteState, Contest
from services.deadline_service import utcnow

logger = logging.getLogger(__name__)

_LOCKS = {
    Contest: with_contest_lock,
    Battle: with_battle_lock,
    BattleVoteState: with_vote_state_lock,
}


def get_for_update(db: Session, model: Type, row_id: Any) -> Optional[Any]:
    """
    Fetch one row with an exclusive lock.

    Returns None when the row does not exist.
    """
    lock = _LOCKS.get(model)
    if lock is None:
        raise ValueError(f"No row lock registered for {model.__name__}")
    return lock(row_id, db).first()


def insert_if_absent(db: Session, row: Any) -> Tuple[Any, bool]:
    """
    Insert `row` unless a row with the same primary key exists.

    The existing row is locked and returned with created=False; the caller
    decides whether that is an idempotent success or a conflict.
    """
    model = type(row)
    identity = inspect(row).mapper.primary_key_from_instance(row)
    row_id = identity[0] if len(identity) == 1 else tuple(identity)

    existing = get_for_update(db, model, row_id) if row_id is not None else None
    if existing is not None:
        return existing, False

    db.add(row)
    db.flush()
    return row, True


def update(row: Any, patch: Dict[str, Any]) -> Any:
    """
    Apply `patch` to a locked row.

    Unknown attributes raise instead of being silently ignored.
    """
    for key, value in patch.items():
        if not hasattr(row, key):
            raise AttributeError(f"{type(row).__name__} has no attribute {key!r}")
        setattr(row, key, value)
    if hasattr(row, "updated_at") and "updated_at" not in patch:
        row.updated_at = utcnow()
    return row


def run_in_transaction(db: Session, fn: Callable[[Session], Any]) -> Any:
    """Run fn(db) as one atomic unit (commit on success, rollback on error)."""

    @transactional
    def _run(session: Session):
        return fn(session)

    return _run(db)
