"""
Idempotency ledger

A bounded FIFO list of event ids stored on the contest / battle-vote-state
row it guards. Reads and appends happen inside the same transaction as the
state mutation, under the same row lock, so a replayed event id can never
apply twice.
"""
import secrets
import time
from typing import List, Optional


def has_processed(processed_event_ids: Optional[List[str]], event_id: Optional[str]) -> bool:
    """
    True if `event_id` is already recorded.

    A missing event id is never considered processed (the action is simply
    not replay-protected).
    """
    if not event_id:
        return False
    return event_id in (processed_event_ids or [])


def append_event(processed_event_ids: Optional[List[str]], event_id: Optional[str], cap: int) -> List[str]:
    """
    Return a new ledger with `event_id` appended, keeping the `cap` most recent.

    Always returns a fresh list: JSON columns are only flushed when the
    attribute is reassigned, not when mutated in place.

    Example:
        append_event(["a", "b"], "c", cap=2) -> ["b", "c"]
    """
    ledger = list(processed_event_ids or [])
    if event_id:
        ledger.append(event_id)
    return ledger[-cap:] if cap > 0 else []


def generate_event_id(event_type: str, actor_id: str, target_id: str, sequence_key: Optional[str] = None) -> str:
    """
    Build an event id.

    With a sequence key the id is deterministic, which is what the
    reconciler relies on:
        generate_event_id("timeout", "p1", "c1", "deadline-2024-01-01T12:00:00")
        -> "timeout-c1-p1-deadline-2024-01-01T12:00:00"

    Without one, a unique id is produced from the clock plus random bytes.
    """
    if sequence_key:
        return f"{event_type}-{target_id}-{actor_id}-{sequence_key}"
    return f"{event_type}-{target_id}-{actor_id}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
