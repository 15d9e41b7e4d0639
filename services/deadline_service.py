"""
Deadline service: wall-clock helpers shared by the engines and the reconciler

Pure computation. All timestamps are naive UTC so values compare equally
before and after a database round-trip.
"""
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_deadline(now: datetime, seconds: int) -> datetime:
    """
    Deadline for the next phase, `seconds` after `now`.

    Every phase advance gets a fresh window; deadlines are never extended.
    """
    return now + timedelta(seconds=seconds)


def is_expired(deadline: Optional[datetime], now: datetime) -> bool:
    """
    A deadline has elapsed once `now` is strictly past it.

    A missing deadline never expires.
    """
    return deadline is not None and deadline < now


def deadline_sequence_key(deadline: datetime) -> str:
    """
    Sequence key derived from the deadline itself, not the current time.

    Two sweeps that observe the same deadline produce the same key, so the
    timeout it guards is applied at most once.

    Example:
        deadline_sequence_key(datetime(2024, 1, 1, 12)) -> "deadline-2024-01-01T12:00:00"
    """
    return f"deadline-{deadline.isoformat()}"


def disconnect_sequence_key(disconnected_at: datetime) -> str:
    return f"disconnected-{disconnected_at.isoformat()}"


def seconds_remaining(deadline: datetime, now: datetime) -> int:
    return max(0, int((deadline - now).total_seconds()))


def first_lapsed(disconnects: Iterable[Tuple[str, Optional[datetime]]], now: datetime,
                 window_seconds: int) -> Optional[Tuple[str, datetime]]:
    """
    The participant who has been gone longest past the reconnect window.

    `disconnects` is (player_id, disconnected_at) in tie-break order: on
    equal timestamps the earlier entry is returned. Returns None while
    nobody has lapsed.
    """
    window = timedelta(seconds=window_seconds)
    lapsed = [
        (player_id, since) for player_id, since in disconnects
        if since is not None and now - since > window
    ]
    if not lapsed:
        return None
    return min(lapsed, key=lambda item: item[1])
