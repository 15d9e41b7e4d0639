"""
Scoring service: battle vote scoring and timeout winners

Pure computation over a battle's recorded votes.

Scoring rule:
┌──────────────────────┬──────────────────────────────────┐
│ vote on opponent clip │ effect                           │
├──────────────────────┼──────────────────────────────────┤
│ clean                 │ +1 to the OTHER participant      │
│ sketch / redo         │ nothing                          │
└──────────────────────┴──────────────────────────────────┘

Higher score wins; a tie goes to the creator (the challenger).
"""
import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from models import CompletionReason, VoteValue

logger = logging.getLogger(__name__)


def calculate_winner(votes: Iterable[Mapping], creator_id: str, opponent_id: str) -> Tuple[str, Dict[str, int]]:
    """
    Score both participants and pick the winner.

    Args:
        votes: recorded votes, each {"voter_id": ..., "value": "clean"|"sketch"|"redo"}
        creator_id: battle creator
        opponent_id: battle opponent

    Returns:
        (winner_id, {creator_id: score, opponent_id: score})

    Example:
        creator votes clean, opponent votes sketch
        -> opponent scores 1, creator 0 -> opponent wins 1-0
    """
    scores = {creator_id: 0, opponent_id: 0}

    for vote in votes:
        value = VoteValue(vote["value"])
        if value is VoteValue.CLEAN:
            other = opponent_id if vote["voter_id"] == creator_id else creator_id
            scores[other] += 1
        elif value in (VoteValue.SKETCH, VoteValue.REDO):
            continue
        else:
            raise ValueError(f"Unhandled vote value {value!r}")

    creator_score = scores[creator_id]
    opponent_score = scores[opponent_id]

    if creator_score > opponent_score:
        winner_id = creator_id
    elif opponent_score > creator_score:
        winner_id = opponent_id
    else:
        winner_id = creator_id
        logger.info(f"Tie resolved in favor of creator {creator_id}: {scores}")

    return winner_id, scores


def resolve_timeout_winner(votes: Iterable[Mapping], creator_id: str, opponent_id: Optional[str]) -> Tuple[str, CompletionReason]:
    """
    Winner when the vote deadline elapses.

    - only the creator voted   -> creator  (opponent_timeout)
    - only the opponent voted  -> opponent (creator_timeout)
    - neither voted            -> creator  (both_timeout)
    - both voted (should have completed already) -> creator (both_timeout)
    """
    voters = {vote["voter_id"] for vote in votes}
    creator_voted = creator_id in voters
    opponent_voted = opponent_id is not None and opponent_id in voters

    if creator_voted and not opponent_voted:
        return creator_id, CompletionReason.OPPONENT_TIMEOUT
    if opponent_voted and not creator_voted:
        return opponent_id, CompletionReason.CREATOR_TIMEOUT
    return creator_id, CompletionReason.BOTH_TIMEOUT


def both_voted(votes: Iterable[Mapping], creator_id: str, opponent_id: Optional[str]) -> bool:
    voters = {vote["voter_id"] for vote in votes}
    return opponent_id is not None and creator_id in voters and opponent_id in voters
