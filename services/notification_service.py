"""
Notification service: turn engine outcomes into outbound descriptors

Only builds Notification objects. Delivery (push, socket broadcast) is the
transport's job; the core never calls a transport directly.
"""
from typing import List, Optional

from models import Contest
from schemas import Notification, NotificationType
from services.letters_service import resolve_opponent_name


def name_of(contest: Contest, player_id: str) -> Optional[str]:
    if player_id == contest.player_a_id:
        return contest.player_a_name
    if player_id == contest.player_b_id:
        return contest.player_b_name
    return None


def your_turn(contest: Contest, recipient_id: str) -> Notification:
    """Tell `recipient_id` it is their move, naming the other player."""
    opponent_id = contest.opponent_of(recipient_id)
    return Notification(
        recipient_id=recipient_id,
        type=NotificationType.YOUR_TURN,
        data={
            "contest_id": contest.id,
            "opponent_name": resolve_opponent_name(name_of(contest, opponent_id)),
        },
    )


def game_over(contest: Contest, winner_id: Optional[str]) -> List[Notification]:
    """One terminal notification per participant, differentiated by you_won."""
    return [
        Notification(
            recipient_id=player_id,
            type=NotificationType.GAME_OVER,
            data={
                "contest_id": contest.id,
                "winner_id": winner_id,
                "you_won": player_id == winner_id,
            },
        )
        for player_id in contest.participants()
        if player_id
    ]


def vote_timeout(contest: Contest, turn_id: Optional[int]) -> List[Notification]:
    return [
        Notification(
            recipient_id=player_id,
            type=NotificationType.VOTE_TIMEOUT,
            data={
                "contest_id": contest.id,
                "turn_id": turn_id,
                "message": "Vote timed out. Trick counted as landed, roles switched.",
            },
        )
        for player_id in contest.participants()
        if player_id
    ]


def game_forfeited(contest: Contest, loser_id: str, winner_id: str, reason: str) -> List[Notification]:
    return [
        Notification(
            recipient_id=player_id,
            type=NotificationType.GAME_FORFEITED,
            data={
                "contest_id": contest.id,
                "loser_id": loser_id,
                "winner_id": winner_id,
                "reason": reason,
                "you_won": player_id == winner_id,
            },
        )
        for player_id in contest.participants()
        if player_id
    ]


def opponent_forfeited(contest: Contest, winner_id: str) -> Notification:
    return Notification(
        recipient_id=winner_id,
        type=NotificationType.OPPONENT_FORFEITED,
        data={"contest_id": contest.id},
    )


def deadline_warning(contest: Contest, minutes_remaining: int) -> Notification:
    return Notification(
        recipient_id=contest.current_turn,
        type=NotificationType.DEADLINE_WARNING,
        data={"contest_id": contest.id, "minutes_remaining": minutes_remaining},
    )


def challenge_received(contest: Contest) -> Notification:
    return Notification(
        recipient_id=contest.player_b_id,
        type=NotificationType.CHALLENGE_RECEIVED,
        data={
            "contest_id": contest.id,
            "challenger_name": resolve_opponent_name(contest.player_a_name),
        },
    )


def battle_completed(battle_id: str, participants, winner_id: str, scores=None, reason: Optional[str] = None) -> List[Notification]:
    return [
        Notification(
            recipient_id=player_id,
            type=NotificationType.BATTLE_COMPLETED,
            data={
                "battle_id": battle_id,
                "winner_id": winner_id,
                "you_won": player_id == winner_id,
                "scores": scores,
                "reason": reason,
            },
        )
        for player_id in participants
        if player_id
    ]


def dispute_filed(contest: Contest, dispute_id: int, turn_id: int, recipient_id: str,
                  disputer_id: str) -> Notification:
    return Notification(
        recipient_id=recipient_id,
        type=NotificationType.DISPUTE_FILED,
        data={
            "contest_id": contest.id,
            "dispute_id": dispute_id,
            "turn_id": turn_id,
            "disputer_name": resolve_opponent_name(name_of(contest, disputer_id)),
        },
    )


def dispute_resolved(contest: Contest, dispute_id: int, recipient_id: str, final_result: str) -> Notification:
    """Tell the disputer how the judge ruled on their dispute."""
    return Notification(
        recipient_id=recipient_id,
        type=NotificationType.DISPUTE_RESOLVED,
        data={
            "contest_id": contest.id,
            "dispute_id": dispute_id,
            "final_result": final_result,
            "overturned": final_result == "landed",
        },
    )
