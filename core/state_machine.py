"""
Contest state machine

Single place that knows which status / phase moves are legal and who owns
each phase. DuelManager and the reconciler go through it instead of
assigning status and phase by hand, so new states cannot silently fall
through.

Status:
    WAITING -> ACTIVE | COMPLETED (declined)
    ACTIVE  -> PAUSED | COMPLETED
    PAUSED  -> ACTIVE | COMPLETED
    COMPLETED is terminal

Phase (ACTIVE only):
    SET_TRICK     -> RESPOND_TRICK  (offensive player sets)
    RESPOND_TRICK -> JUDGE          (defensive player responds)
    JUDGE         -> SET_TRICK      (defensive player judges)
    SET_TRICK     -> SET_TRICK      (setter bail or overturned dispute, roles swap)
    RESPOND_TRICK -> SET_TRICK      (timeout, benefit of the doubt)
"""
import logging
from datetime import datetime
from typing import Optional

from core.exceptions import InvalidStateTransition, MissingRoleAssignment
from models import CompletionReason, Contest, ContestStatus, TurnPhase

logger = logging.getLogger(__name__)


class ContestStateMachine:
    STATUS_TRANSITIONS = {
        ContestStatus.WAITING: {ContestStatus.ACTIVE, ContestStatus.COMPLETED},
        ContestStatus.ACTIVE: {ContestStatus.PAUSED, ContestStatus.COMPLETED},
        ContestStatus.PAUSED: {ContestStatus.ACTIVE, ContestStatus.COMPLETED},
        ContestStatus.COMPLETED: set(),
    }

    PHASE_TRANSITIONS = {
        TurnPhase.SET_TRICK: {TurnPhase.RESPOND_TRICK, TurnPhase.SET_TRICK},
        TurnPhase.RESPOND_TRICK: {TurnPhase.JUDGE, TurnPhase.SET_TRICK},
        TurnPhase.JUDGE: {TurnPhase.SET_TRICK},
    }

    @staticmethod
    def phase_owner(contest: Contest, phase: TurnPhase) -> Optional[str]:
        """Player whose turn it is in `phase`."""
        if phase is TurnPhase.SET_TRICK:
            return contest.offensive_player_id
        if phase in (TurnPhase.RESPOND_TRICK, TurnPhase.JUDGE):
            return contest.defensive_player_id
        raise InvalidStateTransition(f"Unknown phase {phase!r}")

    @classmethod
    def can_transition_status(cls, current: ContestStatus, target: ContestStatus) -> bool:
        return target in cls.STATUS_TRANSITIONS[current]

    @classmethod
    def transition_status(cls, contest: Contest, target: ContestStatus) -> Contest:
        """
        Move a contest to `target` status.

        Raises:
            InvalidStateTransition: the move is not allowed (e.g. leaving COMPLETED)
        """
        current = contest.status
        if not cls.can_transition_status(current, target):
            raise InvalidStateTransition(
                f"Cannot move contest {contest.id} from {current.value} to {target.value}"
            )
        contest.status = target
        logger.debug(f"Contest {contest.id} status {current.value} -> {target.value}")
        return contest

    @classmethod
    def advance_phase(cls, contest: Contest, target: TurnPhase, deadline_at: datetime) -> Contest:
        """
        Move an active contest to `target` phase.

        current_turn is derived from the phase, so phase and turn owner can
        never disagree. A fresh deadline is set on every advance.
        """
        ensure_roles(contest)
        if contest.status is not ContestStatus.ACTIVE:
            raise InvalidStateTransition(f"Contest {contest.id} is not active")
        current = contest.phase or TurnPhase.SET_TRICK
        if target not in cls.PHASE_TRANSITIONS[current]:
            raise InvalidStateTransition(
                f"Cannot move contest {contest.id} from phase {current.value} to {target.value}"
            )
        contest.phase = target
        contest.current_turn = cls.phase_owner(contest, target)
        contest.deadline_at = deadline_at
        contest.deadline_warning_for = None
        return contest

    @classmethod
    def complete(cls, contest: Contest, winner_id: Optional[str], reason: CompletionReason, now: datetime) -> Contest:
        """
        Terminal transition: records the winner and clears phase, turn and deadline.
        """
        cls.transition_status(contest, ContestStatus.COMPLETED)
        contest.winner_id = winner_id
        contest.completion_reason = reason
        contest.completed_at = now
        contest.phase = None
        contest.current_turn = None
        contest.deadline_at = None
        contest.deadline_warning_for = None
        return contest


def ensure_roles(contest: Contest) -> None:
    """
    Active contests must have both role ids; a missing one is corruption
    and is surfaced, never patched.
    """
    if not contest.offensive_player_id or not contest.defensive_player_id:
        raise MissingRoleAssignment(contest.id)


def swap_roles(contest: Contest) -> None:
    ensure_roles(contest)
    contest.offensive_player_id, contest.defensive_player_id = (
        contest.defensive_player_id,
        contest.offensive_player_id,
    )
