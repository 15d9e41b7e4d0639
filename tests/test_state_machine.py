from datetime import datetime

import pytest

from core.exceptions import InvalidStateTransition, MissingRoleAssignment
from core.state_machine import ContestStateMachine, swap_roles
from models import CompletionReason, Contest, ContestStatus, TurnPhase

NOW = datetime(2024, 1, 1, 12, 0, 0)


def _contest(status=ContestStatus.ACTIVE, phase=TurnPhase.SET_TRICK):
    return Contest(
        id="c1",
        player_a_id="a",
        player_b_id="b",
        status=status,
        phase=phase,
        offensive_player_id="a",
        defensive_player_id="b",
        current_turn="a",
    )


def test_completed_is_terminal():
    contest = _contest(status=ContestStatus.COMPLETED)
    with pytest.raises(InvalidStateTransition):
        ContestStateMachine.transition_status(contest, ContestStatus.ACTIVE)


def test_waiting_cannot_pause():
    assert not ContestStateMachine.can_transition_status(ContestStatus.WAITING, ContestStatus.PAUSED)
    assert ContestStateMachine.can_transition_status(ContestStatus.PAUSED, ContestStatus.ACTIVE)


def test_advance_derives_current_turn_from_phase():
    contest = _contest()
    ContestStateMachine.advance_phase(contest, TurnPhase.RESPOND_TRICK, NOW)
    assert contest.current_turn == "b"
    assert contest.deadline_at == NOW

    ContestStateMachine.advance_phase(contest, TurnPhase.JUDGE, NOW)
    assert contest.current_turn == "b"


def test_judge_cannot_skip_to_respond():
    contest = _contest(phase=TurnPhase.JUDGE)
    with pytest.raises(InvalidStateTransition):
        ContestStateMachine.advance_phase(contest, TurnPhase.RESPOND_TRICK, NOW)


def test_advance_requires_active_contest():
    contest = _contest(status=ContestStatus.PAUSED)
    with pytest.raises(InvalidStateTransition):
        ContestStateMachine.advance_phase(contest, TurnPhase.RESPOND_TRICK, NOW)


def test_complete_clears_turn_state():
    contest = _contest()
    contest.deadline_at = NOW
    ContestStateMachine.complete(contest, "b", CompletionReason.LETTERS, NOW)

    assert contest.status is ContestStatus.COMPLETED
    assert contest.winner_id == "b"
    assert contest.phase is None
    assert contest.current_turn is None
    assert contest.deadline_at is None


def test_swap_roles_and_missing_roles():
    contest = _contest()
    swap_roles(contest)
    assert (contest.offensive_player_id, contest.defensive_player_id) == ("b", "a")

    contest.offensive_player_id = None
    with pytest.raises(MissingRoleAssignment):
        swap_roles(contest)
