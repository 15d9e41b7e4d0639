from datetime import timedelta

import pytest

from conftest import A, B, T0
from core.duel_manager import DuelManager
from core.exceptions import (
    ContestNotFound,
    DeadlineExpired,
    DisputeAlreadyResolved,
    DisputeAlreadyUsed,
    DisputeNotFound,
    InvalidState,
    MissingRoleAssignment,
    NotAParticipant,
    NotYourTurn,
    PhaseRejectsAction,
    ResponseRequiredBeforeJudging,
    TurnAlreadyJudged,
    TurnNotFound,
    WrongRole,
)
from models import CompletionReason, Contest, ContestStatus, Dispute, Turn, TurnPhase, TurnResult, TurnType
from schemas import NotificationType


def _contest(db, contest_id):
    db.expire_all()
    return db.query(Contest).filter(Contest.id == contest_id).one()


# ============ Lifecycle ============

def test_create_challenge_is_waiting_with_challenger_offensive(db):
    result = DuelManager.create_challenge(db, A, B, "Alice", "Bob")
    contest = result.contest
    assert contest["status"] == "waiting"
    assert contest["offensive_player_id"] == A
    assert contest["defensive_player_id"] == B
    assert [n.type for n in result.notifications] == [NotificationType.CHALLENGE_RECEIVED]
    assert result.notifications[0].recipient_id == B
    assert result.notifications[0].data["challenger_name"] == "Alice"


def test_create_challenge_emits_analytics_after_commit(db, monkeypatch):
    from core import duel_manager as duel_module

    events = []
    monkeypatch.setattr(duel_module, "emit_event", lambda user_id, event, props=None: events.append((user_id, event, props)))

    contest_id = DuelManager.create_challenge(db, A, B).contest["id"]

    assert events == [(A, "challenge_created", {"contest_id": contest_id, "opponent_id": B})]
    assert _contest(db, contest_id).status is ContestStatus.WAITING


def test_cannot_challenge_yourself(db):
    with pytest.raises(InvalidState):
        DuelManager.create_challenge(db, A, A)


def test_accept_starts_set_trick_for_challenger(db):
    contest_id = DuelManager.create_challenge(db, A, B).contest["id"]
    result = DuelManager.respond_to_challenge(db, contest_id, B, True, now=T0)

    assert result.contest["status"] == "active"
    assert result.contest["phase"] == "set_trick"
    assert result.contest["current_turn"] == A
    assert result.contest["deadline_at"] == (T0 + timedelta(hours=24)).isoformat()
    assert result.notifications[0].recipient_id == A
    assert result.notifications[0].type is NotificationType.YOUR_TURN
    # unnamed players fall back to the default display name
    assert result.notifications[0].data["opponent_name"] == "Opponent"


def test_only_challenged_player_can_respond(db):
    contest_id = DuelManager.create_challenge(db, A, B).contest["id"]
    with pytest.raises(WrongRole):
        DuelManager.respond_to_challenge(db, contest_id, A, True)
    with pytest.raises(NotAParticipant):
        DuelManager.respond_to_challenge(db, contest_id, "mallory", True)


def test_replayed_response_is_flagged(db):
    contest_id = DuelManager.create_challenge(db, A, B).contest["id"]
    first = DuelManager.respond_to_challenge(db, contest_id, B, True, event_id="resp-1", now=T0)
    replay = DuelManager.respond_to_challenge(db, contest_id, B, True, event_id="resp-1", now=T0 + timedelta(hours=1))

    assert not first.already_processed
    assert replay.already_processed
    # the replay does not reset the deadline
    assert _contest(db, contest_id).deadline_at == T0 + timedelta(hours=24)


def test_decline_completes_without_winner(db):
    contest_id = DuelManager.create_challenge(db, A, B).contest["id"]
    DuelManager.respond_to_challenge(db, contest_id, B, False, now=T0)

    contest = _contest(db, contest_id)
    assert contest.status is ContestStatus.COMPLETED
    assert contest.winner_id is None
    assert contest.completion_reason is CompletionReason.DECLINED


# ============ Move submission ============

def test_set_trick_moves_to_respond_and_notifies_defender(db, active_contest):
    contest_id = active_contest()
    now = T0 + timedelta(minutes=5)
    result = DuelManager.submit_move(db, contest_id, A, "kickflip", "clip://1", 4000, now=now)

    assert result.ok
    assert result.turn["turn_number"] == 1
    assert result.turn["turn_type"] == "set"
    assert result.turn["player_name"] == "Alice"
    assert result.contest["phase"] == "respond_trick"
    assert result.contest["current_turn"] == B
    assert result.contest["deadline_at"] == (now + timedelta(hours=24)).isoformat()
    assert len(result.notifications) == 1
    assert result.notifications[0].recipient_id == B
    assert result.notifications[0].data["opponent_name"] == "Alice"

    contest = _contest(db, contest_id)
    assert contest.last_trick_description == "kickflip"
    assert contest.last_trick_by == A


def test_response_moves_to_judge_without_notification(db, active_contest):
    contest_id = active_contest()
    DuelManager.submit_move(db, contest_id, A, "kickflip", "clip://1", 4000, now=T0)
    result = DuelManager.submit_move(db, contest_id, B, "kickflip", "clip://2", 4100, now=T0)

    assert result.turn["turn_number"] == 2
    assert result.turn["turn_type"] == "response"
    assert result.contest["phase"] == "judge"
    assert result.contest["current_turn"] == B
    assert result.notifications == []


def test_submit_rejections_in_priority_order(db, active_contest):
    contest_id = active_contest()

    with pytest.raises(ContestNotFound):
        DuelManager.submit_move(db, "missing", A, "x", "m", 1, now=T0)
    with pytest.raises(NotAParticipant):
        DuelManager.submit_move(db, contest_id, "mallory", "x", "m", 1, now=T0)
    with pytest.raises(NotYourTurn):
        DuelManager.submit_move(db, contest_id, B, "x", "m", 1, now=T0)
    with pytest.raises(DeadlineExpired):
        DuelManager.submit_move(db, contest_id, A, "x", "m", 1, now=T0 + timedelta(hours=25))

    # a late submission never forfeits by itself
    contest = _contest(db, contest_id)
    assert contest.status is ContestStatus.ACTIVE
    assert contest.phase is TurnPhase.SET_TRICK


def test_submit_in_judge_phase_is_rejected(db, active_contest, play_to_judge):
    contest_id = active_contest()
    play_to_judge(contest_id, A, B)
    with pytest.raises(PhaseRejectsAction):
        DuelManager.submit_move(db, contest_id, B, "x", "m", 1, now=T0)


def test_submit_on_waiting_contest_is_rejected(db):
    contest_id = DuelManager.create_challenge(db, A, B).contest["id"]
    with pytest.raises(InvalidState):
        DuelManager.submit_move(db, contest_id, A, "x", "m", 1, now=T0)


def test_replayed_submit_event_creates_one_turn(db, active_contest):
    contest_id = active_contest()
    first = DuelManager.submit_move(db, contest_id, A, "kickflip", "m", 1, event_id="evt-1", now=T0)
    second = DuelManager.submit_move(db, contest_id, A, "kickflip", "m", 1, event_id="evt-1", now=T0)

    assert not first.already_processed
    assert second.already_processed
    assert second.contest == first.contest
    assert db.query(Turn).filter(Turn.contest_id == contest_id).count() == 1


# ============ Judging ============

def test_missed_gives_defender_a_letter_and_keeps_roles(db, active_contest, play_to_judge):
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)

    result = DuelManager.judge(db, contest_id, turn_id, B, TurnResult.MISSED, now=T0)

    assert not result.game_over
    assert result.message == "BAIL. Letter earned."
    assert result.contest["letters"] == {A: "", B: "S"}
    assert result.contest["offensive_player_id"] == A
    assert result.contest["phase"] == "set_trick"
    assert result.contest["current_turn"] == A
    assert [(n.recipient_id, n.type) for n in result.notifications] == [(A, NotificationType.YOUR_TURN)]
    assert result.turn["result"] == "missed"
    assert result.turn["judged_by"] == B


def test_landed_swaps_roles_without_letter(db, active_contest, play_to_judge):
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)

    result = DuelManager.judge(db, contest_id, turn_id, B, TurnResult.LANDED, now=T0)

    assert result.message == "LAND. Roles swap."
    assert result.contest["letters"] == {A: "", B: ""}
    assert result.contest["offensive_player_id"] == B
    assert result.contest["defensive_player_id"] == A
    assert result.contest["current_turn"] == B
    assert result.notifications[0].recipient_id == B


def test_fifth_letter_ends_the_game(db, active_contest, play_to_judge):
    contest_id = active_contest()
    contest = _contest(db, contest_id)
    contest.player_b_letters = "SKAT"
    db.commit()

    turn_id = play_to_judge(contest_id, A, B)
    result = DuelManager.judge(db, contest_id, turn_id, B, TurnResult.MISSED, now=T0)

    assert result.game_over
    assert result.winner_id == A
    assert result.message == "Game over."
    assert result.contest["letters"][B] == "SKATE"
    assert result.contest["status"] == "completed"
    assert result.contest["phase"] is None
    assert result.contest["current_turn"] is None
    assert result.contest["deadline_at"] is None
    assert {n.recipient_id: n.data["you_won"] for n in result.notifications} == {A: True, B: False}
    assert all(n.type is NotificationType.GAME_OVER for n in result.notifications)

    assert _contest(db, contest_id).completion_reason is CompletionReason.LETTERS


def test_second_judge_on_same_turn_is_already_processed(db, active_contest, play_to_judge):
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)

    DuelManager.judge(db, contest_id, turn_id, B, TurnResult.MISSED, now=T0)
    with pytest.raises(TurnAlreadyJudged):
        DuelManager.judge(db, contest_id, turn_id, B, TurnResult.LANDED, now=T0)

    # exactly one mutation
    contest = _contest(db, contest_id)
    assert contest.player_b_letters == "S"
    assert contest.offensive_player_id == A


def test_only_defender_can_judge(db, active_contest, play_to_judge):
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)
    with pytest.raises(WrongRole):
        DuelManager.judge(db, contest_id, turn_id, A, TurnResult.LANDED, now=T0)
    with pytest.raises(NotAParticipant):
        DuelManager.judge(db, contest_id, turn_id, "mallory", TurnResult.LANDED, now=T0)


def test_judge_before_response_is_rejected(db, active_contest):
    contest_id = active_contest()
    set_turn = DuelManager.submit_move(db, contest_id, A, "kickflip", "m", 1, now=T0).turn

    # phase is respond_trick, not judge
    with pytest.raises(PhaseRejectsAction):
        DuelManager.judge(db, contest_id, set_turn["id"], B, TurnResult.LANDED, now=T0)

    # force the phase forward without a response turn
    contest = _contest(db, contest_id)
    contest.phase = TurnPhase.JUDGE
    db.commit()
    with pytest.raises(ResponseRequiredBeforeJudging):
        DuelManager.judge(db, contest_id, set_turn["id"], B, TurnResult.LANDED, now=T0)


def test_missing_role_assignment_is_surfaced(db, active_contest, play_to_judge):
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)
    contest = _contest(db, contest_id)
    contest.defensive_player_id = None
    db.commit()

    with pytest.raises(MissingRoleAssignment) as exc:
        DuelManager.judge(db, contest_id, turn_id, B, TurnResult.LANDED, now=T0)
    assert exc.value.status_code == 500
    assert _contest(db, contest_id).defensive_player_id is None


def test_replayed_judge_event_returns_stored_state(db, active_contest, play_to_judge):
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)

    first = DuelManager.judge(db, contest_id, turn_id, B, TurnResult.MISSED, event_id="j-1", now=T0)
    again = DuelManager.judge(db, contest_id, turn_id, B, TurnResult.MISSED, event_id="j-1", now=T0)

    assert again.already_processed
    assert again.contest == first.contest


# ============ Setter bail ============

def test_setter_bail_gives_setter_a_letter_and_swaps(db, active_contest):
    contest_id = active_contest()
    result = DuelManager.setter_bail(db, contest_id, A, now=T0)

    assert result.contest["letters"] == {A: "S", B: ""}
    assert result.contest["offensive_player_id"] == B
    assert result.contest["current_turn"] == B
    assert result.contest["phase"] == "set_trick"
    assert result.notifications[0].recipient_id == B


def test_setter_bail_requires_setter_in_set_phase(db, active_contest):
    contest_id = active_contest()
    with pytest.raises(WrongRole):
        DuelManager.setter_bail(db, contest_id, B, now=T0)

    DuelManager.submit_move(db, contest_id, A, "kickflip", "m", 1, now=T0)
    with pytest.raises(PhaseRejectsAction):
        DuelManager.setter_bail(db, contest_id, A, now=T0)


def test_setter_bail_can_end_the_game(db, active_contest):
    contest_id = active_contest()
    contest = _contest(db, contest_id)
    contest.player_a_letters = "SKAT"
    db.commit()

    result = DuelManager.setter_bail(db, contest_id, A, now=T0)
    assert result.game_over
    assert result.winner_id == B


# ============ Disputes ============

@pytest.fixture()
def missed_set(db, active_contest, play_to_judge):
    """A sets, B responds and judges missed, so B holds "S" and A sets again."""
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)
    DuelManager.judge(db, contest_id, turn_id, B, TurnResult.MISSED, now=T0)
    return contest_id, turn_id


def test_overturned_dispute_takes_back_the_letter_and_swaps_roles(db, missed_set):
    contest_id, turn_id = missed_set
    filed = DuelManager.file_dispute(db, contest_id, A, turn_id, now=T0)
    assert filed.dispute["against_player_id"] == B
    assert [(n.recipient_id, n.type) for n in filed.notifications] == [(B, NotificationType.DISPUTE_FILED)]

    later = T0 + timedelta(hours=2)
    result = DuelManager.resolve_dispute(db, filed.dispute["id"], B, TurnResult.LANDED, now=later)

    assert result.dispute["final_result"] == "landed"
    assert [(n.recipient_id, n.type) for n in result.notifications] == [(A, NotificationType.DISPUTE_RESOLVED)]
    contest = _contest(db, contest_id)
    assert contest.player_b_letters == ""
    assert contest.offensive_player_id == B
    assert contest.defensive_player_id == A
    assert contest.current_turn == B
    assert contest.phase is TurnPhase.SET_TRICK
    assert contest.deadline_at == later + timedelta(hours=24)
    assert db.query(Turn).filter(Turn.id == turn_id).one().result is TurnResult.LANDED


def test_denied_dispute_leaves_the_verdict(db, missed_set):
    contest_id, turn_id = missed_set
    dispute_id = DuelManager.file_dispute(db, contest_id, A, turn_id, now=T0).dispute["id"]

    result = DuelManager.resolve_dispute(db, dispute_id, B, TurnResult.MISSED, now=T0)

    assert result.message == "Dispute denied. Missed stands."
    contest = _contest(db, contest_id)
    assert contest.player_b_letters == "S"
    assert contest.current_turn == A
    assert db.query(Dispute).filter(Dispute.id == dispute_id).one().resolved_by == B


def test_one_dispute_per_player_per_contest(db, missed_set, play_to_judge):
    contest_id, turn_id = missed_set
    dispute_id = DuelManager.file_dispute(db, contest_id, A, turn_id, now=T0).dispute["id"]
    DuelManager.resolve_dispute(db, dispute_id, B, TurnResult.MISSED, now=T0)

    next_turn = play_to_judge(contest_id, A, B)
    DuelManager.judge(db, contest_id, next_turn, B, TurnResult.MISSED, now=T0)

    with pytest.raises(DisputeAlreadyUsed):
        DuelManager.file_dispute(db, contest_id, A, next_turn, now=T0)
    assert _contest(db, contest_id).player_a_dispute_used


def test_dispute_rejections(db, active_contest, play_to_judge, missed_set):
    contest_id, turn_id = missed_set

    with pytest.raises(NotAParticipant):
        DuelManager.file_dispute(db, contest_id, "mallory", turn_id, now=T0)
    with pytest.raises(TurnNotFound):
        DuelManager.file_dispute(db, contest_id, A, 9999, now=T0)
    # the judge cannot dispute a trick that is not theirs
    with pytest.raises(InvalidState):
        DuelManager.file_dispute(db, contest_id, B, turn_id, now=T0)

    landed_contest = active_contest(player_a="carol", player_b="dave")
    landed_turn = play_to_judge(landed_contest, "carol", "dave")
    DuelManager.judge(db, landed_contest, landed_turn, "dave", TurnResult.LANDED, now=T0)
    with pytest.raises(InvalidState):
        DuelManager.file_dispute(db, landed_contest, "carol", landed_turn, now=T0)
    # a turn from another contest
    with pytest.raises(InvalidState):
        DuelManager.file_dispute(db, contest_id, A, landed_turn, now=T0)

    # play moved on: A already set the next trick
    DuelManager.submit_move(db, contest_id, A, "heelflip", "clip://next", 3000, now=T0)
    with pytest.raises(InvalidState):
        DuelManager.file_dispute(db, contest_id, A, turn_id, now=T0)
    assert not _contest(db, contest_id).player_a_dispute_used


def test_only_the_judge_resolves_and_only_once(db, missed_set):
    contest_id, turn_id = missed_set
    dispute_id = DuelManager.file_dispute(db, contest_id, A, turn_id, now=T0).dispute["id"]

    with pytest.raises(WrongRole):
        DuelManager.resolve_dispute(db, dispute_id, A, TurnResult.LANDED, now=T0)
    with pytest.raises(DisputeNotFound):
        DuelManager.resolve_dispute(db, 9999, B, TurnResult.LANDED, now=T0)

    DuelManager.resolve_dispute(db, dispute_id, B, TurnResult.LANDED, now=T0)
    with pytest.raises(DisputeAlreadyResolved):
        DuelManager.resolve_dispute(db, dispute_id, B, TurnResult.MISSED, now=T0)
    # the first ruling stands
    assert _contest(db, contest_id).player_b_letters == ""


def test_replayed_dispute_event_files_once(db, missed_set):
    contest_id, turn_id = missed_set
    first = DuelManager.file_dispute(db, contest_id, A, turn_id, event_id="dispute-1", now=T0)
    replay = DuelManager.file_dispute(db, contest_id, A, turn_id, event_id="dispute-1", now=T0)

    assert not first.already_processed
    assert replay.already_processed
    assert db.query(Dispute).filter(Dispute.contest_id == contest_id).count() == 1


# ============ Forfeit and presence ============

def test_forfeit_awards_opponent(db, active_contest):
    contest_id = active_contest()
    result = DuelManager.forfeit(db, contest_id, A, now=T0)

    assert result.game_over
    assert result.winner_id == B
    assert [(n.recipient_id, n.type) for n in result.notifications] == [(B, NotificationType.OPPONENT_FORFEITED)]
    assert _contest(db, contest_id).completion_reason is CompletionReason.FORFEIT

    with pytest.raises(InvalidState):
        DuelManager.forfeit(db, contest_id, B, now=T0)


def test_disconnect_pauses_and_reconnect_resumes_with_fresh_deadline(db, active_contest):
    contest_id = active_contest()
    paused = DuelManager.handle_disconnect(db, contest_id, B, now=T0 + timedelta(minutes=1))
    assert paused.contest["status"] == "paused"

    with pytest.raises(InvalidState):
        DuelManager.submit_move(db, contest_id, A, "x", "m", 1, now=T0 + timedelta(minutes=1))

    later = T0 + timedelta(hours=30)
    resumed = DuelManager.handle_reconnect(db, contest_id, B, now=later)
    assert resumed.contest["status"] == "active"
    assert resumed.contest["deadline_at"] == (later + timedelta(hours=24)).isoformat()

    contest = _contest(db, contest_id)
    assert contest.player_b_disconnected_at is None
    assert contest.paused_at is None


def test_contest_resumes_only_when_both_players_are_back(db, active_contest):
    contest_id = active_contest()
    DuelManager.handle_disconnect(db, contest_id, A, now=T0)
    DuelManager.handle_disconnect(db, contest_id, B, now=T0 + timedelta(seconds=5))

    contest = _contest(db, contest_id)
    assert contest.player_a_disconnected_at == T0
    assert contest.player_b_disconnected_at == T0 + timedelta(seconds=5)

    still_paused = DuelManager.handle_reconnect(db, contest_id, A, now=T0 + timedelta(seconds=10))
    assert still_paused.contest["status"] == "paused"
    assert _contest(db, contest_id).player_b_disconnected_at == T0 + timedelta(seconds=5)

    resumed = DuelManager.handle_reconnect(db, contest_id, B, now=T0 + timedelta(seconds=20))
    assert resumed.contest["status"] == "active"


def test_repeated_disconnect_keeps_first_timestamp(db, active_contest):
    contest_id = active_contest()
    DuelManager.handle_disconnect(db, contest_id, B, now=T0)
    DuelManager.handle_disconnect(db, contest_id, B, now=T0 + timedelta(seconds=30))

    assert _contest(db, contest_id).player_b_disconnected_at == T0


def test_get_contest_missing(db):
    with pytest.raises(ContestNotFound):
        DuelManager.get_contest(db, "nope")


def test_turns_are_numbered_in_order(db, active_contest, play_to_judge):
    contest_id = active_contest()
    turn_id = play_to_judge(contest_id, A, B)
    DuelManager.judge(db, contest_id, turn_id, B, TurnResult.LANDED, now=T0)
    play_to_judge(contest_id, B, A)

    turns = DuelManager.get_turns(db, contest_id)
    assert [t.turn_number for t in turns] == [1, 2, 3, 4]
    assert [t.turn_type for t in turns] == [TurnType.SET, TurnType.RESPONSE, TurnType.SET, TurnType.RESPONSE]
    assert [t.player_id for t in turns] == [A, B, B, A]
